"""API routes for receipt job status and reprocessing."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from fastapi import APIRouter, Depends, HTTPException, status

from tally.api.dependencies import get_enqueue, get_job_store
from tally.core.config import settings
from tally.models.enums import JobState
from tally.models.schemas import JobStatusRead
from tally.services.job_store import JobStore, UnknownJobError

logger = logging.getLogger(__name__)

router = APIRouter(prefix=f"{settings.API_V1_STR}/receipts", tags=["receipts"])


@router.get("/{job_id}", response_model=JobStatusRead)
async def get_receipt_status(job_id: str, store: JobStore = Depends(get_job_store)) -> JobStatusRead:
    """Current state, progress and (when terminal) result of a job."""
    snap = await asyncio.to_thread(store.get, job_id)
    if snap is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return JobStatusRead.from_snapshot(snap)


@router.post("/{job_id}/reprocess", response_model=JobStatusRead, status_code=status.HTTP_202_ACCEPTED)
async def reprocess_receipt(
    job_id: str,
    store: JobStore = Depends(get_job_store),
    enqueue: Callable[[str, str], None] = Depends(get_enqueue),
) -> JobStatusRead:
    """Reset a job to PENDING and queue it again.

    The previous result is discarded; the new run produces a fresh
    receipt. A job that is still running cannot be reprocessed.
    """
    snap = await asyncio.to_thread(store.get, job_id)
    if snap is None:
        raise HTTPException(status_code=404, detail="Job not found")
    if not snap.image_ref:
        raise HTTPException(status_code=409, detail="Job has no stored image to reprocess")
    if snap.state == JobState.PROCESSING:
        raise HTTPException(status_code=409, detail="Job is currently processing")
    try:
        snap = await asyncio.to_thread(store.reset, job_id)
    except UnknownJobError:
        raise HTTPException(status_code=404, detail="Job not found")
    await asyncio.to_thread(enqueue, job_id, snap.image_ref)
    logger.info("Requeued job %s (image %s)", job_id, snap.image_ref)
    return JobStatusRead.from_snapshot(snap)
