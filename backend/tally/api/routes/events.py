from __future__ import annotations

"""Server-Sent Events (SSE) endpoint for job status.

``GET /api/v1/receipts/{job_id}/events`` streams the events produced by
``job_event_stream`` as ``data: {json}`` frames. The stream ends after
the terminal ``complete`` event, or right away when the client
disconnects.
"""

from typing import AsyncIterator

from fastapi import APIRouter, Depends, Request
from starlette.responses import StreamingResponse

from tally.api.dependencies import get_job_store
from tally.core.config import settings
from tally.services.job_store import JobStore
from tally.services.status_stream import format_sse, job_event_stream


router = APIRouter(prefix=f"{settings.API_V1_STR}/receipts", tags=["events"])


async def _sse_frames(job_id: str, store: JobStore, request: Request) -> AsyncIterator[bytes]:
    async for event in job_event_stream(
        job_id,
        store,
        poll_interval=settings.STATUS_POLL_INTERVAL_SECONDS,
        is_disconnected=request.is_disconnected,
    ):
        yield format_sse(event)


@router.get("/{job_id}/events")
async def job_events(job_id: str, request: Request, store: JobStore = Depends(get_job_store)):
    """Live status stream for one receipt job."""
    headers = {
        "Cache-Control": "no-cache",
        "Connection": "keep-alive",
        "X-Accel-Buffering": "no",  # Disable nginx buffering
    }
    return StreamingResponse(_sse_frames(job_id, store, request), media_type="text/event-stream", headers=headers)
