"""Live status events for one job.

``job_event_stream`` polls the job store and yields protocol events:

* ``{"type": "connected"}`` once, first
* ``{"type": "status", "status": <state>}`` whenever the state changes
* ``{"type": "complete", "status": "COMPLETED"|"FAILED", "data": {...}}``
  exactly once when the job is terminal, after which the stream ends

An unknown job id yields one ``error`` event and ends the stream. When
the subscriber goes away the generator stops at the next check; the
job itself is never affected.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Protocol

from tally.core.config import settings
from tally.models.enums import StreamEventType
from tally.models.schemas import JobSnapshot

logger = logging.getLogger(__name__)

DisconnectCheck = Callable[[], Awaitable[bool]]


class SnapshotReader(Protocol):
    def get(self, job_id: str) -> Optional[JobSnapshot]: ...


def format_sse(event: Dict[str, Any]) -> bytes:
    """Encode one event as a ``text/event-stream`` frame."""
    return f"data: {json.dumps(event)}\n\n".encode("utf-8")


async def _disconnected(check: Optional[DisconnectCheck]) -> bool:
    return bool(check is not None and await check())


async def job_event_stream(
    job_id: str,
    reader: SnapshotReader,
    *,
    poll_interval: Optional[float] = None,
    is_disconnected: Optional[DisconnectCheck] = None,
) -> AsyncIterator[Dict[str, Any]]:
    interval = settings.STATUS_POLL_INTERVAL_SECONDS if poll_interval is None else poll_interval
    yield {"type": StreamEventType.CONNECTED.value}

    last_state = None
    while True:
        if await _disconnected(is_disconnected):
            logger.info("[events] subscriber for job %s disconnected", job_id)
            return
        try:
            snap = await asyncio.to_thread(reader.get, job_id)
        except Exception:
            logger.exception("[events] failed to read job %s", job_id)
            yield {"type": StreamEventType.ERROR.value, "message": "Internal error"}
            return
        if snap is None:
            yield {"type": StreamEventType.ERROR.value, "message": "Job not found"}
            return

        if snap.state != last_state:
            last_state = snap.state
            yield {"type": StreamEventType.STATUS.value, "status": snap.state.value}
        if snap.state.is_terminal:
            yield {
                "type": StreamEventType.COMPLETE.value,
                "status": snap.state.value,
                "data": snap.terminal_data(),
            }
            return
        await asyncio.sleep(interval)
