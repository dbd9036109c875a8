"""Push notification of job transitions over Redis pub/sub.

Each transition is published as one JSON message on
``receipts:job:{job_id}``, using the same event shape as the HTTP status
stream (``status`` events, then a ``complete`` event for terminal
states). Publishing is best effort: the job state lives in the store,
so a lost message never loses information.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import redis

from tally.core.config import settings
from tally.models.enums import JobState, StreamEventType
from tally.models.schemas import FailureCause, ReconciledReceipt

logger = logging.getLogger(__name__)


def job_channel(job_id: str) -> str:
    return f"receipts:job:{job_id}"


def transition_event(
    job_id: str,
    state: JobState,
    receipt: Optional[ReconciledReceipt] = None,
    failure: Optional[FailureCause] = None,
) -> Dict[str, Any]:
    if not state.is_terminal:
        return {"type": StreamEventType.STATUS.value, "jobId": job_id, "status": state.value, "progress": state.progress}
    data: Dict[str, Any] = {}
    if state == JobState.COMPLETED and receipt is not None:
        data = receipt.summary()
    elif failure is not None:
        data = failure.summary()
    return {"type": StreamEventType.COMPLETE.value, "jobId": job_id, "status": state.value, "data": data}


class RedisStatusNotifier:
    """``StateListener`` that publishes every transition to Redis."""

    def __init__(self, client: Optional[redis.Redis] = None, url: Optional[str] = None) -> None:
        self._client = client or redis.Redis.from_url(url or settings.REDIS_URL, decode_responses=True)

    def on_state_change(self, job_id, state, receipt=None, failure=None) -> None:
        payload = transition_event(job_id, state, receipt=receipt, failure=failure)
        try:
            self._client.publish(job_channel(job_id), json.dumps(payload))
        except redis.RedisError as exc:
            logger.warning("[events] publish failed for job %s (%s): %s", job_id, state.value, exc)

    def close(self) -> None:
        self._client.close()
