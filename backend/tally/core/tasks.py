"""Dramatiq task definitions for background processing.

The queue delivers one ``(job_id, image_ref)`` pair per message. The
actor builds an orchestrator wired to the job store and the Redis
notifier and runs the pipeline once. It never retries: a failed job is
recorded as ``FAILED`` and resubmitting it is the caller's decision.
Delivery is at-least-once, which is fine because re-running a job id
simply starts it over from ``PENDING``.

To run these tasks start a worker pointed at ``tally.worker``:

```bash
dramatiq tally.worker --processes 1 --threads 5
```

At most ``WORKER_CONCURRENCY`` jobs run at once per process; extra
threads wait for a slot. The broker URL defaults to ``REDIS_URL``;
override it with ``DRAMATIQ_BROKER_URL``.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time

import dramatiq
from dramatiq.brokers.redis import RedisBroker
from dramatiq.middleware import AgeLimit, ShutdownNotifications, TimeLimit

from tally.core.config import settings
from tally.core.observability import sentry_breadcrumb, sentry_metric_inc
from tally.models.schemas import FailureCause
from tally.services.job_store import SqlJobStore
from tally.services.pipeline import JobOrchestrator, build_pipeline
from tally.services.status_notifier import RedisStatusNotifier
from tally.services.storage_service import ObjectStorage

logger = logging.getLogger(__name__)

# OCR and provider calls are bounded individually; the actor limit only
# catches a job that hangs outside them.
JOB_TIME_LIMIT_MS = int((settings.OCR_TIMEOUT_SECONDS + settings.EXTRACTION_TIMEOUT_SECONDS + 60) * 1000)

logger.info("Configuring Dramatiq with Redis URL: %s", settings.broker_url)
redis_broker = RedisBroker(url=settings.broker_url)


def _has_mw(broker, mw_cls) -> bool:
    return any(isinstance(m, mw_cls) for m in broker.middleware)


for _mw in (AgeLimit, TimeLimit, ShutdownNotifications):
    if not _has_mw(redis_broker, _mw):
        redis_broker.add_middleware(_mw())

dramatiq.set_broker(redis_broker)

# Export the broker for Dramatiq CLI
broker = redis_broker


# One slot per concurrently running job across all worker threads of this process.
_job_slots = threading.BoundedSemaphore(settings.WORKER_CONCURRENCY)


def build_orchestrator() -> JobOrchestrator:
    """Wire an orchestrator to persistent job state, push notifications and object storage."""
    return JobOrchestrator(
        build_pipeline(),
        ObjectStorage(),
        listeners=[SqlJobStore(), RedisStatusNotifier()],
    )


async def _run_once(job_id: str, image_ref: str):
    # Clients bind to the event loop of this message, so they are built and closed per run.
    orchestrator = build_orchestrator()
    try:
        return await orchestrator.run_pipeline(job_id, image_ref)
    finally:
        await orchestrator.aclose()


@dramatiq.actor(max_retries=0, time_limit=JOB_TIME_LIMIT_MS)
def process_receipt(job_id: str, image_ref: str) -> None:
    """Run the receipt pipeline for one job."""
    sentry_breadcrumb("task", "process_receipt", data={"job_id": job_id, "image_ref": image_ref})
    with _job_slots:
        started = time.monotonic()
        outcome = asyncio.run(_run_once(job_id, image_ref))
    duration_ms = int((time.monotonic() - started) * 1000)
    if isinstance(outcome, FailureCause):
        logger.warning("Job %s failed after %dms: %s", job_id, duration_ms, outcome.message)
    else:
        logger.info("Job %s completed in %dms", job_id, duration_ms)
    sentry_metric_inc("tasks.process_receipt.duration_ms", value=duration_ms)


def enqueue_receipt(job_id: str, image_ref: str) -> None:
    """Hand a job to the queue."""
    process_receipt.send(job_id, image_ref)
