"""Common dependencies for FastAPI routes.

Routes receive the job store, the extraction provider and the enqueue
function through these helpers so tests can swap each of them with
``app.dependency_overrides``.
"""

from __future__ import annotations

from typing import Callable, Optional

from tally.services.extractors import ReceiptExtractor, create_extractor
from tally.services.job_store import JobStore, SqlJobStore

# -----------------------------------------------------------------------------
# Shared resources

_job_store: Optional[JobStore] = None
_extractor: Optional[ReceiptExtractor] = None


def get_job_store() -> JobStore:
    """Return the process-wide SQL job store."""
    global _job_store
    if _job_store is None:
        _job_store = SqlJobStore()
    return _job_store


def get_extractor() -> ReceiptExtractor:
    """Return the configured extraction provider (used for health reporting)."""
    global _extractor
    if _extractor is None:
        _extractor = create_extractor()
    return _extractor


def get_enqueue() -> Callable[[str, str], None]:
    """Return the function that hands a job to the worker queue."""
    # Imported lazily so the API only configures the broker when it enqueues.
    from tally.core.tasks import enqueue_receipt

    return enqueue_receipt
