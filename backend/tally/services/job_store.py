"""Job state persistence.

The store is the persistence collaborator of the orchestrator: it is a
``StateListener`` that records every transition, and a reader that the
status endpoint and the status stream poll.

``PENDING`` always (re)starts a job: it creates the row if needed and
clears any previous receipt or failure, which is what makes re-running
a job id safe. Every other transition must be legal from the stored
state, so a terminal job is never moved again except through a fresh
``PENDING``.
"""

from __future__ import annotations

import datetime as dt
import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session, sessionmaker

from tally.core.database import get_session_factory
from tally.models.enums import JobState
from tally.models.schemas import FailureCause, JobSnapshot, ReconciledReceipt
from tally.models.tables import ReceiptJob

logger = logging.getLogger(__name__)


class InvalidTransitionError(ValueError):
    """A transition that the job state machine does not allow."""


class UnknownJobError(KeyError):
    """No job is stored under the given id."""


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc).replace(tzinfo=None)


def _check_transition(job_id: str, current: Optional[JobState], target: JobState) -> None:
    if target == JobState.PENDING:
        return
    if current is None:
        raise UnknownJobError(job_id)
    if not current.can_transition_to(target):
        raise InvalidTransitionError(f"Job {job_id}: {current.value} -> {target.value} is not allowed")


class JobStore(ABC):
    """Read/write access to persisted job state."""

    @abstractmethod
    def create(self, job_id: str, image_ref: Optional[str] = None) -> JobSnapshot:
        """Insert a new job in ``PENDING`` (or reset an existing one)."""

    @abstractmethod
    def get(self, job_id: str) -> Optional[JobSnapshot]:
        ...

    @abstractmethod
    def on_state_change(
        self,
        job_id: str,
        state: JobState,
        receipt: Optional[ReconciledReceipt] = None,
        failure: Optional[FailureCause] = None,
    ) -> None:
        ...

    def reset(self, job_id: str) -> JobSnapshot:
        """Put an existing job back to ``PENDING`` for reprocessing."""
        snap = self.get(job_id)
        if snap is None:
            raise UnknownJobError(job_id)
        return self.create(job_id, snap.image_ref)


class InMemoryJobStore(JobStore):
    """Process-local store, used in tests and single-process setups."""

    def __init__(self) -> None:
        self._jobs: Dict[str, JobSnapshot] = {}
        self._lock = threading.Lock()
        self.history: List[Tuple[str, JobState]] = []

    def create(self, job_id: str, image_ref: Optional[str] = None) -> JobSnapshot:
        with self._lock:
            return self._put_pending(job_id, image_ref)

    def _put_pending(self, job_id: str, image_ref: Optional[str]) -> JobSnapshot:
        now = _utcnow()
        previous = self._jobs.get(job_id)
        snap = JobSnapshot(
            job_id=job_id,
            state=JobState.PENDING,
            image_ref=image_ref or (previous.image_ref if previous else None),
            created_at=previous.created_at if previous else now,
            updated_at=now,
        )
        self._jobs[job_id] = snap
        return snap

    def get(self, job_id: str) -> Optional[JobSnapshot]:
        with self._lock:
            return self._jobs.get(job_id)

    def on_state_change(self, job_id, state, receipt=None, failure=None) -> None:
        with self._lock:
            current = self._jobs.get(job_id)
            _check_transition(job_id, current.state if current else None, state)
            self.history.append((job_id, state))
            if state == JobState.PENDING:
                self._put_pending(job_id, None)
                return
            self._jobs[job_id] = current.model_copy(
                update={
                    "state": state,
                    "receipt": receipt if state == JobState.COMPLETED else None,
                    "failure": failure if state == JobState.FAILED else None,
                    "updated_at": _utcnow(),
                }
            )


class SqlJobStore(JobStore):
    """SQLAlchemy-backed store on the ``receipt_jobs`` table."""

    def __init__(self, session_factory: Optional[sessionmaker] = None) -> None:
        self._session_factory = session_factory or get_session_factory()

    @staticmethod
    def _snapshot(row: ReceiptJob) -> JobSnapshot:
        receipt = None
        failure = None
        if row.status == JobState.COMPLETED and row.result:
            receipt = ReconciledReceipt.model_validate(row.result)
        if row.status == JobState.FAILED and row.error_type:
            failure = FailureCause(error_type=row.error_type, message=row.error or "")
        return JobSnapshot(
            job_id=row.id,
            state=row.status,
            image_ref=row.image_ref,
            receipt=receipt,
            failure=failure,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    @staticmethod
    def _reset_row(db: Session, job_id: str, image_ref: Optional[str]) -> ReceiptJob:
        row = db.get(ReceiptJob, job_id)
        if row is None:
            row = ReceiptJob(id=job_id, image_ref=image_ref, status=JobState.PENDING)
            db.add(row)
        else:
            row.status = JobState.PENDING
            if image_ref:
                row.image_ref = image_ref
            row.result = None
            row.error = None
            row.error_type = None
            row.started_at = None
            row.completed_at = None
            row.updated_at = _utcnow()
        return row

    def create(self, job_id: str, image_ref: Optional[str] = None) -> JobSnapshot:
        with self._session_factory() as db:
            row = self._reset_row(db, job_id, image_ref)
            db.commit()
            db.refresh(row)
            return self._snapshot(row)

    def get(self, job_id: str) -> Optional[JobSnapshot]:
        with self._session_factory() as db:
            row = db.get(ReceiptJob, job_id)
            return self._snapshot(row) if row is not None else None

    def on_state_change(self, job_id, state, receipt=None, failure=None) -> None:
        with self._session_factory() as db:
            if state == JobState.PENDING:
                self._reset_row(db, job_id, None)
                db.commit()
                return
            row = db.get(ReceiptJob, job_id)
            _check_transition(job_id, row.status if row is not None else None, state)
            now = _utcnow()
            row.status = state
            row.updated_at = now
            if state == JobState.PROCESSING:
                row.started_at = now
            elif state == JobState.COMPLETED:
                row.result = receipt.model_dump(mode="json") if receipt is not None else None
                row.completed_at = now
            elif state == JobState.FAILED:
                row.error_type = failure.error_type if failure else "PipelineError"
                row.error = failure.message if failure else None
                row.completed_at = now
            db.commit()
        logger.debug("[jobs] %s -> %s", job_id, state.value)
