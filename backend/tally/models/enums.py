"""Enumeration types used throughout the receipt pipeline.

When modifying these enums you should update the ``receipt_jobs``
status column and any event consumers so that new values are accepted
where appropriate.
"""

from enum import Enum


class JobState(str, Enum):
    """Processing states for a receipt job."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def progress(self) -> int:
        """Coarse progress derived purely from the state (not a continuous measure)."""
        return _PROGRESS[self]

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED)

    def can_transition_to(self, target: "JobState") -> bool:
        return target in _TRANSITIONS[self]


_PROGRESS = {
    JobState.PENDING: 0,
    JobState.PROCESSING: 50,
    JobState.COMPLETED: 100,
    JobState.FAILED: 0,
}

_TRANSITIONS = {
    JobState.PENDING: {JobState.PROCESSING},
    JobState.PROCESSING: {JobState.COMPLETED, JobState.FAILED},
    JobState.COMPLETED: set(),
    JobState.FAILED: set(),
}


class StreamEventType(str, Enum):
    """Event types emitted on the job status stream."""

    CONNECTED = "connected"
    STATUS = "status"
    COMPLETE = "complete"
    ERROR = "error"
