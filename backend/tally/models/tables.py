"""SQLAlchemy ORM models for job state persistence.

A single table records one row per receipt job. The reconciled receipt
or the failure cause is stored as JSON next to the status so a reader
(the status stream, the status endpoint) can rebuild a ``JobSnapshot``
from one query.

If you extend or modify these models remember to call the ``init_db``
helper during development to recreate the tables.
"""

from __future__ import annotations

import datetime as dt

from sqlalchemy import Column, DateTime, Enum, JSON, String, Text

from tally.core.database import Base
from .enums import JobState


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc).replace(tzinfo=None)


class ReceiptJob(Base):
    """One asynchronous unit of work for one uploaded receipt image."""

    __tablename__ = "receipt_jobs"

    id = Column(String(64), primary_key=True, index=True)
    image_ref = Column(String, nullable=True)
    status = Column(Enum(JobState), nullable=False, default=JobState.PENDING, index=True)
    result = Column(JSON, nullable=True)
    error_type = Column(String(128), nullable=True)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
