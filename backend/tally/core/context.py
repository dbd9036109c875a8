"""Per-invocation pipeline context.

A ``PipelineContext`` travels with one job through every stage instead of
relying on module-level state. It carries the job id, a correlation id
for tying log lines together, a logger adapter that stamps both ids on
each record, and the reference date that temporal validation measures
against. Two concurrent jobs never share a context.
"""

from __future__ import annotations

import datetime as dt
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, MutableMapping, Optional


logger = logging.getLogger("tally.pipeline")


class JobLogAdapter(logging.LoggerAdapter):
    """Prefix messages with ``[job=<id> cid=<correlation>]`` and attach both as extras."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]):
        extra = dict(self.extra or {})
        kwargs.setdefault("extra", {}).update(extra)
        return f"[job={extra.get('job_id')} cid={extra.get('correlation_id')}] {msg}", kwargs


@dataclass(frozen=True)
class PipelineContext:
    job_id: str
    correlation_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    today: dt.date = field(default_factory=dt.date.today)
    sink: Optional[logging.Logger] = None

    @property
    def log(self) -> JobLogAdapter:
        return JobLogAdapter(
            self.sink or logger,
            {"job_id": self.job_id, "correlation_id": self.correlation_id},
        )

    @classmethod
    def for_job(cls, job_id: str, *, today: dt.date | None = None, sink: logging.Logger | None = None) -> "PipelineContext":
        return cls(job_id=job_id, today=today or dt.date.today(), sink=sink)
