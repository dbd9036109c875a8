import datetime as dt
from decimal import Decimal

import pytest

from tally.models.enums import JobState
from tally.models.schemas import FailureCause, ReconciledReceipt
from tally.services.job_store import InMemoryJobStore
from tally.services.status_stream import format_sse, job_event_stream


async def _collect(stream):
    return [event async for event in stream]


def _completed_store(job_id="job-1"):
    store = InMemoryJobStore()
    store.create(job_id, "u/receipt.png")
    store.on_state_change(job_id, JobState.PROCESSING)
    receipt = ReconciledReceipt(
        merchant_name="Corner Market",
        purchase_date=dt.date(2026, 10, 1),
        declared_total=Decimal("27.32"),
        computed_total=Decimal("25.53"),
        discrepancy=Decimal("1.79"),
        overall_confidence=0.8,
    )
    store.on_state_change(job_id, JobState.COMPLETED, receipt=receipt)
    return store


@pytest.mark.asyncio
async def test_completed_job_yields_connected_status_complete_then_closes():
    events = await _collect(job_event_stream("job-1", _completed_store(), poll_interval=0))
    assert [e["type"] for e in events] == ["connected", "status", "complete"]
    assert events[1] == {"type": "status", "status": "COMPLETED"}
    assert events[2]["status"] == "COMPLETED"
    assert events[2]["data"]["discrepancy"] == "1.79"
    assert events[2]["data"]["merchantName"] == "Corner Market"


@pytest.mark.asyncio
async def test_unknown_job_yields_error_and_closes():
    events = await _collect(job_event_stream("nope", InMemoryJobStore(), poll_interval=0))
    assert events == [{"type": "connected"}, {"type": "error", "message": "Job not found"}]


@pytest.mark.asyncio
async def test_status_changes_are_reported_once_each():
    store = InMemoryJobStore()
    store.create("job-2", "u/receipt.png")
    polls = {"n": 0}

    class AdvancingReader:
        def get(self, job_id):
            polls["n"] += 1
            if polls["n"] == 3:
                store.on_state_change(job_id, JobState.PROCESSING)
            if polls["n"] == 5:
                store.on_state_change(
                    job_id, JobState.FAILED, failure=FailureCause(error_type="ImageDecodeError", message="bad image")
                )
            return store.get(job_id)

    events = await _collect(job_event_stream("job-2", AdvancingReader(), poll_interval=0))
    assert events == [
        {"type": "connected"},
        {"type": "status", "status": "PENDING"},
        {"type": "status", "status": "PROCESSING"},
        {"type": "status", "status": "FAILED"},
        {"type": "complete", "status": "FAILED", "data": {"errorType": "ImageDecodeError", "error": "bad image"}},
    ]


@pytest.mark.asyncio
async def test_disconnect_closes_stream_without_touching_job():
    store = InMemoryJobStore()
    store.create("job-3", "u/receipt.png")
    checks = {"n": 0}

    async def is_disconnected():
        checks["n"] += 1
        return checks["n"] > 2

    events = await _collect(job_event_stream("job-3", store, poll_interval=0, is_disconnected=is_disconnected))
    assert events == [{"type": "connected"}, {"type": "status", "status": "PENDING"}]
    assert store.get("job-3").state == JobState.PENDING


@pytest.mark.asyncio
async def test_reader_failure_yields_internal_error():
    class Broken:
        def get(self, job_id):
            raise RuntimeError("database is locked")

    events = await _collect(job_event_stream("job-4", Broken(), poll_interval=0))
    assert events[-1] == {"type": "error", "message": "Internal error"}


def test_format_sse_frame():
    assert format_sse({"type": "connected"}) == b'data: {"type": "connected"}\n\n'
