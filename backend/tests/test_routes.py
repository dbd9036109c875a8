import datetime as dt
import json
from decimal import Decimal

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from tally.api.dependencies import get_enqueue, get_extractor, get_job_store
from tally.api.routes.events import router as events_router
from tally.api.routes.health import router as health_router
from tally.api.routes.receipts import router as receipts_router
from tally.models.enums import JobState
from tally.models.schemas import FailureCause, ReconciledReceipt
from tally.services.job_store import InMemoryJobStore

from fakes import StaticExtractor


@pytest.fixture
def store():
    return InMemoryJobStore()


@pytest.fixture
def enqueued():
    return []


@pytest.fixture
def client(store, enqueued):
    app = FastAPI()
    app.include_router(health_router)
    app.include_router(events_router)
    app.include_router(receipts_router)
    app.dependency_overrides[get_job_store] = lambda: store
    app.dependency_overrides[get_enqueue] = lambda: (lambda job_id, ref: enqueued.append((job_id, ref)))
    app.dependency_overrides[get_extractor] = lambda: StaticExtractor(name="static")
    with TestClient(app) as c:
        yield c


def _complete(store, job_id="job-1"):
    store.create(job_id, "u/receipt.png")
    store.on_state_change(job_id, JobState.PROCESSING)
    receipt = ReconciledReceipt(
        merchant_name="Corner Market",
        purchase_date=dt.date(2026, 10, 1),
        declared_total=Decimal("8.97"),
        computed_total=Decimal("8.97"),
        discrepancy=Decimal("0.00"),
        overall_confidence=0.9,
    )
    store.on_state_change(job_id, JobState.COMPLETED, receipt=receipt)


def _frames(body: str):
    return [json.loads(chunk[len("data: "):]) for chunk in body.split("\n\n") if chunk.startswith("data: ")]


def test_events_for_completed_job(client, store):
    _complete(store)
    resp = client.get("/api/v1/receipts/job-1/events")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/event-stream")
    assert resp.headers["cache-control"] == "no-cache"
    events = _frames(resp.text)
    assert [e["type"] for e in events] == ["connected", "status", "complete"]
    assert events[2]["data"]["computedTotal"] == "8.97"


def test_events_for_unknown_job(client):
    events = _frames(client.get("/api/v1/receipts/missing/events").text)
    assert events[-1] == {"type": "error", "message": "Job not found"}


def test_status_endpoint(client, store):
    _complete(store)
    body = client.get("/api/v1/receipts/job-1").json()
    assert body["status"] == "COMPLETED"
    assert body["progress"] == 100
    assert body["receipt"]["merchant_name"] == "Corner Market"
    assert client.get("/api/v1/receipts/nope").status_code == 404


def test_failed_job_reports_error(client, store):
    store.create("job-2", "u/bad.png")
    store.on_state_change("job-2", JobState.PROCESSING)
    store.on_state_change("job-2", JobState.FAILED, failure=FailureCause(error_type="ImageDecodeError", message="cannot identify image"))
    body = client.get("/api/v1/receipts/job-2").json()
    assert body["status"] == "FAILED"
    assert body["error"] == "cannot identify image"
    assert body["error_type"] == "ImageDecodeError"


def test_reprocess_resets_and_enqueues(client, store, enqueued):
    _complete(store)
    resp = client.post("/api/v1/receipts/job-1/reprocess")
    assert resp.status_code == 202
    assert resp.json()["status"] == "PENDING"
    assert resp.json()["receipt"] is None
    assert enqueued == [("job-1", "u/receipt.png")]
    assert store.get("job-1").state == JobState.PENDING


def test_reprocess_rejections(client, store, enqueued):
    assert client.post("/api/v1/receipts/nope/reprocess").status_code == 404
    store.create("busy", "u/busy.png")
    store.on_state_change("busy", JobState.PROCESSING)
    assert client.post("/api/v1/receipts/busy/reprocess").status_code == 409
    assert enqueued == []


def test_health_reports_provider(client):
    body = client.get("/health").json()
    assert body["status"] == "healthy"
    assert body["provider"]["name"] == "static"
    assert body["provider"]["healthy"] is True
