import json
from decimal import Decimal

import redis

from tally.models.enums import JobState
from tally.models.schemas import FailureCause, ReconciledReceipt
from tally.services.status_notifier import RedisStatusNotifier, job_channel, transition_event


class FakeRedis:
    def __init__(self, fail=False):
        self.fail = fail
        self.published = []

    def publish(self, channel, message):
        if self.fail:
            raise redis.ConnectionError("redis down")
        self.published.append((channel, json.loads(message)))
        return 1


def test_status_transition_payload():
    notifier = RedisStatusNotifier(client=FakeRedis())
    notifier.on_state_change("job-1", JobState.PROCESSING)
    channel, payload = notifier._client.published[0]
    assert channel == job_channel("job-1") == "receipts:job:job-1"
    assert payload == {"type": "status", "jobId": "job-1", "status": "PROCESSING", "progress": 50}


def test_completed_transition_carries_summary():
    receipt = ReconciledReceipt(computed_total=Decimal("4.50"), declared_total=Decimal("4.50"), discrepancy=Decimal("0.00"))
    event = transition_event("job-1", JobState.COMPLETED, receipt=receipt)
    assert event["type"] == "complete"
    assert event["data"]["computedTotal"] == "4.50"


def test_failed_transition_carries_error():
    event = transition_event("job-1", JobState.FAILED, failure=FailureCause(error_type="StorageError", message="File not found: x"))
    assert event["data"] == {"errorType": "StorageError", "error": "File not found: x"}


def test_publish_failure_is_logged_not_raised(caplog):
    notifier = RedisStatusNotifier(client=FakeRedis(fail=True))
    notifier.on_state_change("job-1", JobState.PENDING)
    assert "publish failed" in caplog.text


def test_close_releases_client():
    class Closable(FakeRedis):
        closed = False

        def close(self):
            self.closed = True

    client = Closable()
    RedisStatusNotifier(client=client).close()
    assert client.closed
