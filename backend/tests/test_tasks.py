import threading
import time
import types

import tally.core.tasks as tasks
from tally.models.enums import JobState
from tally.services.pipeline import JobOrchestrator, ReceiptPipeline

from fakes import DictStorage, RecordingListener, StaticExtractor


def test_enqueue_sends_job_and_image_ref(monkeypatch):
    sent = []
    monkeypatch.setattr(tasks, "process_receipt", types.SimpleNamespace(send=lambda *args: sent.append(args)))
    tasks.enqueue_receipt("job-1", "u/receipt.png")
    assert sent == [("job-1", "u/receipt.png")]


def test_actor_runs_pipeline_once(monkeypatch, png_bytes, milk_and_bread):
    listener = RecordingListener()
    orchestrator = JobOrchestrator(
        ReceiptPipeline(StaticExtractor(milk_and_bread)),
        DictStorage({"u/receipt.png": png_bytes}),
        listeners=[listener],
    )
    monkeypatch.setattr(tasks, "build_orchestrator", lambda: orchestrator)
    tasks.process_receipt.fn("job-1", "u/receipt.png")
    assert listener.states("job-1") == [JobState.PENDING, JobState.PROCESSING, JobState.COMPLETED]


def test_actor_records_failure_without_raising(monkeypatch):
    listener = RecordingListener()
    orchestrator = JobOrchestrator(ReceiptPipeline(StaticExtractor()), DictStorage(), listeners=[listener])
    monkeypatch.setattr(tasks, "build_orchestrator", lambda: orchestrator)
    tasks.process_receipt.fn("job-2", "u/missing.png")
    assert listener.states("job-2")[-1] == JobState.FAILED
    assert listener.events[-1][3].message == "File not found: u/missing.png"


def test_actor_does_not_retry():
    assert tasks.process_receipt.options["max_retries"] == 0


def test_actor_closes_clients_after_each_run(monkeypatch, png_bytes, milk_and_bread):
    closed = []

    class ClosingExtractor(StaticExtractor):
        async def aclose(self):
            closed.append("extractor")

    class ClosingListener(RecordingListener):
        def close(self):
            closed.append("listener")

    monkeypatch.setattr(
        tasks,
        "build_orchestrator",
        lambda: JobOrchestrator(
            ReceiptPipeline(ClosingExtractor(milk_and_bread)),
            DictStorage({"u/receipt.png": png_bytes}),
            listeners=[ClosingListener()],
        ),
    )
    tasks.process_receipt.fn("job-1", "u/receipt.png")
    tasks.process_receipt.fn("job-2", "u/missing.png")
    assert closed == ["extractor", "listener", "extractor", "listener"]


def test_concurrent_messages_share_one_process_limit(monkeypatch, png_bytes, milk_and_bread):
    lock = threading.Lock()
    running = {"now": 0, "peak": 0}

    class SlowExtractor(StaticExtractor):
        async def parse(self, image, text=None):
            with lock:
                running["now"] += 1
                running["peak"] = max(running["peak"], running["now"])
            time.sleep(0.05)
            with lock:
                running["now"] -= 1
            return await super().parse(image, text)

    monkeypatch.setattr(tasks, "_job_slots", threading.BoundedSemaphore(2))
    monkeypatch.setattr(
        tasks,
        "build_orchestrator",
        lambda: JobOrchestrator(
            ReceiptPipeline(SlowExtractor(milk_and_bread)),
            DictStorage({"u/receipt.png": png_bytes}),
        ),
    )
    threads = [
        threading.Thread(target=tasks.process_receipt.fn, args=(f"job-{i}", "u/receipt.png")) for i in range(6)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert 0 < running["peak"] <= 2
