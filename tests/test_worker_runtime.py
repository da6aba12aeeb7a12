from __future__ import annotations

from report_api.queue_backend import NOTIFICATIONS_QUEUE, InMemoryNotificationQueue
from report_api.worker_runtime import NotificationWorker, create_notification_worker_from_env


def _enqueue(q: InMemoryNotificationQueue, job_type: str, **data) -> None:
    q.enqueue(job_type=job_type, data=data)


def test_worker_dispatches_by_job_type_and_acks():
    q = InMemoryNotificationQueue()
    seen: list[tuple[str, dict]] = []
    worker = NotificationWorker(
        queue_backend=q,
        handlers={
            "report-created": lambda data: seen.append(("created", data)),
            "report-updated": lambda data: seen.append(("updated", data)),
        },
    )
    _enqueue(q, "report-created", reportId="r1")
    _enqueue(q, "report-updated", reportId="r1", changes={"status": "draft"})

    result = worker.run_once()
    assert result["processed"] == 2
    assert result["succeeded"] == 2
    assert result["acked"] == 2
    assert seen == [("created", {"reportId": "r1"}), ("updated", {"reportId": "r1", "changes": {"status": "draft"}})]
    assert q.pending_count(queue_name=NOTIFICATIONS_QUEUE) == 0
    assert q.inflight_count() == 0


def test_worker_retries_then_gives_up():
    q = InMemoryNotificationQueue()
    calls: list[dict] = []

    def _flaky(data: dict) -> None:
        calls.append(data)
        raise RuntimeError("smtp down")

    worker = NotificationWorker(queue_backend=q, handlers={"report-created": _flaky}, max_retries=2)
    _enqueue(q, "report-created", reportId="r1")

    result = worker.run_once()
    assert len(calls) == 2
    assert result["processed"] == 2
    assert result["retrying"] == 1
    assert result["requeued"] == 1
    assert result["failed"] == 1
    assert q.pending_count(queue_name=NOTIFICATIONS_QUEUE) == 0
    assert q.inflight_count() == 0


def test_unknown_job_type_is_acked_as_failed():
    q = InMemoryNotificationQueue()
    worker = NotificationWorker(queue_backend=q)
    _enqueue(q, "report-exploded")

    result = worker.run_once()
    assert result["failed"] == 1
    assert result["acked"] == 1
    assert q.inflight_count() == 0


def test_default_handlers_cover_engine_notifications():
    q = InMemoryNotificationQueue()
    worker = NotificationWorker(queue_backend=q)
    _enqueue(q, "report-created", reportId="r1", title="Q4")
    _enqueue(q, "report-updated", reportId="r1", changes={"title": "Q5"})
    _enqueue(q, "attachment-uploaded", reportId="r1", attachmentId="a1")
    assert worker.run_once()["succeeded"] == 3


def test_run_once_respects_batch_limit():
    q = InMemoryNotificationQueue()
    worker = NotificationWorker(queue_backend=q, handlers={"x": lambda _data: None}, max_messages_per_iteration=2)
    for _ in range(3):
        _enqueue(q, "x")
    assert worker.run_once()["processed"] == 2
    assert q.pending_count(queue_name=NOTIFICATIONS_QUEUE) == 1
    assert worker.run_forever(stop_after_iterations=1)["processed"] == 1


def test_worker_reads_retry_config_from_env():
    worker = create_notification_worker_from_env(
        queue_backend=InMemoryNotificationQueue(),
        environ={"NOTIFY_MAX_RETRIES": "5", "NOTIFY_POLL_INTERVAL_MS": "50"},
    )
    assert worker.max_retries == 5
    assert worker.poll_interval_ms == 50
    assert create_notification_worker_from_env(queue_backend=InMemoryNotificationQueue(), environ={}).max_retries == 3
