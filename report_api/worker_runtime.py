from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from report_api.queue_backend import NOTIFICATIONS_QUEUE, InMemoryNotificationQueue, NotificationJob

logger = logging.getLogger(__name__)

JobHandler = Callable[[dict[str, Any]], None]


@dataclass
class WorkerRunStats:
    processed: int = 0
    succeeded: int = 0
    retrying: int = 0
    failed: int = 0
    acked: int = 0
    requeued: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "retrying": self.retrying,
            "failed": self.failed,
            "acked": self.acked,
            "requeued": self.requeued,
        }


def _log_report_created(payload: dict[str, Any]) -> None:
    logger.info("notify report_created report_id=%s title=%s", payload.get("reportId"), payload.get("title"))


def _log_report_updated(payload: dict[str, Any]) -> None:
    logger.info(
        "notify report_updated report_id=%s changed=%s",
        payload.get("reportId"),
        sorted((payload.get("changes") or {}).keys()),
    )


def _log_attachment_uploaded(payload: dict[str, Any]) -> None:
    logger.info(
        "notify attachment_uploaded report_id=%s attachment_id=%s",
        payload.get("reportId"),
        payload.get("attachmentId"),
    )


DEFAULT_HANDLERS: dict[str, JobHandler] = {
    "report-created": _log_report_created,
    "report-updated": _log_report_updated,
    "attachment-uploaded": _log_attachment_uploaded,
}


class NotificationWorker:
    """Drains notification jobs; nothing upstream waits on the outcome."""

    def __init__(
        self,
        *,
        queue_backend: InMemoryNotificationQueue,
        handlers: Mapping[str, JobHandler] | None = None,
        queue_name: str = NOTIFICATIONS_QUEUE,
        max_retries: int = 3,
        retry_delay_ms: int = 0,
        max_messages_per_iteration: int = 50,
        poll_interval_ms: int = 200,
    ) -> None:
        self.queue_backend = queue_backend
        self.handlers = dict(DEFAULT_HANDLERS if handlers is None else handlers)
        self.queue_name = queue_name
        self.max_retries = max(0, int(max_retries))
        self.retry_delay_ms = max(0, int(retry_delay_ms))
        self.max_messages_per_iteration = max(1, int(max_messages_per_iteration))
        self.poll_interval_ms = max(1, int(poll_interval_ms))

    def _process_job(self, job: NotificationJob, stats: WorkerRunStats) -> None:
        stats.processed += 1
        handler = self.handlers.get(job.job_type)
        if handler is None:
            logger.warning("unknown job type job_id=%s type=%s", job.job_id, job.job_type)
            self._give_up(job, stats)
            return

        try:
            handler(dict(job.data))
        except Exception as exc:
            attempts = job.attempt + 1
            if attempts < self.max_retries:
                logger.warning(
                    "job failed, will retry job_id=%s type=%s attempt=%d error=%s",
                    job.job_id,
                    job.job_type,
                    attempts,
                    exc,
                )
                self.queue_backend.nack(job_id=job.job_id, requeue=True, delay_ms=self.retry_delay_ms)
                stats.requeued += 1
                stats.retrying += 1
                return
            logger.error(
                "job failed permanently job_id=%s type=%s attempts=%d error=%s",
                job.job_id,
                job.job_type,
                attempts,
                exc,
            )
            self._give_up(job, stats)
            return

        self.queue_backend.ack(job_id=job.job_id)
        stats.acked += 1
        stats.succeeded += 1
        logger.info("job completed job_id=%s type=%s", job.job_id, job.job_type)

    def _give_up(self, job: NotificationJob, stats: WorkerRunStats) -> None:
        self.queue_backend.ack(job_id=job.job_id)
        stats.acked += 1
        stats.failed += 1

    def run_once(self) -> dict[str, int]:
        stats = WorkerRunStats()
        while stats.processed < self.max_messages_per_iteration:
            job = self.queue_backend.dequeue(queue_name=self.queue_name)
            if job is None:
                break
            self._process_job(job, stats)
        return stats.as_dict()

    def run_forever(self, *, stop_after_iterations: int | None = None) -> dict[str, int]:
        totals = WorkerRunStats()
        iterations = 0
        while stop_after_iterations is None or iterations < stop_after_iterations:
            iterations += 1
            result = self.run_once()
            for name, value in result.items():
                setattr(totals, name, getattr(totals, name) + value)
            if result["processed"] == 0:
                time.sleep(self.poll_interval_ms / 1000.0)
        return totals.as_dict()


def create_notification_worker_from_env(
    *,
    queue_backend: InMemoryNotificationQueue,
    environ: Mapping[str, str] | None = None,
) -> NotificationWorker:
    env = os.environ if environ is None else environ
    raw_retries = env.get("NOTIFY_MAX_RETRIES", "").strip()
    raw_poll = env.get("NOTIFY_POLL_INTERVAL_MS", "").strip()
    return NotificationWorker(
        queue_backend=queue_backend,
        max_retries=int(raw_retries) if raw_retries.isdigit() else 3,
        poll_interval_ms=int(raw_poll) if raw_poll.isdigit() else 200,
    )
