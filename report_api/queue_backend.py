"""Process-local queue for fire-and-forget notification jobs."""

from __future__ import annotations

import os
import threading
import uuid
from collections import defaultdict, deque
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

NOTIFICATIONS_QUEUE = "notifications"


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class NotificationJob:
    job_id: str
    job_type: str
    data: dict[str, Any]
    queue_name: str = NOTIFICATIONS_QUEUE
    attempt: int = 0
    not_before: datetime = field(default_factory=_utcnow)
    enqueued_at: datetime = field(default_factory=_utcnow)

    def is_due(self, now: datetime) -> bool:
        return self.not_before <= now


class InMemoryNotificationQueue:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._pending: defaultdict[str, deque[NotificationJob]] = defaultdict(deque)
        self._leased: dict[str, NotificationJob] = {}

    def enqueue(
        self,
        *,
        job_type: str,
        data: dict[str, Any],
        queue_name: str = NOTIFICATIONS_QUEUE,
        delay_ms: int = 0,
    ) -> NotificationJob:
        job = NotificationJob(
            job_id=f"job-{uuid.uuid4().hex[:12]}",
            job_type=job_type,
            data=dict(data),
            queue_name=queue_name,
        )
        if delay_ms > 0:
            job.not_before = job.enqueued_at + timedelta(milliseconds=delay_ms)
        with self._lock:
            self._pending[queue_name].append(job)
        return job

    def dequeue(self, *, queue_name: str = NOTIFICATIONS_QUEUE) -> NotificationJob | None:
        """Lease the oldest due job; delayed jobs keep their place in line."""
        now = _utcnow()
        with self._lock:
            pending = self._pending[queue_name]
            for index, job in enumerate(pending):
                if job.is_due(now):
                    del pending[index]
                    self._leased[job.job_id] = job
                    return job
            return None

    def ack(self, *, job_id: str) -> bool:
        with self._lock:
            return self._leased.pop(job_id, None) is not None

    def nack(self, *, job_id: str, requeue: bool = True, delay_ms: int = 0) -> NotificationJob | None:
        with self._lock:
            job = self._leased.pop(job_id, None)
            if job is None:
                return None
            job.attempt += 1
            if requeue:
                job.not_before = _utcnow() + timedelta(milliseconds=max(0, delay_ms))
                self._pending[job.queue_name].appendleft(job)
            return job

    def pending_count(self, *, queue_name: str = NOTIFICATIONS_QUEUE) -> int:
        with self._lock:
            return len(self._pending.get(queue_name, ()))

    def inflight_count(self) -> int:
        with self._lock:
            return len(self._leased)

    def reset(self) -> None:
        with self._lock:
            self._pending.clear()
            self._leased.clear()


def create_queue_from_env(environ: Mapping[str, str] | None = None) -> InMemoryNotificationQueue:
    env = os.environ if environ is None else environ
    backend = env.get("QUEUE_BACKEND", "memory").strip().lower() or "memory"
    if backend != "memory":
        raise RuntimeError(f"unsupported queue backend: {backend}")
    return InMemoryNotificationQueue()
