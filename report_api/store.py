from __future__ import annotations

import copy
import json
import logging
import os
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from report_api.access_policy import FINALIZED, enforce_can_mutate
from report_api.attachments import AttachmentManager
from report_api.errors import (
    Forbidden,
    IdempotencyConflict,
    InvalidToken,
    NotFound,
    TokenRequired,
    ValidationFailed,
)
from report_api.projections import build_view
from report_api.queue_backend import InMemoryNotificationQueue, create_queue_from_env
from report_api.repositories.reports import InMemoryReportsRepository
from report_api.schemas import CreateReportRequest, UpdateReportRequest

logger = logging.getLogger(__name__)

AUDIT_SNAPSHOT_FIELDS = ("title", "status", "description", "metadata", "tags")


@dataclass
class IdempotencyRecord:
    fingerprint: str
    data: dict[str, Any]
    stored_at: datetime


@dataclass
class KeyLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    holders: int = 0


class ReportStore:
    IDEMPOTENCY_TTL_HOURS = 24

    def __init__(
        self,
        *,
        reports: InMemoryReportsRepository | None = None,
        attachments: AttachmentManager | None = None,
        queue_backend: InMemoryNotificationQueue | None = None,
    ) -> None:
        self.idempotency_ttl_hours = self._env_int(
            "IDEMPOTENCY_TTL_HOURS",
            default=self.IDEMPOTENCY_TTL_HOURS,
            minimum=1,
        )
        self.reports = reports or InMemoryReportsRepository()
        self.attachments = attachments or AttachmentManager()
        self.queue_backend = queue_backend or create_queue_from_env()
        self._idempotency_lock = threading.Lock()
        self._idempotency_records: dict[tuple[str, str], IdempotencyRecord] = {}
        self._idempotency_key_locks: dict[tuple[str, str], KeyLock] = {}

    @staticmethod
    def _env_int(name: str, *, default: int, minimum: int = 0) -> int:
        raw = os.environ.get(name, "").strip()
        if not raw:
            return default
        try:
            value = int(raw)
        except ValueError:
            return default
        return max(minimum, value)

    def reset(self) -> None:
        self.idempotency_ttl_hours = self._env_int(
            "IDEMPOTENCY_TTL_HOURS",
            default=self.IDEMPOTENCY_TTL_HOURS,
            minimum=1,
        )
        self.reports.reset()
        self.attachments = AttachmentManager()
        self.attachments.reset()
        self.queue_backend.reset()
        with self._idempotency_lock:
            self._idempotency_records.clear()
            self._idempotency_key_locks.clear()

    @staticmethod
    def _fingerprint(payload: dict[str, Any]) -> str:
        return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=True)

    @staticmethod
    def _utcnow() -> datetime:
        return datetime.now(UTC)

    @classmethod
    def _utcnow_iso(cls) -> str:
        return cls._utcnow().isoformat()

    def _notify(self, job_type: str, data: dict[str, Any]) -> None:
        try:
            self.queue_backend.enqueue(job_type=job_type, data=data)
        except Exception:
            # Notifications are best-effort and must not fail the request.
            logger.warning("notification enqueue failed type=%s", job_type, exc_info=True)

    def _purge_expired_idempotency_locked(self) -> None:
        cutoff = self._utcnow() - timedelta(hours=self.idempotency_ttl_hours)
        expired = [key for key, record in self._idempotency_records.items() if record.stored_at < cutoff]
        for key in expired:
            del self._idempotency_records[key]

    def _cached_idempotent(self, key: tuple[str, str], fingerprint: str) -> dict[str, Any] | None:
        with self._idempotency_lock:
            self._purge_expired_idempotency_locked()
            record = self._idempotency_records.get(key)
            if record is None:
                return None
            if record.fingerprint != fingerprint:
                raise IdempotencyConflict()
            return copy.deepcopy(record.data)

    def run_idempotent(
        self,
        *,
        endpoint: str,
        idempotency_key: str,
        payload: dict[str, Any],
        execute: Callable[[], dict[str, Any]],
    ) -> dict[str, Any]:
        """Run ``execute`` once per (endpoint, key); replays return the cached result.

        Only successful results are cached. Concurrent calls with the same key
        wait on a per-key lock, so ``execute`` never runs twice for one key.
        """
        key = (endpoint, idempotency_key)
        fingerprint = self._fingerprint(payload)
        cached = self._cached_idempotent(key, fingerprint)
        if cached is not None:
            logger.info("idempotent replay endpoint=%s key=%s", endpoint, idempotency_key)
            return cached

        with self._idempotency_lock:
            key_lock = self._idempotency_key_locks.setdefault(key, KeyLock())
            key_lock.holders += 1
        try:
            with key_lock.lock:
                cached = self._cached_idempotent(key, fingerprint)
                if cached is not None:
                    return cached
                data = execute()
                with self._idempotency_lock:
                    self._idempotency_records[key] = IdempotencyRecord(
                        fingerprint=fingerprint,
                        data=copy.deepcopy(data),
                        stored_at=self._utcnow(),
                    )
                return data
        finally:
            # The lock entry lives only while some caller holds or awaits it.
            with self._idempotency_lock:
                key_lock.holders -= 1
                if key_lock.holders == 0:
                    self._idempotency_key_locks.pop(key, None)

    def create_report(self, *, payload: CreateReportRequest, user_id: str) -> dict[str, Any]:
        fields = payload.to_fields()
        logger.info("creating report title=%s owner_id=%s user_id=%s", fields["title"], fields["ownerId"], user_id)
        audit_entry = {
            "timestamp": self._utcnow_iso(),
            "userId": user_id,
            "action": "CREATED",
            "after": copy.deepcopy(fields),
        }
        report = self.reports.create(report={**fields, "auditLog": [audit_entry]})
        self._notify(
            "report-created",
            {"reportId": report["id"], "userId": user_id, "title": report["title"]},
        )
        return report

    def get_report(self, *, report_id: str) -> dict[str, Any]:
        return self.reports.get_or_raise(report_id=report_id)

    def update_report(
        self,
        *,
        report_id: str,
        command: UpdateReportRequest,
        user_id: str,
        role: str,
        expected_version: int | None = None,
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        raw_payload = command.raw_payload()
        changes = command.to_fields()

        def _apply(current: dict[str, Any]) -> dict[str, Any]:
            enforce_can_mutate(role, current["status"], command.forced)
            if current["status"] == FINALIZED:
                logger.warning(
                    "forced edit on finalized report report_id=%s user_id=%s role=%s",
                    report_id,
                    user_id,
                    role,
                )
            audit_metadata: dict[str, Any] = {"forced": command.forced}
            if idempotency_key:
                audit_metadata["idempotencyKey"] = idempotency_key
            audit_entry = {
                "timestamp": self._utcnow_iso(),
                "userId": user_id,
                "action": "UPDATED",
                "before": {name: current[name] for name in AUDIT_SNAPSHOT_FIELDS if name in current},
                "after": raw_payload,
                "metadata": audit_metadata,
            }
            return {**changes, "auditLog": [*current.get("auditLog", []), audit_entry]}

        updated = self.reports.update_with(
            report_id=report_id,
            mutate=_apply,
            expected_version=expected_version,
        )
        logger.info("report updated report_id=%s version=%s user_id=%s", report_id, updated["version"], user_id)
        self._notify(
            "report-updated",
            {"reportId": report_id, "userId": user_id, "changes": changes},
        )
        return updated

    def get_report_with_view(
        self,
        *,
        report_id: str,
        view: str | None = None,
        include: list[str] | None = None,
        page: int | None = None,
        size: int | None = None,
        sort_by: str | None = None,
        filter_priority: str | None = None,
    ) -> dict[str, Any]:
        if page is not None and page < 0:
            raise ValidationFailed("page must be >= 0")
        if size is not None and size < 1:
            raise ValidationFailed("size must be >= 1")
        report = self.get_report(report_id=report_id)
        return build_view(
            report,
            view=view,
            include=include,
            page=page,
            size=size,
            sort_by=sort_by,
            filter_priority=filter_priority,
        )

    def add_attachment(self, *, report_id: str, attachment: dict[str, Any]) -> dict[str, Any]:
        updated = self.reports.update_with(
            report_id=report_id,
            mutate=lambda current: {"attachments": [*current.get("attachments", []), attachment]},
        )
        self._notify(
            "attachment-uploaded",
            {"reportId": report_id, "attachmentId": attachment["id"]},
        )
        return updated

    def upload_attachment(
        self,
        *,
        report_id: str,
        content: bytes,
        original_name: str,
        mime_type: str,
        user_id: str,
    ) -> dict[str, Any]:
        self.get_report(report_id=report_id)
        stored = self.attachments.store(
            content=content,
            original_name=original_name,
            mime_type=mime_type,
            size=len(content),
        )
        token, expires_at = self.attachments.mint_download_token(storage_key=stored.storage_key)
        record = {
            "id": str(uuid.uuid4()),
            "filename": stored.filename,
            "originalName": original_name,
            "mimeType": mime_type,
            "size": len(content),
            "uploadedAt": self._utcnow_iso(),
            "uploadedBy": user_id,
            "storageKey": stored.storage_key,
        }
        try:
            self.add_attachment(report_id=report_id, attachment=record)
        except Exception:
            self.attachments.delete(storage_key=stored.storage_key)
            raise
        attachment = {**record, "downloadToken": token, "tokenExpiresAt": expires_at.isoformat()}
        return {
            "attachment": attachment,
            "downloadUrl": f"/reports/{report_id}/attachments/{record['id']}/download?token={token}",
        }

    def download_attachment(
        self,
        *,
        report_id: str,
        attachment_id: str,
        token: str | None,
    ) -> tuple[dict[str, Any], bytes]:
        if not token:
            raise TokenRequired()
        storage_key = self.attachments.validate_download_token(token)
        if storage_key is None:
            raise InvalidToken()
        report = self.get_report(report_id=report_id)
        attachment = next((a for a in report.get("attachments", []) if a.get("id") == attachment_id), None)
        if attachment is None:
            raise NotFound("Attachment not found", code="ATTACHMENT_NOT_FOUND")
        if attachment.get("storageKey") != storage_key:
            raise Forbidden("Token does not match attachment")
        return attachment, self.attachments.retrieve(storage_key=storage_key)


store = ReportStore()
