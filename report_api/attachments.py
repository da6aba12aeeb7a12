"""Upload validation, byte storage and short-lived download tokens."""

from __future__ import annotations

import logging
import os
import secrets
import threading
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import PurePath

from report_api.errors import FileTooLarge, InvalidFileType, NotFound, StorageFailure
from report_api.object_storage import ObjectStorageBackend, create_object_storage_from_env

logger = logging.getLogger(__name__)

DEFAULT_MAX_FILE_SIZE = 5 * 1024 * 1024
DEFAULT_TOKEN_TTL_MINUTES = 60

ALLOWED_MIME_TYPES = frozenset(
    {
        "application/pdf",
        "image/jpeg",
        "image/png",
        "image/gif",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "text/plain",
        "text/csv",
    }
)


@dataclass(frozen=True)
class StoredFile:
    storage_key: str
    filename: str


@dataclass(frozen=True)
class DownloadToken:
    storage_key: str
    expires_at: datetime


@dataclass(frozen=True)
class AttachmentConfig:
    max_file_size: int
    token_ttl_minutes: int

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "AttachmentConfig":
        env = os.environ if environ is None else environ
        raw_size = env.get("MAX_FILE_SIZE", "").strip()
        raw_ttl = env.get("DOWNLOAD_TOKEN_TTL_MINUTES", "").strip()
        return cls(
            max_file_size=int(raw_size) if raw_size.isdigit() else DEFAULT_MAX_FILE_SIZE,
            token_ttl_minutes=max(1, int(raw_ttl)) if raw_ttl.isdigit() else DEFAULT_TOKEN_TTL_MINUTES,
        )


class AttachmentManager:
    def __init__(
        self,
        *,
        object_storage: ObjectStorageBackend | None = None,
        config: AttachmentConfig | None = None,
    ) -> None:
        self.object_storage = object_storage or create_object_storage_from_env()
        self.config = config or AttachmentConfig.from_env()
        self._tokens_lock = threading.Lock()
        self._tokens: dict[str, DownloadToken] = {}

    @staticmethod
    def _now() -> datetime:
        return datetime.now(UTC)

    def validate(self, *, size: int, mime_type: str) -> None:
        if size > self.config.max_file_size:
            raise FileTooLarge(max_size=self.config.max_file_size)
        if mime_type not in ALLOWED_MIME_TYPES:
            raise InvalidFileType(mime_type)

    def store(self, *, content: bytes, original_name: str, mime_type: str, size: int) -> StoredFile:
        self.validate(size=size, mime_type=mime_type)
        storage_key = str(uuid.uuid4())
        filename = f"{storage_key}{PurePath(original_name).suffix}"
        try:
            self.object_storage.put_object(
                storage_key=storage_key,
                filename=filename,
                content_bytes=content,
                content_type=mime_type,
            )
        except OSError as exc:
            logger.error("file store failed original_name=%s error=%s", original_name, exc)
            raise StorageFailure() from exc
        logger.info(
            "file stored storage_key=%s filename=%s original_name=%s size=%d",
            storage_key,
            filename,
            original_name,
            size,
        )
        return StoredFile(storage_key=storage_key, filename=filename)

    def retrieve(self, *, storage_key: str) -> bytes:
        try:
            return self.object_storage.get_object(storage_key=storage_key)
        except FileNotFoundError:
            raise NotFound("File not found", code="FILE_NOT_FOUND") from None

    def delete(self, *, storage_key: str) -> bool:
        deleted = self.object_storage.delete_object(storage_key=storage_key)
        if deleted:
            logger.info("file deleted storage_key=%s", storage_key)
        return deleted

    def generate_download_token(self, *, storage_key: str, ttl_minutes: int | None = None) -> str:
        token, _expires_at = self.mint_download_token(storage_key=storage_key, ttl_minutes=ttl_minutes)
        return token

    def mint_download_token(self, *, storage_key: str, ttl_minutes: int | None = None) -> tuple[str, datetime]:
        ttl = self.config.token_ttl_minutes if ttl_minutes is None else ttl_minutes
        token = secrets.token_hex(32)
        expires_at = self._now() + timedelta(minutes=ttl)
        with self._tokens_lock:
            self._tokens[token] = DownloadToken(storage_key=storage_key, expires_at=expires_at)
            self._purge_expired_locked()
        logger.info("download token generated storage_key=%s expires_at=%s", storage_key, expires_at.isoformat())
        return token, expires_at

    def validate_download_token(self, token: str) -> str | None:
        with self._tokens_lock:
            record = self._tokens.get(token)
            if record is None:
                return None
            if record.expires_at < self._now():
                del self._tokens[token]
                return None
            return record.storage_key

    def active_token_count(self) -> int:
        with self._tokens_lock:
            return len(self._tokens)

    def reset(self) -> None:
        with self._tokens_lock:
            self._tokens.clear()
        self.object_storage.reset()

    def _purge_expired_locked(self) -> None:
        now = self._now()
        expired = [token for token, record in self._tokens.items() if record.expires_at < now]
        for token in expired:
            del self._tokens[token]
