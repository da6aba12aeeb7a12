from __future__ import annotations

import json
import os
import re
import shutil
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any


def _now_iso() -> str:
    return datetime.now(tz=UTC).isoformat()


def _clean_segment(value: str) -> str:
    cleaned = re.sub(r"[^A-Za-z0-9._-]+", "_", value.strip()).strip(".")
    return cleaned or "object"


@dataclass(frozen=True)
class ObjectStorageConfig:
    backend: str
    root: str


class ObjectStorageBackend:
    backend_name = "base"

    def put_object(
        self,
        *,
        storage_key: str,
        filename: str,
        content_bytes: bytes,
        content_type: str | None = None,
    ) -> None:
        raise NotImplementedError

    def get_object(self, *, storage_key: str) -> bytes:
        raise NotImplementedError

    def delete_object(self, *, storage_key: str) -> bool:
        raise NotImplementedError

    def reset(self) -> None:
        raise NotImplementedError


class LocalObjectStorage(ObjectStorageBackend):
    """One directory per storage key holding the bytes and a metadata sidecar."""

    backend_name = "local"

    def __init__(self, *, config: ObjectStorageConfig) -> None:
        self._root = Path(config.root)

    def put_object(
        self,
        *,
        storage_key: str,
        filename: str,
        content_bytes: bytes,
        content_type: str | None = None,
    ) -> None:
        key_dir = self._key_dir(storage_key)
        key_dir.mkdir(parents=True, exist_ok=True)
        safe_filename = _clean_segment(filename)
        (key_dir / safe_filename).write_bytes(content_bytes)
        self._write_meta(
            key_dir,
            {
                "filename": safe_filename,
                "content_type": content_type or "application/octet-stream",
                "size": len(content_bytes),
                "created_at": _now_iso(),
            },
        )

    def get_object(self, *, storage_key: str) -> bytes:
        key_dir = self._key_dir(storage_key)
        meta = self._read_meta(key_dir)
        path = key_dir / str(meta.get("filename") or "")
        if not meta or not path.is_file():
            raise FileNotFoundError(storage_key)
        return path.read_bytes()

    def delete_object(self, *, storage_key: str) -> bool:
        key_dir = self._key_dir(storage_key)
        if not key_dir.exists():
            return False
        shutil.rmtree(key_dir)
        return True

    def reset(self) -> None:
        if not self._root.exists():
            return
        for path in sorted(self._root.rglob("*"), reverse=True):
            if path.is_file():
                path.unlink()
            elif path.is_dir():
                path.rmdir()

    def _key_dir(self, storage_key: str) -> Path:
        return self._root / _clean_segment(storage_key)

    def _meta_path(self, key_dir: Path) -> Path:
        return key_dir / "meta.json"

    def _read_meta(self, key_dir: Path) -> dict[str, Any]:
        meta_path = self._meta_path(key_dir)
        if not meta_path.exists():
            return {}
        try:
            return json.loads(meta_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            return {}

    def _write_meta(self, key_dir: Path, meta: dict[str, Any]) -> None:
        meta_path = self._meta_path(key_dir)
        meta_path.write_text(json.dumps(meta, ensure_ascii=True, sort_keys=True), encoding="utf-8")


class InMemoryObjectStorage(ObjectStorageBackend):
    backend_name = "memory"

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._objects: dict[str, dict[str, Any]] = {}

    def put_object(
        self,
        *,
        storage_key: str,
        filename: str,
        content_bytes: bytes,
        content_type: str | None = None,
    ) -> None:
        with self._lock:
            self._objects[storage_key] = {
                "filename": filename,
                "content_type": content_type or "application/octet-stream",
                "content": bytes(content_bytes),
            }

    def get_object(self, *, storage_key: str) -> bytes:
        with self._lock:
            item = self._objects.get(storage_key)
            if item is None:
                raise FileNotFoundError(storage_key)
            return item["content"]

    def delete_object(self, *, storage_key: str) -> bool:
        with self._lock:
            return self._objects.pop(storage_key, None) is not None

    def reset(self) -> None:
        with self._lock:
            self._objects.clear()


def create_object_storage_from_env(environ: Mapping[str, str] | None = None) -> ObjectStorageBackend:
    env = os.environ if environ is None else environ
    config = ObjectStorageConfig(
        backend=env.get("OBJECT_STORAGE_BACKEND", "local").strip().lower() or "local",
        root=env.get("UPLOAD_DIR", "./uploads").strip() or "./uploads",
    )
    if config.backend == "memory":
        return InMemoryObjectStorage()
    if config.backend != "local":
        raise RuntimeError(f"unsupported object storage backend: {config.backend}")
    return LocalObjectStorage(config=config)
