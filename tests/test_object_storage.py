from __future__ import annotations

from pathlib import Path

import pytest

from report_api.object_storage import (
    InMemoryObjectStorage,
    LocalObjectStorage,
    ObjectStorageConfig,
    create_object_storage_from_env,
)


def test_local_storage_writes_bytes_and_metadata(tmp_path: Path):
    storage = LocalObjectStorage(config=ObjectStorageConfig(backend="local", root=str(tmp_path / "uploads")))
    storage.put_object(storage_key="key-1", filename="key-1.pdf", content_bytes=b"%PDF", content_type="application/pdf")

    assert storage.get_object(storage_key="key-1") == b"%PDF"
    assert (tmp_path / "uploads" / "key-1" / "key-1.pdf").read_bytes() == b"%PDF"
    assert (tmp_path / "uploads" / "key-1" / "meta.json").exists()


def test_local_storage_missing_and_delete(tmp_path: Path):
    storage = LocalObjectStorage(config=ObjectStorageConfig(backend="local", root=str(tmp_path)))
    with pytest.raises(FileNotFoundError):
        storage.get_object(storage_key="absent")

    storage.put_object(storage_key="key-2", filename="a.txt", content_bytes=b"a")
    assert storage.delete_object(storage_key="key-2") is True
    assert storage.delete_object(storage_key="key-2") is False
    with pytest.raises(FileNotFoundError):
        storage.get_object(storage_key="key-2")


def test_local_storage_sanitizes_path_segments(tmp_path: Path):
    root = tmp_path / "root"
    storage = LocalObjectStorage(config=ObjectStorageConfig(backend="local", root=str(root)))
    storage.put_object(storage_key="../escape", filename="../../x.txt", content_bytes=b"x")
    assert storage.get_object(storage_key="../escape") == b"x"
    assert not (tmp_path / "x.txt").exists()
    assert all(root in p.parents for p in root.rglob("*"))


def test_local_storage_reset_empties_root(tmp_path: Path):
    storage = LocalObjectStorage(config=ObjectStorageConfig(backend="local", root=str(tmp_path / "r")))
    storage.put_object(storage_key="k", filename="k.txt", content_bytes=b"k")
    storage.reset()
    assert list((tmp_path / "r").iterdir()) == []


def test_factory_selects_backend(tmp_path: Path):
    assert isinstance(create_object_storage_from_env({"OBJECT_STORAGE_BACKEND": "memory"}), InMemoryObjectStorage)
    local = create_object_storage_from_env({"UPLOAD_DIR": str(tmp_path)})
    assert isinstance(local, LocalObjectStorage)


def test_factory_rejects_unknown_backend():
    with pytest.raises(RuntimeError) as excinfo:
        create_object_storage_from_env({"OBJECT_STORAGE_BACKEND": "s3"})
    assert "unsupported object storage backend" in str(excinfo.value)
