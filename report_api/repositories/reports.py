from __future__ import annotations

import copy
import threading
import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from report_api.errors import DuplicateKey, NotFound, VersionConflict

BusinessKey = tuple[str, str]

IMMUTABLE_FIELDS = ("id", "createdAt", "version", "updatedAt")


def business_key(title: str, owner_id: str) -> BusinessKey:
    return (title.lower(), owner_id)


def _utcnow_iso() -> str:
    return datetime.now(UTC).isoformat()


class InMemoryReportsRepository:
    """Canonical owner of report aggregates.

    Every mutation goes through one re-entrant lock, so the version check, the
    business-key reindex and the data write are a single atomic step. Reads
    and writes exchange deep copies; nothing outside this class holds a
    reference to a stored report.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._reports: dict[str, dict[str, Any]] = {}
        self._business_keys: dict[BusinessKey, str] = {}

    def create(self, *, report: dict[str, Any]) -> dict[str, Any]:
        key = business_key(str(report["title"]), str(report["ownerId"]))
        with self._lock:
            if key in self._business_keys:
                raise DuplicateKey()
            now = _utcnow_iso()
            item = copy.deepcopy(report)
            item.update(
                {
                    "id": str(uuid.uuid4()),
                    "createdAt": now,
                    "updatedAt": now,
                    "version": 1,
                    "tags": list(report.get("tags") or []),
                    "entries": [],
                    "comments": [],
                    "attachments": [],
                    "auditLog": list(copy.deepcopy(report.get("auditLog") or [])),
                }
            )
            self._reports[item["id"]] = item
            self._business_keys[key] = item["id"]
            return copy.deepcopy(item)

    def get(self, *, report_id: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._reports.get(report_id)
            if row is None:
                return None
            return copy.deepcopy(row)

    def get_or_raise(self, *, report_id: str) -> dict[str, Any]:
        row = self.get(report_id=report_id)
        if row is None:
            raise NotFound()
        return row

    def update(
        self,
        *,
        report_id: str,
        fields: dict[str, Any],
        expected_version: int | None = None,
    ) -> dict[str, Any]:
        return self.update_with(
            report_id=report_id,
            mutate=lambda _current: fields,
            expected_version=expected_version,
        )

    def update_with(
        self,
        *,
        report_id: str,
        mutate: Callable[[dict[str, Any]], dict[str, Any]],
        expected_version: int | None = None,
    ) -> dict[str, Any]:
        """Apply ``mutate(current)`` as one versioned write.

        ``mutate`` runs inside the critical section and receives a copy of the
        stored report; it returns the fields to merge. Any exception it raises
        aborts the write with nothing changed.
        """
        with self._lock:
            existing = self._reports.get(report_id)
            if existing is None:
                raise NotFound()
            if expected_version is not None and existing["version"] != expected_version:
                raise VersionConflict(
                    current_version=existing["version"],
                    provided_version=expected_version,
                )
            changes = {
                name: value
                for name, value in mutate(copy.deepcopy(existing)).items()
                if name not in IMMUTABLE_FIELDS
            }

            old_key = business_key(existing["title"], existing["ownerId"])
            new_key = business_key(
                str(changes.get("title", existing["title"])),
                str(changes.get("ownerId", existing["ownerId"])),
            )
            if new_key != old_key:
                holder = self._business_keys.get(new_key)
                if holder is not None and holder != report_id:
                    raise DuplicateKey()

            updated = {**existing, **copy.deepcopy(changes)}
            updated["id"] = existing["id"]
            updated["createdAt"] = existing["createdAt"]
            updated["updatedAt"] = _utcnow_iso()
            updated["version"] = existing["version"] + 1

            self._reports[report_id] = updated
            if new_key != old_key:
                self._business_keys.pop(old_key, None)
                self._business_keys[new_key] = report_id
            return copy.deepcopy(updated)

    def delete(self, *, report_id: str) -> bool:
        with self._lock:
            row = self._reports.pop(report_id, None)
            if row is None:
                return False
            self._business_keys.pop(business_key(row["title"], row["ownerId"]), None)
            return True

    def list(self) -> list[dict[str, Any]]:
        with self._lock:
            return [copy.deepcopy(x) for x in self._reports.values()]

    def count(self) -> int:
        with self._lock:
            return len(self._reports)

    def reset(self) -> None:
        with self._lock:
            self._reports.clear()
            self._business_keys.clear()
