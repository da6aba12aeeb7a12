"""Read projections built from a stored report.

Builders return plain dicts; a field that is not part of a projection is
absent from the dict, never present with a ``None`` value.
"""

from __future__ import annotations

import math
from datetime import UTC, datetime, timedelta
from typing import Any

BASE_FIELDS = ("id", "title", "status", "ownerId", "createdAt", "updatedAt")
INCLUDE_BASE_FIELDS = BASE_FIELDS + ("version",)
INCLUDABLE_FIELDS = ("entries", "comments", "attachments", "metadata", "tags", "auditLog", "metrics")

PRIORITY_RANK = {"critical": 0, "high": 1, "medium": 2, "low": 3}
HIGH_PRIORITIES = frozenset({"high", "critical"})
RECENT_ACTIVITY_WINDOW = timedelta(days=7)
MOCK_AVERAGE_COMPLETION_HOURS = 24


def _parse_timestamp(raw: Any) -> datetime | None:
    if not isinstance(raw, str):
        return None
    try:
        value = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value


def parse_include(raw: str | None) -> list[str] | None:
    if raw is None:
        return None
    items = [x.strip() for x in raw.split(",") if x.strip()]
    return items or None


def compute_metrics(report: dict[str, Any], *, now: datetime | None = None) -> dict[str, Any]:
    entries = list(report.get("entries") or [])
    current = now or datetime.now(UTC)
    cutoff = current - RECENT_ACTIVITY_WINDOW

    completed = [e for e in entries if e.get("status") == "completed"]
    recent = 0
    for entry in entries:
        ts = _parse_timestamp(entry.get("timestamp"))
        if ts is not None and ts > cutoff:
            recent += 1

    metrics: dict[str, Any] = {
        "totalEntries": len(entries),
        "completedEntries": len(completed),
        "recentActivityCount": recent,
        "highPriorityCount": sum(1 for e in entries if e.get("priority") in HIGH_PRIORITIES),
    }
    if completed:
        metrics["averageCompletionTime"] = MOCK_AVERAGE_COMPLETION_HOURS
    return metrics


def select_entries(
    entries: list[dict[str, Any]],
    *,
    page: int | None = None,
    size: int | None = None,
    sort_by: str | None = None,
    filter_priority: str | None = None,
) -> list[dict[str, Any]] | dict[str, Any]:
    selected = list(entries)
    if filter_priority:
        selected = [e for e in selected if e.get("priority") == filter_priority]

    if sort_by == "priority":
        selected.sort(key=lambda e: PRIORITY_RANK.get(str(e.get("priority")), len(PRIORITY_RANK)))
    elif sort_by in {"recency", "timestamp"}:
        oldest = datetime.min.replace(tzinfo=UTC)
        selected.sort(key=lambda e: _parse_timestamp(e.get("timestamp")) or oldest, reverse=True)

    if page is None or size is None:
        return selected

    start = page * size
    total = len(selected)
    return {
        "data": selected[start : start + size],
        "pagination": {
            "page": page,
            "size": size,
            "total": total,
            "totalPages": math.ceil(total / size),
        },
    }


def build_summary(report: dict[str, Any], *, now: datetime | None = None) -> dict[str, Any]:
    summary = {name: report.get(name) for name in BASE_FIELDS}
    summary.update(compute_metrics(report, now=now))
    return summary


def build_view(
    report: dict[str, Any],
    *,
    view: str | None = None,
    include: list[str] | None = None,
    page: int | None = None,
    size: int | None = None,
    sort_by: str | None = None,
    filter_priority: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    if view == "summary":
        return build_summary(report, now=now)

    def _entries() -> list[dict[str, Any]] | dict[str, Any]:
        return select_entries(
            list(report.get("entries") or []),
            page=page,
            size=size,
            sort_by=sort_by,
            filter_priority=filter_priority,
        )

    if not include:
        result = dict(report)
        result["entries"] = _entries()
        return result

    requested = set(include)
    result = {name: report.get(name) for name in INCLUDE_BASE_FIELDS}
    for name in INCLUDABLE_FIELDS:
        if name not in requested:
            continue
        if name == "entries":
            result["entries"] = _entries()
        elif name == "metrics":
            result["metrics"] = compute_metrics(report, now=now)
        elif name in report:
            result[name] = report[name]
    return result
