from __future__ import annotations

from datetime import UTC, datetime, timedelta

from report_api.projections import build_summary, build_view, compute_metrics, parse_include, select_entries

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=UTC)


def _entry(entry_id: str, priority: str, *, days_ago: int, status: str = "pending") -> dict:
    return {
        "id": entry_id,
        "priority": priority,
        "timestamp": (NOW - timedelta(days=days_ago)).isoformat(),
        "status": status,
    }


def _report(entries: list[dict] | None = None) -> dict:
    return {
        "id": "rep-1",
        "title": "Q4",
        "status": "draft",
        "ownerId": "u1",
        "createdAt": "2024-06-01T00:00:00+00:00",
        "updatedAt": "2024-06-02T00:00:00+00:00",
        "version": 3,
        "description": "quarterly",
        "metadata": {"region": "emea"},
        "tags": ["finance"],
        "entries": entries if entries is not None else [],
        "comments": [],
        "attachments": [],
        "auditLog": [],
    }


def _mixed_entries() -> list[dict]:
    return [
        _entry("e-low", "low", days_ago=1),
        _entry("e-critical", "critical", days_ago=10, status="completed"),
        _entry("e-high", "high", days_ago=3),
    ]


def test_parse_include_splits_and_trims():
    assert parse_include(None) is None
    assert parse_include("") is None
    assert parse_include("entries, metrics,,tags") == ["entries", "metrics", "tags"]


def test_metrics_counts():
    metrics = compute_metrics(_report(_mixed_entries()), now=NOW)
    assert metrics == {
        "totalEntries": 3,
        "completedEntries": 1,
        "recentActivityCount": 2,
        "highPriorityCount": 2,
        "averageCompletionTime": 24,
    }


def test_metrics_omit_average_completion_without_completed_entries():
    metrics = compute_metrics(_report([_entry("e1", "low", days_ago=0)]), now=NOW)
    assert "averageCompletionTime" not in metrics
    assert metrics["totalEntries"] == 1


def test_summary_has_fixed_shape():
    summary = build_summary(_report(_mixed_entries()), now=NOW)
    assert set(summary) == {
        "id",
        "title",
        "status",
        "ownerId",
        "createdAt",
        "updatedAt",
        "totalEntries",
        "completedEntries",
        "recentActivityCount",
        "highPriorityCount",
        "averageCompletionTime",
    }
    assert build_view(_report(), view="summary", include=["entries"], now=NOW)["totalEntries"] == 0


def test_sort_by_priority():
    ordered = select_entries(_mixed_entries(), sort_by="priority")
    assert [e["priority"] for e in ordered] == ["critical", "high", "low"]


def test_sort_by_recency_newest_first():
    ordered = select_entries(_mixed_entries(), sort_by="recency")
    assert [e["id"] for e in ordered] == ["e-low", "e-high", "e-critical"]
    assert select_entries(_mixed_entries(), sort_by="timestamp") == ordered


def test_unknown_sort_keeps_stored_order():
    assert [e["id"] for e in select_entries(_mixed_entries(), sort_by="bogus")] == ["e-low", "e-critical", "e-high"]


def test_filter_priority_yields_exact_subset():
    entries = _mixed_entries() + [_entry("e-high-2", "high", days_ago=0)]
    filtered = select_entries(entries, filter_priority="high")
    assert [e["id"] for e in filtered] == ["e-high", "e-high-2"]


def test_pagination_shape():
    page = select_entries(_mixed_entries(), page=0, size=1, sort_by="priority")
    assert page == {
        "data": [_mixed_entries()[1]],
        "pagination": {"page": 0, "size": 1, "total": 3, "totalPages": 3},
    }


def test_pagination_past_the_end_is_empty():
    page = select_entries(_mixed_entries(), page=5, size=2)
    assert page["data"] == []
    assert page["pagination"] == {"page": 5, "size": 2, "total": 3, "totalPages": 2}


def test_pagination_requires_both_page_and_size():
    assert isinstance(select_entries(_mixed_entries(), page=0), list)
    assert isinstance(select_entries(_mixed_entries(), size=2), list)


def test_default_view_is_full_report():
    report = _report(_mixed_entries())
    view = build_view(report, now=NOW)
    assert view == report


def test_default_view_paginates_entries():
    view = build_view(_report(_mixed_entries()), page=1, size=2, now=NOW)
    assert view["title"] == "Q4"
    assert view["entries"]["pagination"]["total"] == 3
    assert [e["id"] for e in view["entries"]["data"]] == ["e-high"]


def test_include_returns_only_requested_fields():
    view = build_view(_report(_mixed_entries()), include=["tags", "metrics"], now=NOW)
    assert set(view) == {"id", "title", "status", "ownerId", "createdAt", "updatedAt", "version", "tags", "metrics"}
    assert view["version"] == 3
    assert view["metrics"]["totalEntries"] == 3
    assert "entries" not in view
    assert "description" not in view


def test_include_entries_honors_filter():
    view = build_view(_report(_mixed_entries()), include=["entries"], filter_priority="low", now=NOW)
    assert [e["id"] for e in view["entries"]] == ["e-low"]


def test_include_ignores_unknown_fields():
    view = build_view(_report(), include=["secrets"], now=NOW)
    assert "secrets" not in view
    assert view["id"] == "rep-1"
