from __future__ import annotations

from datetime import datetime
from typing import Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

ReportStatus = Literal["draft", "in_progress", "under_review", "finalized", "archived"]
EntryPriority = Literal["low", "medium", "high", "critical"]
EntryStatus = Literal["pending", "active", "completed", "cancelled"]


def _check_iso_datetime(value: str) -> str:
    try:
        datetime.fromisoformat(value)
    except ValueError:
        raise ValueError("must be an ISO 8601 datetime") from None
    return value


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Entry(WireModel):
    id: str
    priority: EntryPriority
    timestamp: str
    value: Any = None
    status: EntryStatus
    notes: str | None = None

    @field_validator("timestamp")
    @classmethod
    def _iso(cls, value: str) -> str:
        return _check_iso_datetime(value)


class Comment(WireModel):
    id: str
    text: str
    author: str
    created_at: str
    updated_at: str | None = None

    @field_validator("created_at", "updated_at")
    @classmethod
    def _iso(cls, value: str | None) -> str | None:
        if value is None:
            return value
        return _check_iso_datetime(value)


class CreateReportRequest(WireModel):
    title: str = Field(min_length=1, max_length=200)
    owner_id: str
    status: ReportStatus = "draft"
    description: str | None = None
    metadata: dict[str, Any] | None = None
    tags: list[str] = Field(default_factory=list)

    def to_fields(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class UpdateReportRequest(WireModel):
    """Update command; ``force`` is a request-control flag, never a report field."""

    NON_NULLABLE: ClassVar[tuple[str, ...]] = ("title", "status", "tags", "entries", "comments", "force")

    title: str | None = Field(default=None, min_length=1, max_length=200)
    status: ReportStatus | None = None
    description: str | None = None
    metadata: dict[str, Any] | None = None
    tags: list[str] | None = None
    entries: list[Entry] | None = None
    comments: list[Comment] | None = None
    force: bool | None = None

    @model_validator(mode="before")
    @classmethod
    def _reject_null_for_required_fields(cls, data: Any) -> Any:
        if isinstance(data, dict):
            for name in cls.NON_NULLABLE:
                if name in data and data[name] is None:
                    raise ValueError(f"{name} must not be null")
        return data

    @property
    def forced(self) -> bool:
        return bool(self.force)

    def raw_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_unset=True)

    def to_fields(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_unset=True, exclude={"force"})


class IssueTokenRequest(BaseModel):
    username: str | None = None
    role: str | None = None


def error_envelope(
    *,
    code: str,
    message: str,
    details: Any = None,
    request_id: str | None = None,
) -> dict[str, Any]:
    error: dict[str, Any] = {
        "code": code,
        "message": message,
    }
    if details is not None:
        error["details"] = details
    if request_id:
        error["requestId"] = request_id
    return {"error": error}
