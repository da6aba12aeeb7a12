from __future__ import annotations

from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Header, Query, Response, UploadFile
from fastapi.responses import JSONResponse

from report_api.errors import ValidationFailed
from report_api.projections import parse_include
from report_api.routes._deps import editor_identity, reader_identity
from report_api.schemas import CreateReportRequest, UpdateReportRequest
from report_api.security import Identity
from report_api.store import store

router = APIRouter(prefix="/reports", tags=["reports"])


def _content_disposition(filename: str) -> str:
    # Header values go out as latin-1; other names get an RFC 5987 filename*.
    try:
        filename.encode("latin-1")
    except UnicodeEncodeError:
        fallback = filename.encode("ascii", "replace").decode("ascii").replace("\"", "_")
        return f'attachment; filename="{fallback}"; filename*=UTF-8\'\'{quote(filename, safe="")}'
    return f'attachment; filename="{filename}"'


def _parse_if_match(raw: str | None) -> int | None:
    if raw is None or not raw.strip():
        return None
    value = raw.strip().strip('"')
    try:
        return int(value)
    except ValueError:
        raise ValidationFailed("If-Match must be an integer version", details={"ifMatch": raw}) from None


@router.post("")
def create_report(
    payload: CreateReportRequest,
    identity: Identity = Depends(editor_identity),
):
    report = store.create_report(payload=payload, user_id=identity.user_id)
    return JSONResponse(
        status_code=201,
        content=report,
        headers={"Location": f"/reports/{report['id']}"},
    )


@router.get("/{report_id}")
def get_report(
    report_id: str,
    view: str | None = Query(default=None),
    include: str | None = Query(default=None),
    page: int | None = Query(default=None),
    size: int | None = Query(default=None),
    sort_by: str | None = Query(default=None, alias="sortBy"),
    filter_priority: str | None = Query(default=None, alias="filterPriority"),
    identity: Identity = Depends(reader_identity),
):
    return store.get_report_with_view(
        report_id=report_id,
        view=view,
        include=parse_include(include),
        page=page,
        size=size,
        sort_by=sort_by,
        filter_priority=filter_priority,
    )


@router.put("/{report_id}")
def update_report(
    report_id: str,
    command: UpdateReportRequest,
    if_match: str | None = Header(default=None, alias="If-Match"),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    identity: Identity = Depends(editor_identity),
):
    expected_version = _parse_if_match(if_match)

    def _execute() -> dict:
        return store.update_report(
            report_id=report_id,
            command=command,
            user_id=identity.user_id,
            role=identity.role,
            expected_version=expected_version,
            idempotency_key=idempotency_key,
        )

    if not idempotency_key:
        return _execute()
    return store.run_idempotent(
        endpoint="PUT:/reports",
        idempotency_key=idempotency_key,
        payload={
            "reportId": report_id,
            "ifMatch": expected_version,
            "body": command.raw_payload(),
        },
        execute=_execute,
    )


@router.post("/{report_id}/attachment")
async def upload_attachment(
    report_id: str,
    file: UploadFile | None = File(default=None),
    identity: Identity = Depends(editor_identity),
):
    if file is None:
        raise ValidationFailed("No file provided", code="NO_FILE")
    content = await file.read()
    data = store.upload_attachment(
        report_id=report_id,
        content=content,
        original_name=file.filename or "upload.bin",
        mime_type=file.content_type or "application/octet-stream",
        user_id=identity.user_id,
    )
    return JSONResponse(status_code=201, content=data)


@router.get("/{report_id}/attachments/{attachment_id}/download")
def download_attachment(
    report_id: str,
    attachment_id: str,
    token: str | None = Query(default=None),
):
    attachment, content = store.download_attachment(
        report_id=report_id,
        attachment_id=attachment_id,
        token=token,
    )
    return Response(
        content=content,
        media_type=attachment["mimeType"],
        headers={"Content-Disposition": _content_disposition(attachment["originalName"])},
    )
