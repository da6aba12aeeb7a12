from __future__ import annotations

import uuid
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from report_api.access_policy import EDITOR, READER, require_role
from report_api.errors import Unauthorized
from report_api.schemas import error_envelope
from report_api.security import Identity


def request_id_from_request(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return request_id
    return f"req_{uuid.uuid4().hex[:12]}"


def error_response(
    request: Request,
    *,
    code: str,
    message: str,
    status_code: int,
    details: Any = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=error_envelope(
            code=code,
            message=message,
            details=details,
            request_id=request_id_from_request(request),
        ),
    )


def current_identity(request: Request) -> Identity:
    identity = getattr(request.state, "identity", None)
    if identity is None:
        raise Unauthorized()
    return identity


def editor_identity(request: Request) -> Identity:
    identity = current_identity(request)
    require_role(identity, EDITOR)
    return identity


def reader_identity(request: Request) -> Identity:
    identity = current_identity(request)
    require_role(identity, READER, EDITOR)
    return identity
