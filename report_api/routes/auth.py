from __future__ import annotations

import logging

from fastapi import APIRouter, Request

from report_api.errors import ValidationFailed
from report_api.schemas import IssueTokenRequest
from report_api.security import ROLES, issue_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/token")
def create_token(payload: IssueTokenRequest, request: Request):
    username = (payload.username or "").strip()
    role = (payload.role or "").strip()
    if not username or not role:
        raise ValidationFailed("Username and role are required", code="INVALID_INPUT")
    if role not in ROLES:
        raise ValidationFailed('Role must be either "reader" or "editor"', code="INVALID_ROLE")
    data = issue_token(username=username, role=role, cfg=request.app.state.security_cfg)
    logger.info("token issued user_id=%s role=%s", data["user"]["userId"], role)
    return data
