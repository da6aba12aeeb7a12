from __future__ import annotations

from enum import Enum

from report_api.errors import Forbidden, ForceRequired
from report_api.security import Identity

EDITOR = "editor"
READER = "reader"
FINALIZED = "finalized"


class PolicyDecision(str, Enum):
    ALLOW = "allow"
    FORBIDDEN = "forbidden"
    FORCE_REQUIRED = "force_required"


def can_mutate(role: str, report_status: str, force: bool) -> PolicyDecision:
    if role != EDITOR:
        return PolicyDecision.FORBIDDEN
    if report_status == FINALIZED and not force:
        return PolicyDecision.FORCE_REQUIRED
    return PolicyDecision.ALLOW


def enforce_can_mutate(role: str, report_status: str, force: bool) -> None:
    decision = can_mutate(role, report_status, force)
    if decision is PolicyDecision.FORBIDDEN:
        if report_status == FINALIZED:
            raise Forbidden("Only editors can modify finalized reports")
        raise Forbidden()
    if decision is PolicyDecision.FORCE_REQUIRED:
        raise ForceRequired()


def require_role(identity: Identity, *roles: str) -> None:
    if identity.role not in roles:
        raise Forbidden()
