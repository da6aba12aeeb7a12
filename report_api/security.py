from __future__ import annotations

import base64
import hashlib
import hmac
import json
import os
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt

from report_api.errors import Unauthorized

DEFAULT_JWT_SECRET = "your-super-secret-jwt-key-change-in-production"
ROLES = ("reader", "editor")


def _b64url_decode(raw: str) -> bytes:
    padded = raw + "=" * ((4 - len(raw) % 4) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        if value.strip().isdigit():
            return int(value.strip())
    return None


def redact_sensitive(value: object) -> object:
    sensitive_keys = {"authorization", "token", "secret", "password", "api_key", "apikey", "access_token"}
    if isinstance(value, dict):
        redacted: dict[str, object] = {}
        for key, item in value.items():
            key_lower = str(key).lower()
            if key_lower in sensitive_keys:
                redacted[str(key)] = "***REDACTED***"
            else:
                redacted[str(key)] = redact_sensitive(item)
        return redacted
    if isinstance(value, list):
        return [redact_sensitive(x) for x in value]
    return value


@dataclass(frozen=True)
class Identity:
    user_id: str
    username: str
    role: str

    def as_dict(self) -> dict[str, str]:
        return {"userId": self.user_id, "username": self.username, "role": self.role}


@dataclass
class JwtSecurityConfig:
    shared_secret: str
    expires_hours: int

    @classmethod
    def from_env(cls) -> "JwtSecurityConfig":
        raw_hours = os.environ.get("JWT_EXPIRES_HOURS", "").strip()
        expires_hours = int(raw_hours) if raw_hours.isdigit() else 24
        return cls(
            shared_secret=os.environ.get("JWT_SECRET", "").strip() or DEFAULT_JWT_SECRET,
            expires_hours=max(1, expires_hours),
        )


def _invalid_token() -> Unauthorized:
    return Unauthorized("Invalid or expired token", code="INVALID_TOKEN")


def _parse_token_parts(token: str) -> tuple[dict[str, Any], dict[str, Any], str, str]:
    parts = token.split(".")
    if len(parts) != 3:
        raise _invalid_token()
    header_raw, payload_raw, signature_raw = parts
    try:
        header_obj = json.loads(_b64url_decode(header_raw))
        payload_obj = json.loads(_b64url_decode(payload_raw))
    except (json.JSONDecodeError, ValueError, TypeError):
        raise _invalid_token() from None
    if not isinstance(header_obj, dict) or not isinstance(payload_obj, dict):
        raise _invalid_token()
    return header_obj, payload_obj, f"{header_raw}.{payload_raw}", signature_raw


def parse_and_validate_bearer_token(*, authorization: str | None, cfg: JwtSecurityConfig) -> Identity:
    prefix = "Bearer "
    if not authorization or not authorization.startswith(prefix):
        raise Unauthorized("Missing or invalid authorization header")
    token = authorization[len(prefix) :].strip()
    if not token:
        raise Unauthorized("Missing or invalid authorization header")

    header_obj, payload_obj, signing_input, signature_raw = _parse_token_parts(token)
    if str(header_obj.get("alg", "")).upper() != "HS256":
        raise _invalid_token()
    expected = _b64url_encode(
        hmac.new(
            cfg.shared_secret.encode("utf-8"),
            signing_input.encode("ascii"),
            hashlib.sha256,
        ).digest()
    )
    if not hmac.compare_digest(expected, signature_raw):
        raise _invalid_token()

    now_ts = int(datetime.now(UTC).timestamp())
    exp = _as_int(payload_obj.get("exp"))
    if exp is not None and exp <= now_ts:
        raise _invalid_token()
    nbf = _as_int(payload_obj.get("nbf"))
    if nbf is not None and nbf > now_ts:
        raise _invalid_token()

    user_id = str(payload_obj.get("userId") or "").strip()
    role = str(payload_obj.get("role") or "").strip()
    if not user_id or role not in ROLES:
        raise _invalid_token()
    return Identity(
        user_id=user_id,
        username=str(payload_obj.get("username") or ""),
        role=role,
    )


def issue_token(*, username: str, role: str, cfg: JwtSecurityConfig) -> dict[str, Any]:
    """Self-issued token for local use; there is no user registry behind it."""
    now = datetime.now(UTC)
    identity = Identity(user_id=f"user-{uuid.uuid4().hex[:12]}", username=username, role=role)
    claims = {
        **identity.as_dict(),
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(hours=cfg.expires_hours)).timestamp()),
    }
    token = jwt.encode(claims, cfg.shared_secret, algorithm="HS256")
    return {
        "token": token,
        "expiresIn": f"{cfg.expires_hours}h",
        "user": identity.as_dict(),
    }
