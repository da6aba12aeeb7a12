from __future__ import annotations

from typing import Any


class ApiError(Exception):
    def __init__(
        self,
        *,
        code: str,
        message: str,
        http_status: int,
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.http_status = http_status
        self.details = details


class ValidationFailed(ApiError):
    def __init__(self, message: str = "Invalid input", *, details: Any = None, code: str = "VALIDATION_ERROR") -> None:
        super().__init__(code=code, message=message, http_status=400, details=details)


class Unauthorized(ApiError):
    def __init__(self, message: str = "Authentication required", *, code: str = "UNAUTHORIZED") -> None:
        super().__init__(code=code, message=message, http_status=401)


class Forbidden(ApiError):
    def __init__(self, message: str = "Insufficient permissions") -> None:
        super().__init__(code="FORBIDDEN", message=message, http_status=403)


class ForceRequired(ApiError):
    def __init__(self, message: str = "Finalized reports require force=true to edit") -> None:
        super().__init__(code="FORCE_REQUIRED", message=message, http_status=400)


class NotFound(ApiError):
    def __init__(self, message: str = "Report not found", *, code: str = "REPORT_NOT_FOUND") -> None:
        super().__init__(code=code, message=message, http_status=404)


class DuplicateKey(ApiError):
    def __init__(self, message: str = "A report with this title and owner already exists") -> None:
        super().__init__(code="DUPLICATE_REPORT", message=message, http_status=409)


class VersionConflict(ApiError):
    def __init__(self, *, current_version: int, provided_version: int) -> None:
        super().__init__(
            code="VERSION_CONFLICT",
            message="Report has been modified by another user",
            http_status=409,
            details={"currentVersion": current_version, "providedVersion": provided_version},
        )
        self.current_version = current_version
        self.provided_version = provided_version


class TokenRequired(ApiError):
    def __init__(self) -> None:
        super().__init__(code="TOKEN_REQUIRED", message="Download token required", http_status=401)


class InvalidToken(ApiError):
    def __init__(self, message: str = "Invalid or expired download token") -> None:
        super().__init__(code="INVALID_TOKEN", message=message, http_status=401)


class FileTooLarge(ApiError):
    def __init__(self, *, max_size: int) -> None:
        super().__init__(
            code="FILE_TOO_LARGE",
            message=f"File size exceeds maximum of {max_size} bytes",
            http_status=400,
        )


class InvalidFileType(ApiError):
    def __init__(self, mime_type: str) -> None:
        super().__init__(
            code="INVALID_FILE_TYPE",
            message="File type not allowed",
            http_status=400,
            details={"mimeType": mime_type},
        )


class StorageFailure(ApiError):
    def __init__(self, message: str = "Failed to store file") -> None:
        super().__init__(code="FILE_STORAGE_ERROR", message=message, http_status=500)


class IdempotencyConflict(ApiError):
    def __init__(self) -> None:
        super().__init__(
            code="IDEMPOTENCY_CONFLICT",
            message="same key with different payload",
            http_status=409,
        )
