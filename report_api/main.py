from __future__ import annotations

import logging
import os
import time
import uuid
from datetime import UTC, datetime

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware

from report_api.errors import ApiError
from report_api.routes import auth as auth_routes
from report_api.routes import reports as report_routes
from report_api.routes._deps import error_response, request_id_from_request
from report_api.security import JwtSecurityConfig, parse_and_validate_bearer_token, redact_sensitive
from report_api.store import store

logger = logging.getLogger(__name__)

queue_backend = store.queue_backend

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: str | None = None) -> None:
    raw = (level or os.environ.get("LOG_LEVEL", "") or "INFO").strip().upper()
    logging.basicConfig(level=getattr(logging, raw, logging.INFO), format=LOG_FORMAT)


def _requires_auth(path: str) -> bool:
    if path != "/reports" and not path.startswith("/reports/"):
        return False
    # Downloads are authorized by their short-lived token instead of a bearer token.
    return not path.endswith("/download")


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="Report Management API", version="0.1.0")
    security_cfg = JwtSecurityConfig.from_env()
    app.state.security_cfg = security_cfg
    app.state.started_at = time.monotonic()

    cors_origins = os.environ.get("CORS_ALLOW_ORIGINS", "*")
    allow_origins = [x.strip() for x in cors_origins.split(",") if x.strip()]
    if allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=allow_origins,
            allow_credentials="*" not in allow_origins,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.middleware("http")
    async def authenticate_and_log(request: Request, call_next):
        request.state.request_id = request.headers.get("x-request-id", "").strip() or str(uuid.uuid4())
        request.state.identity = None
        started = time.perf_counter()
        logger.info(
            "request started request_id=%s method=%s path=%s query=%s",
            request.state.request_id,
            request.method,
            request.url.path,
            redact_sensitive(dict(request.query_params)),
        )
        try:
            if _requires_auth(request.url.path):
                request.state.identity = parse_and_validate_bearer_token(
                    authorization=request.headers.get("Authorization"),
                    cfg=security_cfg,
                )
            response = await call_next(request)
        except ApiError as exc:
            logger.warning(
                "request rejected request_id=%s code=%s path=%s",
                request.state.request_id,
                exc.code,
                request.url.path,
            )
            response = error_response(
                request,
                code=exc.code,
                message=exc.message,
                status_code=exc.http_status,
                details=exc.details,
            )
        response.headers["x-request-id"] = request_id_from_request(request)
        logger.info(
            "request completed request_id=%s method=%s path=%s status=%d duration_ms=%d",
            request.state.request_id,
            request.method,
            request.url.path,
            response.status_code,
            int((time.perf_counter() - started) * 1000),
        )
        return response

    @app.exception_handler(ApiError)
    async def handle_api_error(request: Request, exc: ApiError):
        if exc.http_status >= 500:
            logger.error("request failed request_id=%s code=%s", request_id_from_request(request), exc.code)
        return error_response(
            request,
            code=exc.code,
            message=exc.message,
            status_code=exc.http_status,
            details=exc.details,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        details = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
            for err in exc.errors()
        ]
        return error_response(
            request,
            code="VALIDATION_ERROR",
            message="Invalid input",
            status_code=400,
            details=details,
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return error_response(
                request,
                code="NOT_FOUND",
                message="Endpoint not found",
                status_code=404,
                details={"path": request.url.path},
            )
        return error_response(
            request,
            code="HTTP_ERROR",
            message=str(exc.detail),
            status_code=exc.status_code,
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.exception("unhandled error request_id=%s", request_id_from_request(request))
        return error_response(
            request,
            code="INTERNAL_ERROR",
            message="Internal server error",
            status_code=500,
        )

    @app.get("/health")
    def health(request: Request) -> dict[str, object]:
        return {
            "status": "ok",
            "timestamp": datetime.now(UTC).isoformat(),
            "uptime": round(time.monotonic() - request.app.state.started_at, 3),
        }

    app.include_router(auth_routes.router)
    app.include_router(report_routes.router)
    return app


app = create_app()
