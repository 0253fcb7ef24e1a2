"""HTTP middleware and exception handler wiring for FastAPI apps."""

from __future__ import annotations

import uuid
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from mfa_gateway.api.contracts import ApiErrorResponse
from mfa_gateway.api.errors import ApiErrorCode, error_code_of, to_error_payload
from mfa_gateway.core.config import AppConfig
from mfa_gateway.core.logging import set_correlation_id


def security_headers(config: AppConfig) -> dict[str, str]:
    """Return headers attached to every response."""
    headers = {
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
        "Referrer-Policy": "strict-origin-when-cross-origin",
        "Content-Security-Policy": (
            "default-src 'none'; frame-ancestors 'none'; base-uri 'none'"
        ),
        "Permissions-Policy": "geolocation=(), microphone=(), camera=()",
    }
    if config.security.is_production:
        headers["Strict-Transport-Security"] = (
            "max-age=31536000; includeSubDomains; preload"
        )
    return headers


def register_http_middleware(app: FastAPI, *, config: AppConfig, logger: Any) -> None:
    """Attach common security and observability middleware to an app."""
    static_headers = security_headers(config)

    @app.middleware("http")
    async def request_size_limit_middleware(request: Request, call_next):
        content_length = request.headers.get("content-length")
        if content_length:
            try:
                parsed_length = int(content_length)
            except ValueError:
                parsed_length = 0
            if parsed_length > config.security.request_max_bytes:
                logger.warning(
                    "request_rejected",
                    extra={
                        "path": request.url.path,
                        "method": request.method,
                        "status_code": 413,
                        "error_code": str(ApiErrorCode.REQUEST_TOO_LARGE),
                    },
                )
                return JSONResponse(
                    status_code=413,
                    content=ApiErrorResponse(
                        error=(
                            "Request size exceeds configured limit "
                            f"({config.security.request_max_bytes} bytes)."
                        ),
                    ).model_dump(),
                )
        return await call_next(request)

    @app.middleware("http")
    async def request_logging_middleware(request: Request, call_next):
        correlation_id = (
            request.headers.get("x-request-id")
            or request.headers.get("x-correlation-id")
            or uuid.uuid4().hex
        )
        set_correlation_id(correlation_id)
        response = await call_next(request)
        response.headers["X-Request-ID"] = correlation_id
        for name, value in static_headers.items():
            response.headers[name] = value
        logger.info(
            "request_completed",
            extra={
                "path": request.url.path,
                "method": request.method,
                "status_code": response.status_code,
            },
        )
        return response


def register_exception_handlers(app: FastAPI, *, logger: Any) -> None:
    """Attach API exception handlers that return stable error contracts."""

    @app.exception_handler(HTTPException)
    async def handle_http_exception(
        request: Request, exc: HTTPException
    ) -> JSONResponse:
        logger.warning(
            "http_exception",
            extra={
                "path": request.url.path,
                "method": request.method,
                "status_code": exc.status_code,
                "error_code": error_code_of(exc.detail, exc.status_code),
            },
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=ApiErrorResponse(**to_error_payload(exc.detail)).model_dump(),
            headers=exc.headers,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_exception(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        logger.warning(
            "validation_exception",
            extra={
                "path": request.url.path,
                "method": request.method,
                "status_code": 400,
                "error_code": str(ApiErrorCode.VALIDATION_ERROR),
            },
        )
        return JSONResponse(
            status_code=400,
            content=ApiErrorResponse(error="Malformed request body").model_dump(),
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_exception(
        request: Request,
        exc: Exception,
    ) -> JSONResponse:
        logger.exception(
            "unexpected_exception",
            extra={
                "path": request.url.path,
                "method": request.method,
                "status_code": 500,
                "error_code": str(ApiErrorCode.INTERNAL_SERVER_ERROR),
            },
        )
        return JSONResponse(
            status_code=500,
            content=ApiErrorResponse(error="Internal server error").model_dump(),
        )
