"""Exception handlers rendering every failure as a stable error envelope."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from campus_gate.core.errors import ApiError, ErrorCode

logger = logging.getLogger(__name__)

# Retry hint for infrastructure failures that carry none of their own.
DEFAULT_RETRY_AFTER_SECONDS = 1


def error_response(
    error_code: ErrorCode,
    message: str | None = None,
    *,
    retry_after_seconds: int | None = None,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    """Build the JSON envelope for ``error_code`` as clients see it."""
    public_code = error_code.public_code
    if public_code is not error_code:
        # Collapsed codes share one message so the variants cannot be told apart.
        message = public_code.default_message
    if retry_after_seconds is None and error_code.retryable:
        retry_after_seconds = DEFAULT_RETRY_AFTER_SECONDS
    headers = {}
    if retry_after_seconds is not None:
        headers["Retry-After"] = str(retry_after_seconds)
    body = {
        "code": public_code.value,
        "message": message or public_code.default_message,
        "retry_after_seconds": retry_after_seconds,
        "details": details or {},
    }
    return JSONResponse(status_code=error_code.status_code, content=body, headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    """Install consistent exception handlers for service, validation and storage errors."""

    @app.exception_handler(ApiError)
    async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
        log_fn = logger.error if exc.status_code >= 500 else logger.info
        log_fn(
            "%s %s failed with %s",
            request.method,
            request.url.path,
            exc.error_code.value,
        )
        return error_response(
            exc.error_code,
            exc.message,
            retry_after_seconds=exc.retry_after_seconds,
            details=exc.details,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = [
            {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
            for error in exc.errors()
        ]
        return error_response(ErrorCode.VALIDATION_ERROR, details={"errors": errors})

    @app.exception_handler(OperationalError)
    async def handle_store_unavailable(request: Request, exc: OperationalError) -> JSONResponse:
        logger.error(
            "%s %s failed: database unavailable (%s)",
            request.method,
            request.url.path,
            exc.orig,
        )
        return error_response(ErrorCode.STORE_UNAVAILABLE)

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return error_response(ErrorCode.INTERNAL_ERROR)

