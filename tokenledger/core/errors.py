"""Standardized error responses across all API endpoints."""
from typing import Any

import sentry_sdk
import structlog
from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from tokenledger.core.exceptions import LedgerError


class ErrorResponse(BaseModel):
    """Standard error envelope returned by all API error handlers."""
    success: bool = False
    error: str
    message: str
    detail: Any = None
    request_id: str = "unknown"

logger = structlog.get_logger()


def _request_id(request: Request) -> str:
    return request.headers.get("x-request-id", "unknown")


async def ledger_exception_handler(request: Request, exc: LedgerError) -> JSONResponse:
    """Render domain errors with their status and machine-readable code."""
    request_id = _request_id(request)
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        "ledger_error",
        error=exc.error_code,
        message=exc.message,
        path=request.url.path,
        request_id=request_id,
    )
    if exc.status_code >= 500:
        sentry_sdk.capture_exception(exc)

    body = ErrorResponse(
        error=exc.error_code,
        message=exc.message,
        detail=exc.detail,
        request_id=request_id,
    )
    return JSONResponse(status_code=exc.status_code, content=body.model_dump())


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch unhandled exceptions and return a consistent JSON envelope."""
    request_id = _request_id(request)

    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        method=request.method,
        request_id=request_id,
    )

    sentry_sdk.capture_exception(exc)

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "internal_server_error",
            "message": "An unexpected error occurred. The operation was not applied and can be retried.",
            "request_id": request_id,
        },
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Standardize HTTPException responses into the same JSON envelope."""
    request_id = _request_id(request)

    if isinstance(exc.detail, dict):
        error = exc.detail.get("error", f"http_{exc.status_code}")
        message = exc.detail.get("message", str(exc.detail))
        detail: Any = exc.detail.get("detail")
    else:
        error = f"http_{exc.status_code}"
        message = str(exc.detail)
        detail = exc.detail

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": error,
            "message": message,
            "detail": detail,
            "request_id": request_id,
        },
        headers=dict(exc.headers or {}),
    )
