"""
Exception handlers mapping the engine error taxonomy to HTTP responses.

Every error body is `{"error": message, "code": code, "field": field}`;
server-side failures render `{"error": "Internal error"}` with no detail.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from src.core.errors import (
    AnalyticsError,
    NotFoundError,
    RateLimitError,
    StoreUnavailableError,
    ValidationError,
)

logger = logging.getLogger(__name__)

INTERNAL_ERROR = {"error": "Internal error"}


async def analytics_error_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, AnalyticsError)
    if isinstance(exc, StoreUnavailableError):
        logger.exception("Store unavailable on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content=INTERNAL_ERROR)

    headers = None
    if isinstance(exc, RateLimitError):
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


async def request_validation_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, RequestValidationError)
    errors = exc.errors()
    first = errors[0] if errors else {}
    loc = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path")]
    field_name = ".".join(loc) or None
    message = f"Invalid {field_name}" if field_name else "Malformed request"
    return JSONResponse(
        status_code=400,
        content={"error": message, "code": "validation_error", "field": field_name},
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content=INTERNAL_ERROR)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AnalyticsError, analytics_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)


def raise_for_errors(errors: list[Any]) -> None:
    """Raise the first component validation error as a taxonomy error."""
    if not errors:
        return
    first = errors[0]
    if first.code == "not_found":
        raise NotFoundError(first.message, code=first.code, field_name=first.field_name)
    raise ValidationError(first.message, code=first.code, field_name=first.field_name)
