"""Structured API error responses and exception handlers."""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from chatline.errors import ChatlineError

logger = logging.getLogger(__name__)


class ErrorDetail(BaseModel):
    """Body of an error response."""

    error_code: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)
    request_id: Optional[str] = None


class ErrorResponse(BaseModel):
    """Envelope for all error responses."""

    error: ErrorDetail


class RateLimitErrorResponse(ErrorResponse):
    """Error response for rate-limited requests."""

    retry_after: int = 60


AUTH_RESPONSES: dict[int | str, dict[str, Any]] = {
    401: {"model": ErrorResponse, "description": "Missing or invalid bearer token"},
}

STORE_RESPONSES: dict[int | str, dict[str, Any]] = {
    500: {"model": ErrorResponse, "description": "Persistence failure"},
}


def _request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None) or request.headers.get(
        "X-Request-ID"
    )


def error_response(
    request: Request,
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[dict[str, Any]] = None,
    headers: Optional[dict[str, str]] = None,
) -> JSONResponse:
    """Build a JSONResponse with the standard error envelope."""
    body = ErrorResponse(
        error=ErrorDetail(
            error_code=error_code,
            message=message,
            details=details or {},
            request_id=_request_id(request),
        )
    )
    return JSONResponse(
        status_code=status_code, content=body.model_dump(), headers=headers
    )


async def chatline_exception_handler(
    request: Request, exc: ChatlineError
) -> JSONResponse:
    """Render a ChatlineError with its taxonomy code and status."""
    if exc.status_code >= 500:
        logger.error(
            "%s on %s %s: %s",
            exc.error_code,
            request.method,
            request.url.path,
            exc.message,
        )
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return error_response(
        request,
        exc.status_code,
        exc.error_code,
        exc.message,
        exc.details,
        headers=headers,
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Report body/query validation failures as BadRequest (400)."""
    errors = [
        {
            "loc": [str(part) for part in err.get("loc", ())],
            "msg": err.get("msg", ""),
        }
        for err in exc.errors()
    ]
    return error_response(
        request, 400, "BadRequest", "Malformed request", {"errors": errors}
    )


async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Handle rate limit exceeded errors with structured response."""
    response = RateLimitErrorResponse(
        error=ErrorDetail(
            error_code="RateLimited",
            message="Rate limit exceeded",
            details={"limit": str(exc.detail)},
            request_id=_request_id(request),
        ),
    )
    return JSONResponse(
        status_code=429,
        content=response.model_dump(),
        headers={"Retry-After": str(response.retry_after)},
    )


_HTTP_ERROR_CODES = {
    404: "NotFound",
    405: "BadRequest",
}


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """Render routing errors in the standard envelope.

    An unsupported method on a known path is reported as BadRequest (400).
    """
    status_code = 400 if exc.status_code == 405 else exc.status_code
    error_code = _HTTP_ERROR_CODES.get(exc.status_code, "HTTPError")
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return error_response(request, status_code, error_code, message)
