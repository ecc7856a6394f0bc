"""Global exception handlers for consistent error responses.

Every error leaves the API with the same envelope::

    {"error": {"type": "...", "message": "...", "request_id": "...", "details": ...}}

Design:
- AppError subclasses -> their own status (400, 404, 429, ...)
- Custom exceeded-handler responses -> sent unchanged
- Request validation / Starlette HTTP errors -> mapped into the envelope
- Unexpected Exception -> generic 500 (safety net)
"""

import logging
from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from clipstream.core.errors import (
    AppError,
    NotFoundAppError,
    RateLimitResponse,
    ValidationAppError,
)
from clipstream.core.logging import get_request_id

logger = logging.getLogger(__name__)

_HTTP_ERROR_TYPES = {
    400: "validation_error",
    401: "auth_error",
    403: "auth_error",
    404: "not_found",
    409: "conflict_error",
    429: "rate_limit_error",
}


def _request_id(request: Request) -> str | None:
    return get_request_id() or getattr(request.state, "request_id", None)


def error_body(
    request: Request,
    *,
    error_type: str,
    message: str,
    details: Any = None,
) -> dict[str, Any]:
    """Build the error envelope shared by every handler."""
    content: dict[str, Any] = {
        "type": error_type,
        "message": message,
        "request_id": _request_id(request),
    }
    # Include details only if present (optional structured context)
    if details:
        content["details"] = details
    return {"error": content}


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render an AppError with its status, type and optional headers."""
    logger.warning(
        "app_error_handled",
        extra={
            "error_type": exc.error_type,
            "error_message": exc.message,
            "status_code": exc.status_code,
            "has_details": bool(exc.details),
            "request_path": request.url.path,
        },
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(
            request,
            error_type=exc.error_type,
            message=exc.message,
            details=exc.details,
        ),
        headers=exc.headers,
    )


async def rate_limit_response_handler(request: Request, exc: RateLimitResponse):
    return exc.response


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """Wrap framework HTTP errors (404 for unknown routes, redirects, ...)."""
    if exc.status_code == 404:
        return await app_error_handler(
            request,
            NotFoundAppError(
                message=f"Not found - {request.url.path}",
                headers=getattr(exc, "headers", None),
            ),
        )

    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(
            request,
            error_type=_HTTP_ERROR_TYPES.get(exc.status_code, "http_error"),
            message=str(exc.detail),
        ),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Report invalid request input as 400 with one entry per field."""
    fields = [
        {
            "field": ".".join(str(part) for part in error.get("loc", ())),
            "message": error.get("msg", ""),
        }
        for error in exc.errors()
    ]
    return await app_error_handler(
        request, ValidationAppError(message="Validation failed", details=fields)
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors (safety net).

    Logs detailed information for debugging while returning a generic message
    so no implementation details or stack traces reach the client.
    """
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
            "request_id": _request_id(request),
        },
    )

    return JSONResponse(
        status_code=500,
        content=error_body(
            request,
            error_type="server_error",
            message="An unexpected error occurred. Please try again later.",
        ),
    )


def setup_exception_handlers(app) -> None:
    """Register all exception handlers with the FastAPI app.

    Specific handlers are registered before the general fallback.
    """
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(RateLimitResponse)(rate_limit_response_handler)
    app.exception_handler(RequestValidationError)(validation_exception_handler)
    app.exception_handler(StarletteHTTPException)(http_exception_handler)
    app.exception_handler(Exception)(general_exception_handler)
