"""Application-level exception types.

This module defines domain errors used across the limiter and the HTTP layer,
enabling consistent error handling, logging, and API responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from starlette.responses import Response


@dataclass
class AppError(Exception):
    """Base error for application failures.

    Attributes:
        message: Human-readable error message.
        error_type: Stable, machine-readable error kind.
        status_code: HTTP status used when the error reaches a client.
        details: Optional structured details (a mapping for rate limits, a
            list of field errors for validation).
        headers: Optional extra response headers (e.g. Retry-After).
    """

    message: str
    error_type: str = "app_error"
    status_code: int = 500
    details: Any = None
    headers: dict[str, str] | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


@dataclass
class ValidationAppError(AppError):
    """Raised when request input validation fails."""

    error_type: str = "validation_error"
    status_code: int = 400


@dataclass
class NotFoundAppError(AppError):
    """Raised when a requested resource or route does not exist."""

    error_type: str = "not_found"
    status_code: int = 404


@dataclass
class RateLimitAppError(AppError):
    """Raised when a caller exhausted its request quota for the window."""

    message: str = "Too many requests, please try again later"
    error_type: str = "rate_limit_error"
    status_code: int = 429


class RateLimitResponse(Exception):
    """Carries a ready-made response from a custom exceeded handler."""

    def __init__(self, response: Response) -> None:
        super().__init__("rate limit exceeded")
        self.response = response
