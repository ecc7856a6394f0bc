"""Pydantic schemas describing the error envelope in the OpenAPI docs."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class ErrorBody(BaseModel):
    type: str = Field(..., description="Stable error kind, e.g. 'rate_limit_error'.")
    message: str = Field(..., description="Human-readable error message.")
    request_id: str | None = Field(
        default=None, description="Correlation id echoed in the X-Request-ID header."
    )
    details: Any | None = Field(
        default=None, description="Optional structured context (limits, fields...)."
    )


class ErrorResponse(BaseModel):
    """Envelope returned by every error response."""

    error: ErrorBody
