"""Pydantic schemas for the health endpoint."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

StoreStatus = Literal["connected", "disconnected", "not_configured"]


class ServicesStatus(BaseModel):
    redis: StoreStatus = Field(
        ..., description="State of the shared rate limit counter store."
    )


class HealthResponse(BaseModel):
    """Liveness payload; the API stays healthy when Redis is down (fail-open)."""

    status: Literal["healthy"] = "healthy"
    timestamp: datetime
    environment: str
    services: ServicesStatus
