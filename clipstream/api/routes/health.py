from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter

from clipstream.core.config import settings
from clipstream.core.rate_limit import get_shared_store
from clipstream.schemas.health import HealthResponse, ServicesStatus

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Health check endpoint.

    Reports whether the shared counter store answers. A disconnected store
    does not make the service unhealthy: limiters fall back to in-process
    counting.
    """

    store = get_shared_store()
    if store is None:
        redis_status = "not_configured"
    elif await store.ping():
        redis_status = "connected"
    else:
        redis_status = "disconnected"

    return HealthResponse(
        timestamp=datetime.now(timezone.utc),
        environment=settings.app_env,
        services=ServicesStatus(redis=redis_status),
    )
