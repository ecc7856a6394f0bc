"""Application factory for the FastAPI app.

Centralizes app construction (metadata, middleware, handlers, limiter,
routers) so tests can build isolated instances.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import Depends, FastAPI

from clipstream.api.routes import health_router
from clipstream.core.config import settings
from clipstream.core.exception_handlers import setup_exception_handlers
from clipstream.core.logging import configure_logging
from clipstream.core.middleware import request_id_middleware
from clipstream.core.openapi import apply_openapi_customizations
from clipstream.core.rate_limit import (
    WindowedRateLimiter,
    close_shared_store,
    get_shared_store,
    standard_limiter,
)
from clipstream.schemas.errors import ErrorResponse

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    store = get_shared_store()
    logger.info(
        "app.startup",
        extra={
            "environment": settings.app_env,
            "rate_limit_enabled": settings.rate_limit.enabled,
            "rate_limit_store": store.name if store is not None else "memory",
        },
    )
    try:
        yield
    finally:
        await close_shared_store()
        logger.info("app.shutdown")


def create_app(*, limiter: WindowedRateLimiter | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        limiter: App-wide limiter; defaults to the standard preset.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app_limiter = limiter or standard_limiter()

    app = FastAPI(
        title=settings.app.name,
        description=(
            "Backend for a short-video social app. Every route is protected by a "
            "per-caller request limiter backed by Redis, with an in-process "
            "fallback when Redis is unavailable."
        ),
        version="0.1.0",
        debug=settings.app.debug,
        lifespan=lifespan,
        dependencies=[Depends(app_limiter)],
        responses={429: {"model": ErrorResponse, "description": "Too many requests"}},
    )
    app.state.limiter = app_limiter

    # Middleware
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(health_router)

    # OpenAPI customizations (tags, 429 headers)
    apply_openapi_customizations(app)

    return app
