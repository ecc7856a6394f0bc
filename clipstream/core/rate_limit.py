"""Windowed request limiter for FastAPI routes.

This module wires the counting backends into the HTTP layer. A limiter is an
async callable used as a FastAPI dependency, either app-wide or per router::

    app = FastAPI(dependencies=[Depends(standard_limiter())])
    router = APIRouter(dependencies=[Depends(auth_limiter())])

Returning from the dependency lets the request proceed; rejecting raises, so
the request never reaches the route.

Rate limiting strategy:
- Per-key window of ``window_ms`` holding at most ``max_requests`` requests.
- Redis counts while it is configured and healthy, so all processes share one
  budget; otherwise each limiter counts in its own in-process fallback.
- Fail-open: an error while deriving the key or counting is logged and the
  request proceeds. Rate limiting is protective, never a hard dependency.
"""

import hashlib
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping

from fastapi import Request
from starlette.responses import Response

from clipstream.adapters.rate_limit.base import CounterBackend, RateLimitResult
from clipstream.adapters.rate_limit.in_memory import InMemoryCounterBackend
from clipstream.adapters.rate_limit.redis_store import RedisCounterBackend
from clipstream.core.config import settings
from clipstream.core.errors import RateLimitAppError, RateLimitResponse

logger = logging.getLogger(__name__)

KEY_PREFIX = "ratelimit:"

KeyFn = Callable[[Request], str]
ExceededHandler = Callable[[Request], "Response | Awaitable[Response | None] | None"]
StoreProvider = Callable[[], "CounterBackend | None"]


def client_address(request: Request) -> str:
    """Remote address of the caller, ``unknown`` when the server can't tell."""
    return request.client.host if request.client else "unknown"


def authenticated_user_id(request: Request) -> Any | None:
    """Id of the user the auth layer attached to ``request.state.user``."""
    user = getattr(request.state, "user", None)
    if user is None:
        return None
    if isinstance(user, Mapping):
        return user.get("id")
    return getattr(user, "id", None)


def auth_key(request: Request) -> str:
    return f"auth:{client_address(request)}"


def user_key(request: Request) -> str:
    user_id = authenticated_user_id(request)
    return f"user:{user_id if user_id is not None else client_address(request)}"


def rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    """Build Retry-After and X-RateLimit-* headers for a blocked result."""
    return {
        "Retry-After": str(result.retry_after_seconds or 0),
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(result.reset_at),
    }


def reject_with_429(request: Request) -> None:
    """Default exceeded handler: raise a 429 ``rate_limit_error``."""
    result: RateLimitResult | None = getattr(request.state, "rate_limit", None)

    headers = None
    details = None
    if result is not None:
        details = {
            "limit": result.limit,
            "remaining": result.remaining,
            "reset_at": result.reset_at,
            "retry_after": result.retry_after_seconds or 0,
        }
        if settings.rate_limit.include_headers:
            headers = rate_limit_headers(result)

    raise RateLimitAppError(details=details, headers=headers)


@dataclass(frozen=True)
class LimiterConfig:
    """Immutable limiter policy.

    Attributes:
        window_ms: Window length in milliseconds.
        max_requests: Maximum admitted requests per key per window.
        key_fn: Maps a request to its identity string.
        on_exceeded: Invoked when the quota is exhausted.
    """

    window_ms: int = 60_000
    max_requests: int = 60
    key_fn: KeyFn = field(default=client_address)
    on_exceeded: ExceededHandler = field(default=reject_with_429)

    def __post_init__(self) -> None:
        if self.window_ms < 1:
            raise ValueError("window_ms must be >= 1")
        if self.max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if not callable(self.key_fn):
            raise ValueError("key_fn must be callable")
        if not callable(self.on_exceeded):
            raise ValueError("on_exceeded must be callable")


_shared_store: CounterBackend | None = None
_shared_store_dsn: str | None = None


def get_shared_store() -> CounterBackend | None:
    """Return the process-wide Redis backend, or None when not configured.

    The instance is cached in-module so every limiter shares one connection
    pool. If the configured DSN changes (primarily in tests), it is rebuilt.
    """

    global _shared_store, _shared_store_dsn

    dsn = settings.redis.dsn
    if dsn is None:
        return None

    if _shared_store is None or _shared_store_dsn != dsn:
        _shared_store = RedisCounterBackend.from_url(
            dsn,
            socket_timeout=settings.redis.socket_timeout_seconds,
            retry_seconds=settings.redis.retry_seconds,
        )
        _shared_store_dsn = dsn

    return _shared_store


async def close_shared_store() -> None:
    global _shared_store, _shared_store_dsn

    if _shared_store is not None:
        await _shared_store.close()
    _shared_store = None
    _shared_store_dsn = None


def _hash_limiter_key(key: str) -> str:
    """Hash the limiter key for logging without exposing addresses or ids."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]


class WindowedRateLimiter:
    """Admits or rejects requests against a per-key quota.

    Each instance owns its in-process fallback, so limiters with different
    policies never share fallback state.
    """

    def __init__(
        self,
        config: LimiterConfig,
        *,
        store_provider: StoreProvider = get_shared_store,
        fallback: InMemoryCounterBackend | None = None,
    ) -> None:
        self.config = config
        self._store_provider = store_provider
        if fallback is None:
            fallback = InMemoryCounterBackend(max_keys=settings.rate_limit.fallback_max_keys)
        self.fallback = fallback

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"WindowedRateLimiter(window_ms={self.config.window_ms}, "
            f"max_requests={self.config.max_requests})"
        )

    def select_backend(self) -> CounterBackend:
        """Pick the shared store while it is healthy, else the fallback."""
        store = self._store_provider()
        if store is not None and store.available:
            return store
        return self.fallback

    async def __call__(self, request: Request) -> None:
        """Count the request and reject it once the quota is exhausted.

        Raises:
            RateLimitAppError: 429 from the default exceeded handler.
            RateLimitResponse: When a custom handler returned a response.
        """

        if not settings.rate_limit.enabled:
            return

        try:
            key = KEY_PREFIX + self.config.key_fn(request)
            backend = self.select_backend()
            result = await backend.hit(
                key,
                limit=self.config.max_requests,
                window_ms=self.config.window_ms,
            )
        except Exception as exc:
            logger.error(
                "rate_limit.backend_error",
                extra={
                    "error_type": type(exc).__name__,
                    "error_msg": str(exc),
                    "request_path": request.url.path,
                },
            )
            return

        request.state.rate_limit = result
        key_hash = _hash_limiter_key(key)

        if result.allowed:
            logger.debug(
                "rate_limit.allowed",
                extra={
                    "backend": backend.name,
                    "key_hash": key_hash,
                    "limit": result.limit,
                    "remaining": result.remaining,
                    "window_ms": self.config.window_ms,
                },
            )
            return

        logger.warning(
            "rate_limit.exceeded",
            extra={
                "backend": backend.name,
                "key_hash": key_hash,
                "limit": result.limit,
                "window_ms": self.config.window_ms,
                "retry_after_s": result.retry_after_seconds,
                "request_path": request.url.path,
            },
        )
        await self._reject(request)

    async def _reject(self, request: Request) -> None:
        outcome = self.config.on_exceeded(request)
        if inspect.isawaitable(outcome):
            outcome = await outcome
        if isinstance(outcome, Response):
            raise RateLimitResponse(outcome)
        # Handler neither raised nor produced a response: still reject
        raise RateLimitAppError()

    def reset(self) -> None:
        """Forget the fallback counters (Redis counters expire on their own)."""
        self.fallback.clear()


def create_limiter(
    *,
    window_ms: int = 60_000,
    max_requests: int = 60,
    key_fn: KeyFn | None = None,
    on_exceeded: ExceededHandler | None = None,
    store: CounterBackend | None = None,
    use_shared_store: bool = True,
    fallback: InMemoryCounterBackend | None = None,
) -> WindowedRateLimiter:
    """Build a limiter; invalid policy values raise here, not per request.

    Args:
        window_ms: Window length in milliseconds.
        max_requests: Maximum admitted requests per key per window.
        key_fn: Request identity, defaults to the caller address.
        on_exceeded: Exceeded handler, defaults to a 429 ``rate_limit_error``.
        store: Explicit shared backend; defaults to the configured Redis store.
        use_shared_store: False to count in-process only.
        fallback: Explicit in-process backend (mostly for tests).

    Raises:
        ValueError: If window_ms or max_requests are not positive.
    """

    config = LimiterConfig(
        window_ms=window_ms,
        max_requests=max_requests,
        key_fn=key_fn or client_address,
        on_exceeded=on_exceeded or reject_with_429,
    )

    if store is not None:
        provider: StoreProvider = lambda: store  # noqa: E731
    elif use_shared_store:
        provider = get_shared_store
    else:
        provider = lambda: None  # noqa: E731

    return WindowedRateLimiter(config, store_provider=provider, fallback=fallback)


def standard_limiter(**overrides: Any) -> WindowedRateLimiter:
    """General API limiter keyed by caller address."""
    options: dict[str, Any] = {
        "window_ms": settings.rate_limit.standard_window_ms,
        "max_requests": settings.rate_limit.standard_max,
        "key_fn": client_address,
    }
    options.update(overrides)
    return create_limiter(**options)


def auth_limiter(**overrides: Any) -> WindowedRateLimiter:
    """Stricter limiter for authentication endpoints."""
    options: dict[str, Any] = {
        "window_ms": settings.rate_limit.auth_window_ms,
        "max_requests": settings.rate_limit.auth_max,
        "key_fn": auth_key,
    }
    options.update(overrides)
    return create_limiter(**options)


def user_limiter(**overrides: Any) -> WindowedRateLimiter:
    """Per-user limiter; anonymous callers are keyed by address."""
    options: dict[str, Any] = {
        "window_ms": settings.rate_limit.user_window_ms,
        "max_requests": settings.rate_limit.user_max,
        "key_fn": user_key,
    }
    options.update(overrides)
    return create_limiter(**options)
