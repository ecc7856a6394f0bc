"""Redis-backed windowed counter shared by every API process.

The counter for a key is created at 1 with an expiry of one window and is
incremented atomically afterwards; the key expiring resets the window. The
increment happens before the comparison with the limit (a single Lua script),
so concurrent requests from different processes can never both observe a
pre-increment count below the limit.
"""

from __future__ import annotations

import logging
import math
import time
from typing import Callable

from redis.asyncio import Redis
from redis.exceptions import RedisError

from clipstream.adapters.rate_limit.base import CounterBackend, RateLimitResult

logger = logging.getLogger(__name__)

# KEYS[1] = counter key, ARGV[1] = window in milliseconds.
# Returns {count, ttl_ms}. A counter left without an expiry is repaired.
INCREMENT_SCRIPT = """
local current = redis.call('INCR', KEYS[1])
if current == 1 then
    redis.call('PEXPIRE', KEYS[1], ARGV[1])
end
local ttl = redis.call('PTTL', KEYS[1])
if ttl < 0 then
    redis.call('PEXPIRE', KEYS[1], ARGV[1])
    ttl = tonumber(ARGV[1])
end
return {current, ttl}
"""


class RedisCounterBackend(CounterBackend):
    """Fixed-window counter stored in Redis.

    After a command fails (connection refused, timeout, ...) the backend
    reports itself unavailable for ``retry_seconds`` so limiters switch to
    their in-process fallback instead of paying the timeout on every request.
    """

    name = "redis"

    def __init__(
        self,
        client: Redis,
        *,
        retry_seconds: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._script = client.register_script(INCREMENT_SCRIPT)
        self._retry_seconds = retry_seconds
        self._clock = clock
        self._unavailable_until: float | None = None

    @classmethod
    def from_url(
        cls,
        url: str,
        *,
        socket_timeout: float = 0.5,
        retry_seconds: float = 5.0,
    ) -> "RedisCounterBackend":
        """Build a backend with its own connection pool.

        No connection is opened here; the first command connects lazily.
        """
        client = Redis.from_url(
            url,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(client, retry_seconds=retry_seconds)

    @property
    def available(self) -> bool:
        if self._unavailable_until is None:
            return True
        if self._clock() >= self._unavailable_until:
            self._unavailable_until = None
            logger.info("rate_limit.store_retry", extra={"backend": self.name})
            return True
        return False

    def mark_unavailable(self, exc: BaseException) -> None:
        """Switch limiters to their fallback for the retry period."""
        self._unavailable_until = self._clock() + self._retry_seconds
        logger.warning(
            "rate_limit.store_unavailable",
            extra={
                "backend": self.name,
                "error_type": type(exc).__name__,
                "error_msg": str(exc),
                "retry_in_s": self._retry_seconds,
            },
        )

    async def hit(self, key: str, *, limit: int, window_ms: int) -> RateLimitResult:
        try:
            count, ttl_ms = await self._script(keys=[key], args=[window_ms])
        except (RedisError, OSError) as exc:
            self.mark_unavailable(exc)
            raise

        count = int(count)
        ttl_s = max(0, int(ttl_ms)) / 1000
        reset_at = int(math.ceil(time.time() + ttl_s))

        if count > limit:
            return RateLimitResult(
                allowed=False,
                limit=limit,
                remaining=0,
                reset_at=reset_at,
                retry_after_seconds=int(math.ceil(ttl_s)),
            )
        return RateLimitResult(
            allowed=True,
            limit=limit,
            remaining=max(0, limit - count),
            reset_at=reset_at,
            retry_after_seconds=None,
        )

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except (RedisError, OSError) as exc:
            logger.warning(
                "rate_limit.store_ping_failed",
                extra={"backend": self.name, "error_type": type(exc).__name__},
            )
            return False

    async def close(self) -> None:
        await self._client.aclose()
