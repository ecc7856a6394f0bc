"""Counter backend interface shared by the limiter backends.

A limiter talks to exactly one of two backend variants per request: the shared
store (Redis) while it is healthy, or its own in-process fallback otherwise.
Both variants implement this interface so the selection is an explicit health
check rather than feature detection on a client object.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a counting operation.

    Attributes:
        allowed: Whether the request is allowed to proceed.
        limit: Max requests per window.
        remaining: Remaining requests in the current window (0 when blocked).
        reset_at: UNIX epoch seconds when the current window resets.
        retry_after_seconds: Suggested wait time in seconds when blocked.
    """

    allowed: bool
    limit: int
    remaining: int
    reset_at: int
    retry_after_seconds: int | None


class CounterBackend(ABC):
    """Interface for windowed request counters."""

    name: str = "abstract"

    @property
    def available(self) -> bool:
        """Whether the backend should be used for the next request."""
        return True

    @abstractmethod
    async def hit(self, key: str, *, limit: int, window_ms: int) -> RateLimitResult:
        """Count one request for ``key`` and decide whether it is admitted.

        Args:
            key: Namespaced limiter key (e.g. ``ratelimit:203.0.113.7``).
            limit: Max admitted requests per window.
            window_ms: Window length in milliseconds.

        Returns:
            RateLimitResult describing the decision.
        """
        raise NotImplementedError

    async def ping(self) -> bool:
        """Connectivity check used by the health endpoint."""
        return True

    async def close(self) -> None:
        """Release any connections held by the backend."""
        return None
