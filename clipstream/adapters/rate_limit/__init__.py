"""Counting backends for the request limiters.

Two variants share one interface: a Redis counter shared by every process and
an in-process fallback used while Redis is unconfigured or failing.
"""

from __future__ import annotations

from clipstream.adapters.rate_limit.base import CounterBackend, RateLimitResult
from clipstream.adapters.rate_limit.in_memory import InMemoryCounterBackend
from clipstream.adapters.rate_limit.redis_store import RedisCounterBackend

__all__ = [
    "CounterBackend",
    "InMemoryCounterBackend",
    "RateLimitResult",
    "RedisCounterBackend",
]
