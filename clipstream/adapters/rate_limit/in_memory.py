"""In-process windowed counter used when the shared store is unavailable.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: a single lock guards the read-increment-write on entries.
- Bounded: expired entries are swept and the least recently used keys are
  evicted once ``max_keys`` is exceeded.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable

from clipstream.adapters.rate_limit.base import CounterBackend, RateLimitResult

logger = logging.getLogger(__name__)


@dataclass
class CounterEntry:
    count: int
    window_start: float


class InMemoryCounterBackend(CounterBackend):
    """Counts requests per key in a window that starts at the key's first hit.

    The window for a key opens on its first request and is reset by the first
    request that arrives more than ``window_ms`` after it opened.
    """

    name = "memory"

    def __init__(
        self,
        *,
        max_keys: int = 10_000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the fallback counter.

        Args:
            max_keys: Maximum number of keys tracked at once.
            clock: Time source returning UNIX time in seconds.

        Raises:
            ValueError: If max_keys is invalid.
        """
        if max_keys < 1:
            raise ValueError("max_keys must be >= 1")

        self._max_keys = max_keys
        self._clock = clock
        self._lock = threading.RLock()
        self._entries: OrderedDict[str, CounterEntry] = OrderedDict()
        self._longest_window_s = 0.0
        self._inserts_since_sweep = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def consume(self, key: str, *, limit: int, window_ms: int) -> RateLimitResult:
        """Synchronously count one request for ``key``.

        Raises:
            ValueError: If key is empty or limit/window_ms are invalid.
        """
        if not key:
            raise ValueError("key must be a non-empty string")
        if limit < 1 or window_ms < 1:
            raise ValueError("limit and window_ms must be >= 1")

        window_s = window_ms / 1000
        now = self._clock()

        with self._lock:
            self._longest_window_s = max(self._longest_window_s, window_s)

            entry = self._entries.get(key)
            if entry is None:
                entry = CounterEntry(count=0, window_start=now)
                self._entries[key] = entry
                self._inserts_since_sweep += 1
            elif now - entry.window_start > window_s:
                entry.count = 0
                entry.window_start = now
            self._entries.move_to_end(key)

            reset_at = entry.window_start + window_s
            if entry.count >= limit:
                return RateLimitResult(
                    allowed=False,
                    limit=limit,
                    remaining=0,
                    reset_at=int(math.ceil(reset_at)),
                    retry_after_seconds=max(0, int(math.ceil(reset_at - now))),
                )

            entry.count += 1
            allowed = RateLimitResult(
                allowed=True,
                limit=limit,
                remaining=max(0, limit - entry.count),
                reset_at=int(math.ceil(reset_at)),
                retry_after_seconds=None,
            )
            self._evict_if_over_capacity_locked(now)
            return allowed

    async def hit(self, key: str, *, limit: int, window_ms: int) -> RateLimitResult:
        return self.consume(key, limit=limit, window_ms=window_ms)

    def clear(self) -> None:
        """Forget every tracked key."""
        with self._lock:
            self._entries.clear()
            self._inserts_since_sweep = 0

    def _evict_if_over_capacity_locked(self, now: float) -> None:
        """Sweep expired keys, then evict LRU keys down to ``max_keys``.

        A full sweep runs at most once per ``max_keys`` new keys; in between
        only the expired prefix of the LRU order is dropped, so a map full of
        live keys costs O(1) per insert.
        """
        if len(self._entries) <= self._max_keys:
            return

        if self._inserts_since_sweep >= self._max_keys:
            expired = [
                key
                for key, entry in self._entries.items()
                if now - entry.window_start > self._longest_window_s
            ]
            self._inserts_since_sweep = 0
        else:
            expired = []
            for key, entry in self._entries.items():
                if now - entry.window_start <= self._longest_window_s:
                    break
                expired.append(key)
        for key in expired:
            del self._entries[key]

        evicted = 0
        while len(self._entries) > self._max_keys:
            # popitem(last=False) removes the least recently used key
            self._entries.popitem(last=False)
            evicted += 1

        logger.debug(
            "rate_limit.fallback_evicted",
            extra={"expired": len(expired), "evicted": evicted, "size": len(self._entries)},
        )
