"""Unit tests for the in-memory counter backend."""

from collections import OrderedDict
from unittest.mock import Mock

import pytest

from clipstream.adapters.rate_limit.in_memory import InMemoryCounterBackend


def test_allows_up_to_limit_in_same_window() -> None:
    clock = Mock(return_value=1000.0)
    backend = InMemoryCounterBackend(clock=clock)

    assert backend.consume("k", limit=3, window_ms=60_000).allowed is True
    assert backend.consume("k", limit=3, window_ms=60_000).allowed is True
    result = backend.consume("k", limit=3, window_ms=60_000)
    assert result.allowed is True
    assert result.remaining == 0


def test_blocks_when_over_limit() -> None:
    clock = Mock(return_value=1000.0)
    backend = InMemoryCounterBackend(clock=clock)

    assert backend.consume("k", limit=2, window_ms=60_000).allowed is True
    assert backend.consume("k", limit=2, window_ms=60_000).allowed is True

    blocked = backend.consume("k", limit=2, window_ms=60_000)
    assert blocked.allowed is False
    assert blocked.remaining == 0
    assert blocked.retry_after_seconds == 60
    assert blocked.reset_at == 1060


def test_rejected_requests_are_not_counted() -> None:
    clock = Mock(return_value=1000.0)
    backend = InMemoryCounterBackend(clock=clock)

    backend.consume("k", limit=1, window_ms=1000)
    for _ in range(5):
        assert backend.consume("k", limit=1, window_ms=1000).allowed is False

    clock.return_value = 1001.5
    result = backend.consume("k", limit=1, window_ms=1000)
    assert result.allowed is True
    assert result.remaining == 0


def test_window_starts_at_first_request(fake_time) -> None:
    backend = InMemoryCounterBackend(clock=fake_time)

    assert backend.consume("k", limit=2, window_ms=1000).allowed is True  # t=0
    fake_time.advance_ms(100)
    assert backend.consume("k", limit=2, window_ms=1000).allowed is True  # t=100
    fake_time.advance_ms(100)
    assert backend.consume("k", limit=2, window_ms=1000).allowed is False  # t=200
    fake_time.advance_ms(900)
    assert backend.consume("k", limit=2, window_ms=1000).allowed is True  # t=1100


def test_window_is_not_reset_before_it_elapses(fake_time) -> None:
    backend = InMemoryCounterBackend(clock=fake_time)

    assert backend.consume("k", limit=1, window_ms=1000).allowed is True
    fake_time.advance_ms(999)
    assert backend.consume("k", limit=1, window_ms=1000).allowed is False


def test_isolated_by_key() -> None:
    clock = Mock(return_value=1000.0)
    backend = InMemoryCounterBackend(clock=clock)

    assert backend.consume("k1", limit=1, window_ms=60_000).allowed is True
    assert backend.consume("k1", limit=1, window_ms=60_000).allowed is False

    assert backend.consume("k2", limit=1, window_ms=60_000).allowed is True


def test_evicts_least_recently_used_key_when_full() -> None:
    clock = Mock(return_value=1000.0)
    backend = InMemoryCounterBackend(max_keys=2, clock=clock)

    backend.consume("a", limit=1, window_ms=60_000)
    backend.consume("b", limit=1, window_ms=60_000)
    # Touch "a" so that "b" becomes least recently used
    backend.consume("a", limit=1, window_ms=60_000)
    backend.consume("c", limit=1, window_ms=60_000)

    assert len(backend) == 2
    # "a" is still exhausted, "b" was forgotten
    assert backend.consume("a", limit=1, window_ms=60_000).allowed is False
    assert backend.consume("b", limit=1, window_ms=60_000).allowed is True


def test_expired_entries_are_swept_before_eviction(fake_time) -> None:
    backend = InMemoryCounterBackend(max_keys=2, clock=fake_time)

    backend.consume("old", limit=1, window_ms=1000)
    fake_time.advance_ms(5000)
    backend.consume("a", limit=1, window_ms=1000)
    backend.consume("b", limit=1, window_ms=1000)

    assert len(backend) == 2
    assert backend.consume("a", limit=1, window_ms=1000).allowed is False
    assert backend.consume("b", limit=1, window_ms=1000).allowed is False


def test_clear_forgets_all_keys() -> None:
    backend = InMemoryCounterBackend(clock=Mock(return_value=1000.0))
    backend.consume("k", limit=1, window_ms=60_000)

    backend.clear()

    assert len(backend) == 0
    assert backend.consume("k", limit=1, window_ms=60_000).allowed is True


@pytest.mark.asyncio
async def test_hit_delegates_to_consume() -> None:
    backend = InMemoryCounterBackend(clock=Mock(return_value=1000.0))

    first = await backend.hit("k", limit=1, window_ms=60_000)
    second = await backend.hit("k", limit=1, window_ms=60_000)

    assert first.allowed is True
    assert second.allowed is False
    assert backend.available is True


def test_invalid_constructor_args() -> None:
    with pytest.raises(ValueError):
        InMemoryCounterBackend(max_keys=0)


@pytest.mark.parametrize(
    "key, limit, window_ms",
    [
        ("", 1, 1000),
        ("k", 0, 1000),
        ("k", 1, 0),
    ],
)
def test_invalid_consume_args(key: str, limit: int, window_ms: int) -> None:
    backend = InMemoryCounterBackend()

    with pytest.raises(ValueError):
        backend.consume(key, limit=limit, window_ms=window_ms)


class CountingEntries(OrderedDict):
    """Entry map that counts how many entries eviction looks at."""

    def __init__(self) -> None:
        super().__init__()
        self.visited = 0

    def items(self):
        for item in super().items():
            self.visited += 1
            yield item


def test_full_map_of_live_keys_does_not_rescan_on_every_insert() -> None:
    backend = InMemoryCounterBackend(max_keys=100, clock=Mock(return_value=1000.0))
    entries = CountingEntries()
    backend._entries = entries

    for i in range(101):
        backend.consume(f"caller-{i}", limit=1, window_ms=60_000)
    entries.visited = 0

    for i in range(101, 151):
        backend.consume(f"caller-{i}", limit=1, window_ms=60_000)

    assert len(backend) == 100
    # One look at the live LRU head per new key
    assert entries.visited == 50


def test_periodic_sweep_drops_expired_keys_behind_live_ones(fake_time) -> None:
    backend = InMemoryCounterBackend(max_keys=3, clock=fake_time)

    backend.consume("stale", limit=5, window_ms=1000)
    fake_time.advance_ms(500)
    backend.consume("fresh", limit=5, window_ms=1000)
    fake_time.advance_ms(400)
    # "stale" is touched last, but its window opened first
    backend.consume("stale", limit=5, window_ms=1000)
    fake_time.advance_ms(200)
    backend.consume("new", limit=5, window_ms=1000)

    backend.consume("newer", limit=5, window_ms=1000)

    assert len(backend) == 3
    # The full sweep removed "stale" instead of evicting the live "fresh"
    assert backend.consume("fresh", limit=2, window_ms=1000).remaining == 0
