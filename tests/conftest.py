"""Pytest configuration and fixtures shared across all test modules.

Environment variables are set before anything imports the settings module so
tests never pick up a developer's .env file or a real Redis instance.
"""

import os

# CRITICAL: Set these before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ["REDIS_ENABLED"] = "false"
os.environ.pop("REDIS_URL", None)
os.environ.pop("REDIS_HOST", None)
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("RATE_LIMIT_ENABLED", "true")

import pytest
from fastapi import Request


class FakeTime:
    """Deterministic clock used to test window rollover."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.current = start

    def __call__(self) -> float:
        return self.current

    def advance_ms(self, ms: float) -> None:
        self.current += ms / 1000


@pytest.fixture
def fake_time() -> FakeTime:
    return FakeTime()


def _build_request(
    host: str | None = "203.0.113.7",
    *,
    path: str = "/test",
    user=None,
) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": path,
        "raw_path": path.encode(),
        "query_string": b"",
        "headers": [],
        "client": (host, 50000) if host is not None else None,
        "server": ("testserver", 80),
        "scheme": "http",
        "root_path": "",
    }
    request = Request(scope)
    if user is not None:
        request.state.user = user
    return request


@pytest.fixture
def make_request():
    """Factory for bare Starlette requests used to call limiters directly."""
    return _build_request
