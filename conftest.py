"""
Root conftest for the catalog cache test suite.

Sets required environment variables BEFORE any catalog_cache module is
imported, so that ``catalog_cache.config.Settings`` can instantiate without
raising a ``ValidationError`` for the missing ``TMDB_API_KEY``.
"""

import os

# Must be set before any import of catalog_cache.config triggers Settings()
os.environ.setdefault("TMDB_API_KEY", "test-key-not-real")

from datetime import datetime, timedelta, timezone

import pytest


class FakeClock:
    """Manually advanced UTC clock for TTL tests."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, tzinfo=timezone.utc)) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    """A fresh FakeClock starting at 2026-01-01T00:00:00Z."""
    return FakeClock()
