"""
Tests for catalog_cache.facade.CatalogCache over both backend variants.
"""

import pytest
import pytest_asyncio

from catalog_cache.backends import DurableCache, VolatileCache
from catalog_cache.config import Settings
from catalog_cache.errors import CatalogCacheError
from catalog_cache.facade import CatalogCache
from catalog_cache.models import Freshness


@pytest_asyncio.fixture(params=["volatile", "durable"])
async def cache(request, tmp_path, clock):
    if request.param == "volatile":
        backend = VolatileCache(ttl=60, max_size=100, clock=clock)
    else:
        backend = DurableCache(f"sqlite+aiosqlite:///{tmp_path / 'c.db'}", ttl=60, clock=clock)
    facade = CatalogCache(backend)
    await facade.start()
    yield facade
    await facade.close()


@pytest.mark.asyncio
async def test_put_then_get_is_fresh(cache) -> None:
    await cache.put("movie-42", {"title": "X"})
    lookup = await cache.get("movie-42")
    assert lookup is not None
    assert lookup.payload == {"title": "X"}
    assert lookup.freshness is Freshness.FRESH
    assert lookup.is_fresh


@pytest.mark.asyncio
async def test_stale_serve_scenario(cache, clock) -> None:
    """ttl=60: fresh at t=30, served as expired with the same payload at t=90."""
    await cache.put("42", {"title": "X"})

    clock.advance(30)
    assert (await cache.get("42")).freshness is Freshness.FRESH

    clock.advance(60)
    lookup = await cache.get("42")
    assert lookup is not None
    assert lookup.freshness is Freshness.EXPIRED
    assert lookup.payload == {"title": "X"}


@pytest.mark.asyncio
async def test_fresh_only_treats_expired_as_miss(cache, clock) -> None:
    await cache.put("42", {"title": "X"})
    clock.advance(90)
    assert await cache.get("42", fresh_only=True) is None


@pytest.mark.asyncio
async def test_invalidate_then_get_is_miss(cache, clock) -> None:
    await cache.put("fresh", {})
    await cache.put("stale", {})
    clock.advance(120)
    for key in ("fresh", "stale", "never-set"):
        await cache.invalidate(key)
        assert await cache.get(key) is None


@pytest.mark.asyncio
async def test_lookup_counters_in_stats(cache, clock) -> None:
    await cache.put("a", {})
    await cache.get("a")
    await cache.get("missing")
    clock.advance(61)
    await cache.get("a")
    await cache.get("a", fresh_only=True)

    stats = await cache.get_stats()
    assert stats.hits == 1
    assert stats.stale_hits == 1
    assert stats.misses == 2
    assert stats.total_entries == stats.valid_entries + stats.expired_entries == 1


@pytest.mark.asyncio
async def test_bulk_put_and_purge(cache, clock) -> None:
    assert await cache.bulk_put({"a": {}, "b": {}}) == 2
    clock.advance(61)
    await cache.put("c", {})
    assert await cache.purge_expired() == 2
    assert (await cache.get_stats()).total_entries == 1
    assert await cache.clear() == 1


@pytest.mark.asyncio
async def test_sync_without_client_is_rejected(cache) -> None:
    with pytest.raises(CatalogCacheError):
        await cache.trigger_sync(10)
    assert cache.cancel_sync() is False
    assert cache.sync_running is False


def test_from_settings_selects_backend(tmp_path) -> None:
    volatile = CatalogCache.from_settings(Settings(tmdb_api_key="k", cache_max_size=5))
    assert isinstance(volatile.backend, VolatileCache)
    assert volatile.backend.max_size == 5
    assert volatile.coordinator is None

    durable = CatalogCache.from_settings(
        Settings(
            tmdb_api_key="k",
            cache_backend="durable",
            database_url=f"sqlite+aiosqlite:///{tmp_path / 'x.db'}",
        )
    )
    assert isinstance(durable.backend, DurableCache)
