"""
Tests for the cache maintenance scheduler.

Verifies task lifecycle, interval-based job selection, periodic task error
handling, that each job drives the correct cache facade method, and that
shutdown lets an in-flight sync flush its current page.
"""

import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from catalog_cache.backends import VolatileCache
from catalog_cache.config import Settings
from catalog_cache.errors import SyncAlreadyRunning
from catalog_cache.facade import CatalogCache
from catalog_cache.models import CatalogItem, PopularPage
from catalog_cache.scheduler import CacheMaintenanceScheduler
from catalog_cache.sync import SyncCoordinator, SyncRun, SyncStatus


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def _settings(**overrides) -> Settings:
    values = {
        "tmdb_api_key": "test-key",
        "sync_interval": 3600,
        "purge_interval": 3600,
        "sync_default_count": 40,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def mock_cache() -> MagicMock:
    """A cache facade double with a coordinator attached."""
    cache = MagicMock()
    cache.coordinator = MagicMock()
    cache.cancel_sync = MagicMock(return_value=False)
    cache.sync_running = False
    cache.purge_expired = AsyncMock(return_value=0)
    cache.sync_catalog = AsyncMock(
        return_value=[
            SyncRun(
                requested=40,
                media_type=media_type,
                processed=40,
                succeeded=40,
                status=SyncStatus.COMPLETED,
                started_at="2026-01-01T00:00:00Z",
            )
            for media_type in ("movie", "tv")
        ]
    )
    return cache


@pytest.fixture
def scheduler(mock_cache: MagicMock) -> CacheMaintenanceScheduler:
    return CacheMaintenanceScheduler(mock_cache, _settings())


# ---------------------------------------------------------------------------
# Start / stop lifecycle
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_scheduler_initialization(mock_cache: MagicMock) -> None:
    sched = CacheMaintenanceScheduler(mock_cache, _settings())

    assert sched.cache is mock_cache
    assert sched._running is False
    assert sched._tasks == []


@pytest.mark.asyncio
async def test_scheduler_start_creates_tasks(scheduler: CacheMaintenanceScheduler) -> None:
    """start() creates the sync and purge tasks and sets _running=True."""
    await scheduler.start()

    assert scheduler._running is True
    assert len(scheduler._tasks) == 2

    await scheduler.stop()


@pytest.mark.asyncio
async def test_scheduler_stop_cancels_tasks(
    scheduler: CacheMaintenanceScheduler, mock_cache: MagicMock
) -> None:
    """stop() asks the in-flight sync to wind down, then cancels every task."""
    await scheduler.start()
    tasks = list(scheduler._tasks)

    await scheduler.stop()

    assert scheduler._running is False
    assert scheduler._tasks == []
    assert all(task.done() for task in tasks)
    mock_cache.cancel_sync.assert_called_once()


@pytest.mark.asyncio
async def test_scheduler_double_start_warning(
    scheduler: CacheMaintenanceScheduler, caplog: pytest.LogCaptureFixture
) -> None:
    await scheduler.start()

    with caplog.at_level(logging.WARNING, logger="catalog_cache.scheduler"):
        await scheduler.start()

    assert "already running" in caplog.text
    assert len(scheduler._tasks) == 2

    await scheduler.stop()


@pytest.mark.asyncio
async def test_scheduler_stop_when_not_running(
    scheduler: CacheMaintenanceScheduler, caplog: pytest.LogCaptureFixture
) -> None:
    with caplog.at_level(logging.WARNING, logger="catalog_cache.scheduler"):
        await scheduler.stop()

    assert "not running" in caplog.text


# ---------------------------------------------------------------------------
# Job selection
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_zero_interval_disables_sync(mock_cache: MagicMock) -> None:
    sched = CacheMaintenanceScheduler(mock_cache, _settings(sync_interval=0))

    await sched.start()
    assert len(sched._tasks) == 1
    await sched.stop()

    mock_cache.sync_catalog.assert_not_awaited()


@pytest.mark.asyncio
async def test_zero_interval_disables_purge(mock_cache: MagicMock) -> None:
    sched = CacheMaintenanceScheduler(mock_cache, _settings(purge_interval=0))

    await sched.start()
    assert len(sched._tasks) == 1
    await sched.stop()

    mock_cache.purge_expired.assert_not_awaited()


@pytest.mark.asyncio
async def test_no_sync_task_without_coordinator(mock_cache: MagicMock) -> None:
    mock_cache.coordinator = None
    sched = CacheMaintenanceScheduler(mock_cache, _settings())

    await sched.start()
    assert len(sched._tasks) == 1
    await sched.stop()


@pytest.mark.asyncio
async def test_jobs_run_once_at_start(
    scheduler: CacheMaintenanceScheduler, mock_cache: MagicMock
) -> None:
    await scheduler.start()
    await asyncio.sleep(0.05)
    await scheduler.stop()

    mock_cache.sync_catalog.assert_awaited_once_with(40, ["movie", "tv"])
    mock_cache.purge_expired.assert_awaited_once()


# ---------------------------------------------------------------------------
# Individual jobs
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_sync_job_uses_configured_count(
    scheduler: CacheMaintenanceScheduler, mock_cache: MagicMock
) -> None:
    await scheduler._sync_catalog()

    mock_cache.sync_catalog.assert_awaited_once_with(40, ["movie", "tv"])


@pytest.mark.asyncio
async def test_sync_job_skips_when_already_running(
    scheduler: CacheMaintenanceScheduler,
    mock_cache: MagicMock,
    caplog: pytest.LogCaptureFixture,
) -> None:
    """A manual sync in flight makes the scheduled one a logged no-op."""
    mock_cache.sync_catalog.side_effect = SyncAlreadyRunning()

    with caplog.at_level(logging.INFO, logger="catalog_cache.scheduler"):
        await scheduler._sync_catalog()

    assert "already running" in caplog.text


@pytest.mark.asyncio
async def test_purge_job_calls_cache(
    scheduler: CacheMaintenanceScheduler, mock_cache: MagicMock
) -> None:
    await scheduler._purge_expired()

    mock_cache.purge_expired.assert_awaited_once()


@pytest.mark.asyncio
async def test_periodic_task_handles_exceptions(
    scheduler: CacheMaintenanceScheduler,
    caplog: pytest.LogCaptureFixture,
) -> None:
    """_run_periodic_task() catches exceptions from task_func, logs them, and keeps looping."""
    failing_task = AsyncMock(side_effect=Exception("Task failed"))

    scheduler._running = True
    task = asyncio.create_task(
        scheduler._run_periodic_task(failing_task, 0, "test_task")
    )

    await asyncio.sleep(0.05)

    scheduler._running = False
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)

    assert "Error in periodic task test_task" in caplog.text
    assert failing_task.call_count >= 2


# ---------------------------------------------------------------------------
# Graceful shutdown
# ---------------------------------------------------------------------------


class SlowDetailCatalog:
    """One page of two movies; the second detail fetch waits for ``release``."""

    page_size = 2

    def __init__(self) -> None:
        self.second_detail_started = asyncio.Event()
        self.release = asyncio.Event()

    async def fetch_popular_page(self, page: int, media_type=None) -> PopularPage:
        items = [
            CatalogItem(id=str(i), media_type="movie", data={"id": i, "title": f"M{i}"}, summary=True)
            for i in (1, 2)
        ]
        return PopularPage(page=page, items=items, has_more=False)

    async def fetch_by_id(self, key: str) -> CatalogItem:
        item_id = key.split("-", 1)[1]
        if item_id == "2":
            self.second_detail_started.set()
            await self.release.wait()
        return CatalogItem(id=item_id, media_type="movie", data={"id": int(item_id), "title": "M"})


def _live_scheduler(catalog: SlowDetailCatalog, clock, **overrides):
    backend = VolatileCache(ttl=60, max_size=100, clock=clock)
    cache = CatalogCache(backend, SyncCoordinator(backend, catalog))
    settings = _settings(
        purge_interval=0,
        sync_default_count=2,
        tmdb_media_types=["movie"],
        **overrides,
    )
    return CacheMaintenanceScheduler(cache, settings), backend


@pytest.mark.asyncio
async def test_stop_lets_in_flight_page_flush(clock) -> None:
    catalog = SlowDetailCatalog()
    sched, backend = _live_scheduler(catalog, clock)
    await sched.start()
    await catalog.second_detail_started.wait()

    stopping = asyncio.create_task(sched.stop())
    await asyncio.sleep(0.01)
    assert not stopping.done()
    catalog.release.set()
    await stopping

    assert (await backend.stats()).total_entries == 2
    assert not sched.cache.sync_running


@pytest.mark.asyncio
async def test_stop_gives_up_after_grace_period(
    clock, caplog: pytest.LogCaptureFixture
) -> None:
    catalog = SlowDetailCatalog()
    sched, backend = _live_scheduler(catalog, clock, sync_shutdown_grace=0.1)
    await sched.start()
    await catalog.second_detail_started.wait()

    with caplog.at_level(logging.WARNING, logger="catalog_cache.scheduler"):
        await sched.stop()

    assert "did not stop within" in caplog.text
    assert sched._tasks == []
    assert not sched.cache.sync_running
    assert (await backend.stats()).total_entries == 0
