"""
Background scheduler for periodic cache maintenance.

Two jobs run for the lifetime of the application:
  - catalog sync: pre-populates the cache from the upstream popular listing
  - expired purge: removes entries whose TTL has elapsed

Each job runs once at start and then every configured interval.  A job
whose interval is 0 is not scheduled.
On stop, an in-flight sync is asked to finish its current page before the
tasks are cancelled.
"""

import asyncio
import logging
from typing import Awaitable, Callable, List

from catalog_cache.config import Settings
from catalog_cache.errors import SyncAlreadyRunning
from catalog_cache.facade import CatalogCache

logger = logging.getLogger(__name__)

# Seconds between checks while shutdown waits for a sync to wind down.
_SYNC_POLL_INTERVAL: float = 0.05


class CacheMaintenanceScheduler:
    """
    Scheduler for periodic background sync and purge tasks.

    Owns no cache state: it drives the :class:`CatalogCache` it is given.
    """

    def __init__(self, cache: CatalogCache, settings: Settings) -> None:
        """
        Initialize the scheduler.

        Args:
            cache: Cache facade to maintain
            settings: Source of the intervals and sync size
        """
        self.cache = cache
        self.settings = settings
        self._tasks: List[asyncio.Task] = []
        self._running = False

    async def start(self) -> None:
        """Start all scheduled background tasks."""
        if self._running:
            logger.warning("Scheduler already running")
            return

        self._running = True
        logger.info("Starting cache maintenance scheduler")

        if self.settings.sync_interval > 0 and self.cache.coordinator is not None:
            self._tasks.append(asyncio.create_task(self._run_periodic_task(
                self._sync_catalog,
                self.settings.sync_interval,
                "catalog_sync",
            )))
        if self.settings.purge_interval > 0:
            self._tasks.append(asyncio.create_task(self._run_periodic_task(
                self._purge_expired,
                self.settings.purge_interval,
                "purge_expired",
            )))

        logger.info(
            "Scheduler started with %d tasks: catalog_sync(%ds), purge_expired(%ds)",
            len(self._tasks),
            self.settings.sync_interval,
            self.settings.purge_interval,
        )

    async def stop(self) -> None:
        """Stop all scheduled background tasks."""
        if not self._running:
            logger.warning("Scheduler not running")
            return

        self._running = False
        logger.info("Stopping cache maintenance scheduler")

        await self._wait_for_sync()
        for task in self._tasks:
            task.cancel()

        await asyncio.gather(*self._tasks, return_exceptions=True)

        self._tasks = []
        logger.info("Scheduler stopped")

    async def _run_periodic_task(
        self,
        task_func: Callable[..., Awaitable[None]],
        interval_seconds: int,
        task_name: str,
    ) -> None:
        """
        Run a task periodically at the specified interval.

        Args:
            task_func: Async function to execute periodically
            interval_seconds: Interval between executions in seconds
            task_name: Name of the task for logging
        """
        logger.info("Starting periodic task %s with interval %ds", task_name, interval_seconds)

        while self._running:
            try:
                await task_func()
            except asyncio.CancelledError:
                logger.info("Periodic task %s cancelled", task_name)
                break
            except Exception as e:
                logger.error(
                    "Error in periodic task %s: %s",
                    task_name,
                    str(e),
                    exc_info=True,
                )

            try:
                await asyncio.sleep(interval_seconds)
            except asyncio.CancelledError:
                logger.info("Periodic task %s cancelled", task_name)
                break

    async def _wait_for_sync(self) -> None:
        """
        Ask an in-flight sync to stop and wait for it to flush its current page.

        Gives up after ``sync_shutdown_grace`` seconds; the sync task is then
        cancelled with the rest.
        """
        if not self.cache.cancel_sync():
            return

        grace = self.settings.sync_shutdown_grace
        loop = asyncio.get_running_loop()
        deadline = loop.time() + grace
        while self.cache.sync_running:
            if loop.time() >= deadline:
                logger.warning("In-flight sync did not stop within %.1fs, cancelling it", grace)
                return
            await asyncio.sleep(_SYNC_POLL_INTERVAL)
        logger.info("In-flight sync stopped at a page boundary")

    async def _sync_catalog(self) -> None:
        """Sync the configured number of popular items for every configured listing."""
        logger.debug("Running scheduled catalog sync")
        try:
            reports = await self.cache.sync_catalog(
                self.settings.sync_default_count,
                self.settings.tmdb_media_types,
            )
        except SyncAlreadyRunning:
            logger.info("Scheduled sync skipped: a sync is already running")
            return
        for report in reports:
            logger.debug(
                "Scheduled sync of %s finished with status %s",
                report.media_type,
                report.status.value,
            )

    async def _purge_expired(self) -> None:
        """Remove expired entries."""
        logger.debug("Running scheduled purge of expired entries")
        await self.cache.purge_expired()
