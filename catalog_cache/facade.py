"""
Cache facade: the single entry point the application uses.

Wraps whichever backend variant configuration selected and, when an
upstream client is available, the sync coordinator.  An instance is
constructed explicitly at startup and closed at shutdown; nothing in this
package keeps a module-level cache.

Read policy (stale-serve): ``get`` returns expired entries marked
``Freshness.EXPIRED`` unless the caller passes ``fresh_only=True``, in
which case an expired entry is reported as a miss.
"""

import logging
from typing import Any, Mapping, Optional, Sequence

from catalog_cache.backends import CacheBackend, Clock, create_backend
from catalog_cache.config import Settings
from catalog_cache.errors import BackendError, CatalogCacheError
from catalog_cache.models import CacheEntry, CacheLookup, Freshness
from catalog_cache.stats import CacheStats
from catalog_cache.sync import CatalogClient, SyncCoordinator, SyncRun, SyncStatus

logger = logging.getLogger(__name__)


class CatalogCache:
    """
    Application-facing catalog metadata cache.

    Usage::

        cache = CatalogCache.from_settings(settings, client=TMDBClient(settings))
        await cache.start()
        lookup = await cache.get("movie-550")
        report = await cache.trigger_sync(100)
        await cache.close()
    """

    def __init__(
        self,
        backend: CacheBackend,
        coordinator: Optional[SyncCoordinator] = None,
    ) -> None:
        self.backend = backend
        self.coordinator = coordinator
        self._hits = 0
        self._stale_hits = 0
        self._misses = 0

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        client: Optional[CatalogClient] = None,
        clock: Optional[Clock] = None,
    ) -> "CatalogCache":
        """Build the configured backend and, if *client* is given, a coordinator."""
        backend = create_backend(settings, clock=clock)
        coordinator = None
        if client is not None:
            coordinator = SyncCoordinator(
                backend,
                client,
                page_size=settings.sync_page_size,
                default_backoff=settings.sync_default_backoff,
                fetch_details=settings.sync_fetch_details,
            )
        return cls(backend, coordinator)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        await self.backend.start()

    async def close(self) -> None:
        if self.coordinator is not None:
            self.coordinator.cancel()
        await self.backend.close()

    # ------------------------------------------------------------------
    # Entry operations
    # ------------------------------------------------------------------

    async def get(self, key: str, fresh_only: bool = False) -> Optional[CacheLookup]:
        """
        Look up *key*.

        Args:
            key:        Catalog key.
            fresh_only: Treat an expired entry as a miss.

        Returns:
            CacheLookup carrying the entry and its freshness, or ``None`` on miss.
        """
        entry = await self.backend.get(key)
        if entry is None:
            self._misses += 1
            logger.debug("Cache miss (not found): key=%r", key)
            return None

        freshness = entry.freshness(self.backend.now())
        if freshness is Freshness.FRESH:
            self._hits += 1
            logger.debug("Cache hit: key=%r", key)
        elif fresh_only:
            self._misses += 1
            logger.debug("Cache miss (expired, fresh_only): key=%r", key)
            return None
        else:
            self._stale_hits += 1
            logger.debug("Cache hit (stale): key=%r", key)
        return CacheLookup(entry=entry, freshness=freshness)

    async def put(self, key: str, payload: dict[str, Any]) -> CacheEntry:
        """Create or overwrite *key*; the volatile backend may evict to make room."""
        return await self.backend.put(key, payload)

    async def invalidate(self, key: str) -> bool:
        """Remove *key* unconditionally.  Absent keys are not an error."""
        return await self.backend.invalidate(key)

    async def bulk_put(self, entries: Mapping[str, dict[str, Any]]) -> int:
        return await self.backend.bulk_put(entries)

    async def purge_expired(self) -> int:
        removed = await self.backend.purge_expired()
        logger.info("Purged %d expired cache entries", removed)
        return removed

    async def clear(self) -> int:
        removed = await self.backend.clear()
        logger.info("Cache cleared: %d entries removed", removed)
        return removed

    # ------------------------------------------------------------------
    # Sync and statistics
    # ------------------------------------------------------------------

    @property
    def sync_running(self) -> bool:
        return self.coordinator is not None and self.coordinator.is_running

    async def trigger_sync(self, requested_count: int, media_type: Optional[str] = None) -> SyncRun:
        """
        Run a bulk sync to completion or abort and return its report.

        Args:
            requested_count: Items to sync.
            media_type:      Popular listing to walk; the client's default when omitted.

        Raises:
            SyncAlreadyRunning: If a sync is already in flight.
            CatalogCacheError: If no upstream client was configured.
        """
        if self.coordinator is None:
            raise CatalogCacheError("sync unavailable: no upstream catalog client configured")

        report = await self.coordinator.run(requested_count, media_type=media_type)
        try:
            stats = await self.get_stats()
        except BackendError as exc:
            # The run report is still returned when the backend cannot be read.
            logger.error("Post-sync cache stats unavailable: %s", exc)
            return report
        logger.info(
            "Post-sync cache stats: total=%d valid=%d expired=%d max_size=%s oldest=%s",
            stats.total_entries,
            stats.valid_entries,
            stats.expired_entries,
            stats.max_size,
            stats.oldest_entry.isoformat() if stats.oldest_entry else None,
        )
        return report

    async def sync_catalog(self, requested_count: int, media_types: Sequence[str]) -> list[SyncRun]:
        """
        Run one sync pass per listing in *media_types*, in order.

        Each listing gets up to *requested_count* items.  A pass that ends
        early does not stop the following ones, except a cancelled pass,
        which ends the whole sequence.

        Raises:
            SyncAlreadyRunning: If a sync is already in flight when a pass starts.
            CatalogCacheError: If no upstream client was configured.
        """
        reports = []
        for media_type in media_types:
            report = await self.trigger_sync(requested_count, media_type=media_type)
            reports.append(report)
            if report.status is SyncStatus.CANCELLED:
                break
        return reports

    def cancel_sync(self) -> bool:
        """Ask the in-flight sync to stop at its next page boundary."""
        return self.coordinator is not None and self.coordinator.cancel()

    async def get_stats(self) -> CacheStats:
        """Backend health figures plus this facade's lookup counters."""
        stats = await self.backend.stats()
        return stats.model_copy(
            update={
                "hits": self._hits,
                "stale_hits": self._stale_hits,
                "misses": self._misses,
            }
        )
