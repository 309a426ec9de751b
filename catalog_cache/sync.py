"""
Bulk synchronization of the cache from the upstream popular listing.

The coordinator walks listing pages in order, skips keys that are already
cached and fresh, fetches detail for summary-only items, normalizes them,
and flushes one batch per page to the backend.  Per-item failures are
counted and skipped; only rate-limit exhaustion on a page, a
non-recoverable upstream error, a backend write failure or cancellation
ends a run early, and even then the partial :class:`SyncRun` is returned
rather than raised.

Scheduling rules:
  - at most one run at a time per coordinator; a concurrent request
    raises :class:`~catalog_cache.errors.SyncAlreadyRunning` immediately
  - each page gets at most one retry, after the upstream-specified
    backoff (or ``default_backoff`` when none is given)
  - cancellation is checked once per page boundary, so a page that has
    started is always finished and flushed
  - upstream calls never happen while a backend lock is held
"""

import asyncio
import logging
import time
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Protocol

from pydantic import BaseModel, Field

from catalog_cache.backends.base import CacheBackend, utc_now
from catalog_cache.errors import (
    AuthenticationError,
    BackendError,
    NormalizationError,
    NotFound,
    RateLimited,
    SyncAlreadyRunning,
    UpstreamError,
)
from catalog_cache.models import CatalogItem, PopularPage
from catalog_cache.normalizer import normalize_item

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


class CatalogClient(Protocol):
    """The upstream operations the coordinator depends on."""

    page_size: int

    async def fetch_by_id(self, key: str) -> CatalogItem: ...

    async def fetch_popular_page(self, page: int, media_type: Optional[str] = None) -> PopularPage: ...


class SyncStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"  # requested count reached, or every needed page walked
    EXHAUSTED = "exhausted"  # upstream listing ran out of pages first
    RATE_LIMITED = "rate_limited"  # a page was throttled twice
    CANCELLED = "cancelled"
    ABORTED = "aborted"  # non-recoverable upstream or backend error


class SyncRun(BaseModel):
    """Progress and outcome of one sync invocation."""

    requested: int = Field(..., ge=0)
    media_type: Optional[str] = None
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped_duplicate: int = 0
    pages_fetched: int = 0
    status: SyncStatus = SyncStatus.RUNNING
    error: Optional[str] = None
    started_at: datetime
    finished_at: Optional[datetime] = None
    elapsed_seconds: float = 0.0

    @property
    def ended_early(self) -> bool:
        return self.status in (SyncStatus.RATE_LIMITED, SyncStatus.CANCELLED, SyncStatus.ABORTED)


class SyncCoordinator:
    """
    Populates a cache backend from an upstream catalog client.

    Args:
        backend:         Backend that receives the page batches.
        client:          Upstream catalog client.
        page_size:       Items per listing page; defaults to ``client.page_size``.
        default_backoff: Seconds to wait on a rate-limit signal without a hint.
        fetch_details:   Fetch full detail for summary-only listing items.
        sleep:           Awaitable sleep, injectable for tests.
    """

    def __init__(
        self,
        backend: CacheBackend,
        client: CatalogClient,
        page_size: Optional[int] = None,
        default_backoff: float = 10.0,
        fetch_details: bool = True,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.backend = backend
        self.client = client
        self.page_size = page_size or client.page_size
        if self.page_size < 1:
            raise ValueError("page_size must be at least 1")
        self.default_backoff = default_backoff
        self.fetch_details = fetch_details
        self._sleep = sleep
        self._guard = asyncio.Lock()
        self._cancel = asyncio.Event()
        # Keys handled earlier in the current run.
        self._seen_keys: set[str] = set()

    @property
    def is_running(self) -> bool:
        return self._guard.locked()

    def cancel(self) -> bool:
        """Request cooperative cancellation of the in-flight run.

        Returns:
            ``True`` if a run was in flight and will stop at the next page boundary.
        """
        if not self.is_running:
            return False
        logger.info("Sync cancellation requested")
        self._cancel.set()
        return True

    async def run(self, requested: int, media_type: Optional[str] = None) -> SyncRun:
        """
        Sync up to *requested* items and return the run report.

        *media_type* selects the popular listing to walk; the client's
        configured listing is used when omitted.

        Raises:
            SyncAlreadyRunning: If another run is in flight.
            ValueError: If *requested* is negative.
        """
        if requested < 0:
            raise ValueError("requested must not be negative")
        if self._guard.locked():
            raise SyncAlreadyRunning()

        async with self._guard:
            self._cancel.clear()
            self._seen_keys = set()
            report = SyncRun(
                requested=requested,
                media_type=media_type or getattr(self.client, "media_type", None),
                started_at=utc_now(),
            )
            started = time.monotonic()
            logger.info(
                "Starting catalog sync for %d items (listing=%s)",
                requested,
                report.media_type or "default",
            )
            try:
                await self._walk(report)
            finally:
                report.finished_at = utc_now()
                report.elapsed_seconds = time.monotonic() - started
                if report.status is SyncStatus.RUNNING:
                    report.status = SyncStatus.ABORTED

        self._log_outcome(report)
        return report

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _walk(self, report: SyncRun) -> None:
        pages_needed = -(-report.requested // self.page_size)

        for page in range(1, pages_needed + 1):
            if self._cancel.is_set():
                logger.info("Sync cancelled before page %d", page)
                report.status = SyncStatus.CANCELLED
                return

            try:
                listing = await self._fetch_page(page, report.media_type)
            except RateLimited as exc:
                logger.error("Sync aborted: page %d rate-limited after retry", page)
                report.status = SyncStatus.RATE_LIMITED
                report.error = str(exc)
                return
            except UpstreamError as exc:
                logger.error("Sync aborted: page %d failed — %s", page, exc)
                report.status = SyncStatus.ABORTED
                report.error = str(exc)
                return
            report.pages_fetched += 1

            try:
                batch, fatal = await self._process_page(listing, report)
            except BackendError as exc:
                logger.error("Sync aborted: reading cache for page %d failed — %s", page, exc)
                report.status = SyncStatus.ABORTED
                report.error = str(exc)
                return

            try:
                written = await self.backend.bulk_put(batch)
            except BackendError as exc:
                logger.error("Sync aborted: flushing page %d failed — %s", page, exc)
                report.failed += len(batch)
                report.status = SyncStatus.ABORTED
                report.error = str(exc)
                return
            report.succeeded += written
            logger.info(
                "Sync page %d: flushed %d items (processed %d/%d)",
                page,
                written,
                report.processed,
                report.requested,
            )

            if fatal is not None:
                report.status = SyncStatus.ABORTED
                report.error = str(fatal)
                return
            if report.processed >= report.requested:
                break
            if not listing.has_more:
                report.status = SyncStatus.EXHAUSTED
                return

        report.status = SyncStatus.COMPLETED

    async def _fetch_page(self, page: int, media_type: Optional[str]) -> PopularPage:
        """Fetch a listing page, retrying exactly once after a rate-limit signal."""
        try:
            return await self.client.fetch_popular_page(page, media_type=media_type)
        except RateLimited as exc:
            delay = exc.retry_after if exc.retry_after is not None else self.default_backoff
            logger.warning("Page %d rate-limited — backing off %.1fs before retry", page, delay)
            await self._sleep(delay)
        return await self.client.fetch_popular_page(page, media_type=media_type)

    async def _process_page(
        self,
        listing: PopularPage,
        report: SyncRun,
    ) -> tuple[dict[str, dict[str, Any]], Optional[AuthenticationError]]:
        """
        Turn one listing page into a write batch, updating *report* counters.

        Returns:
            ``(batch, fatal)`` where *fatal* is set when credentials were
            rejected mid-page; the batch gathered so far is still returned
            so the caller can flush it.
        """
        batch: dict[str, dict[str, Any]] = {}
        keys = [item.key for item in listing.items if item.id]
        existing = await self.backend.get_many(keys)
        now = self.backend.now()
        seen = self._seen_keys

        for item in listing.items:
            if report.processed >= report.requested:
                break
            report.processed += 1

            if not item.id:
                logger.debug("Skipping listing item without id on page %d", listing.page)
                report.failed += 1
                continue

            key = item.key
            cached = existing.get(key)
            if key in seen or (cached is not None and cached.is_fresh(now)):
                report.skipped_duplicate += 1
                continue
            seen.add(key)

            try:
                detail = item
                if item.summary and self.fetch_details:
                    detail = await self.client.fetch_by_id(key)
                batch[key] = normalize_item(detail)
            except AuthenticationError as exc:
                report.failed += 1
                return batch, exc
            except RateLimited as exc:
                delay = exc.retry_after if exc.retry_after is not None else self.default_backoff
                logger.warning("Detail fetch for %s rate-limited — backing off %.1fs", key, delay)
                report.failed += 1
                await self._sleep(delay)
            except NotFound:
                logger.debug("Item %s no longer exists upstream", key)
                report.failed += 1
            except (UpstreamError, NormalizationError, ValueError, TypeError) as exc:
                # ValueError also covers pydantic ValidationError from a malformed detail item.
                logger.warning("Item %s failed: %s", key, exc)
                report.failed += 1

        return batch, None

    @staticmethod
    def _log_outcome(report: SyncRun) -> None:
        level = logging.WARNING if report.ended_early else logging.INFO
        logger.log(
            level,
            "Catalog sync %s in %.2fs: listing=%s requested=%d processed=%d succeeded=%d "
            "failed=%d skipped_duplicate=%d pages=%d",
            report.status.value,
            report.elapsed_seconds,
            report.media_type or "default",
            report.requested,
            report.processed,
            report.succeeded,
            report.failed,
            report.skipped_duplicate,
            report.pages_fetched,
        )
