"""
In-process bounded cache backend.

Storage layout:
    _entries: OrderedDict[str, CacheEntry]
        key -> entry, ordered by write time (oldest first)

Every write moves its key to the end, so the head of the mapping is always
the entry with the oldest ``fetched_at``.  A write stamped earlier than the
current tail (a wall clock that stepped back) re-sorts the mapping so that
this keeps holding.

When a new key would exceed ``max_size`` the oldest entry is evicted
first; among entries sharing the oldest timestamp the lexicographically
smallest key goes.

A single ``asyncio.Lock`` guards the mapping.  No I/O happens while it is
held, so every critical section is short and O(1) apart from the tie scan and that re-sort.
"""

import asyncio
import logging
from collections import OrderedDict
from typing import Any, Iterable, Mapping, Optional

from catalog_cache.backends.base import CacheBackend, Clock
from catalog_cache.models import CacheEntry
from catalog_cache.stats import CacheStats, compute_stats

logger = logging.getLogger(__name__)


class VolatileCache(CacheBackend):
    """Bounded in-memory cache.  Contents are lost on restart."""

    def __init__(self, ttl: float, max_size: int, clock: Optional[Clock] = None) -> None:
        super().__init__(ttl, clock)
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, key: str) -> Optional[CacheEntry]:
        async with self._lock:
            return self._entries.get(key)

    async def get_many(self, keys: Iterable[str]) -> dict[str, CacheEntry]:
        async with self._lock:
            return {k: self._entries[k] for k in keys if k in self._entries}

    async def put(self, key: str, payload: dict[str, Any]) -> CacheEntry:
        async with self._lock:
            # Stamped under the lock so write order matches fetched_at order.
            entry = self._make_entry(key, payload, self.now())
            self._store(entry)
        logger.debug("Cache set: key=%r  expires_at=%s", key, entry.expires_at.isoformat())
        return entry

    async def bulk_put(self, entries: Mapping[str, dict[str, Any]]) -> int:
        if not entries:
            return 0
        async with self._lock:
            fetched_at = self.now()
            built = [self._make_entry(k, p, fetched_at) for k, p in entries.items()]
            for entry in built:
                self._store(entry)
        logger.debug("Cache bulk set: %d entries", len(built))
        return len(built)

    async def invalidate(self, key: str) -> bool:
        async with self._lock:
            removed = self._entries.pop(key, None)
        if removed is not None:
            logger.debug("Cache delete: key=%r", key)
        else:
            logger.debug("Cache delete (not found): key=%r", key)
        return removed is not None

    async def purge_expired(self) -> int:
        now = self.now()
        async with self._lock:
            expired = [k for k, e in self._entries.items() if not e.is_fresh(now)]
            for key in expired:
                del self._entries[key]
        logger.debug("Cache purge: removed %d expired entries", len(expired))
        return len(expired)

    async def clear(self) -> int:
        async with self._lock:
            count = len(self._entries)
            self._entries.clear()
        logger.debug("Cache cleared: removed %d entries", count)
        return count

    async def stats(self) -> CacheStats:
        async with self._lock:
            snapshot = list(self._entries.values())
        return compute_stats(snapshot, self.now(), max_size=self.max_size)

    # ------------------------------------------------------------------
    # Internal helpers (caller holds the lock)
    # ------------------------------------------------------------------

    def _store(self, entry: CacheEntry) -> None:
        tail = next(reversed(self._entries.values()), None)
        if entry.key in self._entries:
            self._entries[entry.key] = entry
            self._entries.move_to_end(entry.key)
        else:
            while len(self._entries) >= self.max_size:
                self._evict_oldest()
            self._entries[entry.key] = entry
        if tail is not None and entry.fetched_at < tail.fetched_at:
            self._restore_order()

    def _restore_order(self) -> None:
        """Re-sort by ``fetched_at`` after the clock stepped backwards."""
        ordered = sorted(self._entries.values(), key=lambda e: e.fetched_at)
        self._entries = OrderedDict((e.key, e) for e in ordered)
        logger.debug("Cache reordered: clock moved backwards")

    def _evict_oldest(self) -> None:
        head = next(iter(self._entries.values()))
        victim = head.key
        for key, entry in self._entries.items():
            if entry.fetched_at != head.fetched_at:
                break
            if key < victim:
                victim = key
        del self._entries[victim]
        logger.debug("Cache evict: key=%r  fetched_at=%s", victim, head.fetched_at.isoformat())
