"""
Cache health statistics.

``compute_stats`` is a pure, single-pass function over a collection of
entries; it never mutates what it is given.  The volatile backend feeds it
a snapshot of its mapping, while the durable backend computes the same
figures with one aggregate query and builds :class:`CacheStats` directly.
"""

from datetime import datetime
from typing import Any, Iterable, Optional

from pydantic import BaseModel, Field, model_validator

from catalog_cache.models import CacheEntry


class CacheStats(BaseModel):
    """Point-in-time health figures of a cache backend."""

    total_entries: int = Field(..., ge=0)
    valid_entries: int = Field(..., ge=0, description="Entries that are still fresh")
    expired_entries: int = Field(..., ge=0)
    max_size: Optional[int] = Field(
        default=None, description="Capacity bound, None for the durable backend"
    )
    oldest_entry: Optional[datetime] = Field(default=None, description="min fetched_at")
    newest_entry: Optional[datetime] = Field(default=None, description="max fetched_at")

    # Filled in by the facade from its lookup counters.
    hits: int = 0
    stale_hits: int = 0
    misses: int = 0

    @model_validator(mode="after")
    def _check_totals(self) -> "CacheStats":
        if self.total_entries != self.valid_entries + self.expired_entries:
            raise ValueError("total_entries must equal valid_entries + expired_entries")
        return self

    @property
    def hit_ratio(self) -> Optional[float]:
        """Share of lookups answered from the cache, fresh or stale."""
        lookups = self.hits + self.stale_hits + self.misses
        if lookups == 0:
            return None
        return (self.hits + self.stale_hits) / lookups

    @property
    def headroom(self) -> Optional[int]:
        """Free slots before the volatile backend starts evicting."""
        if self.max_size is None:
            return None
        return max(self.max_size - self.total_entries, 0)

    def to_report(self) -> dict[str, Any]:
        """Return the camelCase report exposed to the application layer."""
        return {
            "totalEntries": self.total_entries,
            "validEntries": self.valid_entries,
            "expiredEntries": self.expired_entries,
            "maxSize": self.max_size,
            "oldestEntry": self.oldest_entry.isoformat() if self.oldest_entry else None,
            "newestEntry": self.newest_entry.isoformat() if self.newest_entry else None,
            "hits": self.hits,
            "staleHits": self.stale_hits,
            "misses": self.misses,
            "hitRatio": self.hit_ratio,
        }


def compute_stats(
    entries: Iterable[CacheEntry],
    now: datetime,
    max_size: Optional[int] = None,
) -> CacheStats:
    """
    Derive health statistics from *entries* in one pass.

    Args:
        entries:  Entries currently held by a backend.
        now:      Reference time for the freshness split.
        max_size: Capacity bound of the backend, or ``None`` if unbounded.

    Returns:
        CacheStats with ``total == valid + expired``.
    """
    total = 0
    valid = 0
    oldest: Optional[datetime] = None
    newest: Optional[datetime] = None

    for entry in entries:
        total += 1
        if entry.is_fresh(now):
            valid += 1
        if oldest is None or entry.fetched_at < oldest:
            oldest = entry.fetched_at
        if newest is None or entry.fetched_at > newest:
            newest = entry.fetched_at

    return CacheStats(
        total_entries=total,
        valid_entries=valid,
        expired_entries=total - valid,
        max_size=max_size,
        oldest_entry=oldest,
        newest_entry=newest,
    )
