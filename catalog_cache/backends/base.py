"""
Backend contract shared by the volatile and durable cache variants.

Both variants store :class:`~catalog_cache.models.CacheEntry` records keyed
by catalog key, stamp ``fetched_at`` / ``expires_at`` themselves from an
injectable clock and a cache-wide TTL, and answer reads without filtering
expired entries: freshness is a caller-side decision.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping, Optional

from catalog_cache.models import CacheEntry
from catalog_cache.stats import CacheStats

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Default clock: timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class CacheBackend(ABC):
    """Abstract key-value store for catalog entries."""

    #: Capacity bound, ``None`` when the backend is bounded by storage only.
    max_size: Optional[int] = None

    def __init__(self, ttl: float, clock: Optional[Clock] = None) -> None:
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self.ttl = ttl
        self._clock: Clock = clock or utc_now

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Prepare the backend for use.  No-op unless the variant needs setup."""

    async def close(self) -> None:
        """Release any held resources.  No-op unless the variant holds any."""

    # ------------------------------------------------------------------
    # Entry operations
    # ------------------------------------------------------------------

    @abstractmethod
    async def get(self, key: str) -> Optional[CacheEntry]:
        """Return the stored entry for *key*, expired or not, or ``None``."""

    @abstractmethod
    async def get_many(self, keys: Iterable[str]) -> dict[str, CacheEntry]:
        """Return the stored entries for whichever of *keys* are present."""

    @abstractmethod
    async def put(self, key: str, payload: dict[str, Any]) -> CacheEntry:
        """Create or overwrite the entry for *key*, resetting its timestamps."""

    @abstractmethod
    async def bulk_put(self, entries: Mapping[str, dict[str, Any]]) -> int:
        """Upsert many entries in one write path.  Returns the number written."""

    @abstractmethod
    async def invalidate(self, key: str) -> bool:
        """Remove *key* unconditionally.  Returns whether an entry was removed."""

    @abstractmethod
    async def purge_expired(self) -> int:
        """Remove every expired entry.  Returns the number removed."""

    @abstractmethod
    async def clear(self) -> int:
        """Remove every entry.  Returns the number removed."""

    @abstractmethod
    async def stats(self) -> CacheStats:
        """Return health statistics without mutating state."""

    def _make_entry(self, key: str, payload: dict[str, Any], fetched_at: datetime) -> CacheEntry:
        return CacheEntry.create(key, payload, fetched_at, self.ttl)
