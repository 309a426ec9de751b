"""
Data model shared by the cache backends, the facade and the sync coordinator.

Entries are immutable snapshots: a ``put`` replaces the stored entry rather
than mutating it, so an entry handed to a caller never changes underneath it.
Freshness is derived from ``expires_at`` at read time and never stored.
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Freshness(str, Enum):
    """Derived status of an entry relative to a point in time."""

    FRESH = "fresh"
    EXPIRED = "expired"


class CacheEntry(BaseModel):
    """A single cached catalog document."""

    model_config = ConfigDict(frozen=True)

    key: str = Field(..., min_length=1, description="External catalog id")
    payload: dict[str, Any] = Field(..., description="Serialized metadata document")
    fetched_at: datetime = Field(..., description="Time of the last successful write")
    expires_at: datetime = Field(..., description="fetched_at + ttl")

    @model_validator(mode="after")
    def _check_expiry_after_fetch(self) -> "CacheEntry":
        if self.expires_at <= self.fetched_at:
            raise ValueError("expires_at must be later than fetched_at")
        return self

    @classmethod
    def create(
        cls,
        key: str,
        payload: dict[str, Any],
        fetched_at: datetime,
        ttl: float,
    ) -> "CacheEntry":
        """Build an entry written at *fetched_at* that lives for *ttl* seconds."""
        return cls(
            key=key,
            payload=payload,
            fetched_at=fetched_at,
            expires_at=fetched_at + timedelta(seconds=ttl),
        )

    def freshness(self, now: datetime) -> Freshness:
        return Freshness.FRESH if now < self.expires_at else Freshness.EXPIRED

    def is_fresh(self, now: datetime) -> bool:
        return self.freshness(now) is Freshness.FRESH


class CacheLookup(BaseModel):
    """Result of a facade ``get`` that found an entry.

    A miss is represented by ``None``; an expired entry is still a lookup
    (stale-serve) with ``freshness == Freshness.EXPIRED``.
    """

    model_config = ConfigDict(frozen=True)

    entry: CacheEntry
    freshness: Freshness

    @property
    def payload(self) -> dict[str, Any]:
        return self.entry.payload

    @property
    def is_fresh(self) -> bool:
        return self.freshness is Freshness.FRESH


class CatalogItem(BaseModel):
    """An item as returned by the upstream catalog client.

    ``summary`` marks listing payloads that lack the full detail document;
    the sync coordinator fetches detail for those before caching.
    """

    id: str
    media_type: str
    data: dict[str, Any]
    summary: bool = False

    @property
    def key(self) -> str:
        return make_key(self.media_type, self.id)


class PopularPage(BaseModel):
    """One page of the upstream popular listing."""

    page: int
    items: list[CatalogItem]
    has_more: bool


def make_key(media_type: str, item_id: object) -> str:
    """Return the cache key for an upstream item, e.g. ``"movie-550"``."""
    return f"{media_type}-{item_id}"


def split_key(key: str) -> tuple[str, str]:
    """Inverse of :func:`make_key`.

    Raises:
        ValueError: If *key* has no media-type prefix.
    """
    media_type, sep, item_id = key.partition("-")
    if not sep or not media_type or not item_id:
        raise ValueError(f"Not a catalog key: {key!r}")
    return media_type, item_id
