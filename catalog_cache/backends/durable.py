"""
Persisted cache backend on SQLAlchemy's async engine.

Persisted layout: one row per cache key in ``cache_entries``::

    key         VARCHAR  primary key (unique index)
    payload     JSON     serialized metadata document
    fetched_at  FLOAT    epoch seconds, UTC
    expires_at  FLOAT    epoch seconds, UTC (indexed for purges)

Writes are upserts (``INSERT ... ON CONFLICT (key) DO UPDATE``), so
re-applying a batch is idempotent and concurrent writers resolve as
last-write-wins per key.  ``bulk_put`` writes one transaction per chunk of
``chunk_size`` rows; the sync coordinator sizes its page batches so one
page is one transaction.

Concurrency control is left to the storage engine's transaction isolation;
this class holds no lock of its own.  Storage errors are wrapped in
:class:`~catalog_cache.errors.BackendError` and re-raised, never swallowed.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Optional

from sqlalchemy import (
    JSON,
    Column,
    Float,
    MetaData,
    String,
    Table,
    case,
    delete,
    func,
    select,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from catalog_cache.backends.base import CacheBackend, Clock
from catalog_cache.errors import BackendError
from catalog_cache.models import CacheEntry
from catalog_cache.stats import CacheStats

logger = logging.getLogger(__name__)

# Bound on keys per IN (...) clause; SQLite's default variable limit is 999.
_SELECT_CHUNK: int = 500

metadata = MetaData()

cache_entries = Table(
    "cache_entries",
    metadata,
    Column("key", String(255), primary_key=True),
    Column("payload", JSON, nullable=False),
    Column("fetched_at", Float, nullable=False),
    Column("expires_at", Float, nullable=False, index=True),
)

_UPSERT_DIALECTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


def _to_ts(value: datetime) -> float:
    return value.timestamp()


def _from_ts(value: float) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _chunks(items: list, size: int) -> Iterable[list]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


class DurableCache(CacheBackend):
    """Cache backend persisted through an async SQLAlchemy engine.

    Usage::

        cache = DurableCache("sqlite+aiosqlite:///./catalog_cache.db", ttl=86400)
        await cache.start()
        await cache.put("movie-550", {"title": "Fight Club"})
        await cache.close()
    """

    max_size = None

    def __init__(
        self,
        database_url: str,
        ttl: float,
        chunk_size: int = 200,
        clock: Optional[Clock] = None,
        engine: Optional[AsyncEngine] = None,
    ) -> None:
        super().__init__(ttl, clock)
        if chunk_size < 1:
            raise ValueError("chunk_size must be at least 1")
        self.chunk_size = chunk_size
        self._engine: AsyncEngine = engine or create_async_engine(database_url)
        self._owns_engine = engine is None

        dialect = self._engine.dialect.name
        if dialect not in _UPSERT_DIALECTS:
            raise BackendError(f"Unsupported database dialect for upserts: {dialect}")
        self._insert = _UPSERT_DIALECTS[dialect]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Create the cache table and its indexes if they do not exist."""
        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(metadata.create_all)
        except SQLAlchemyError as exc:
            raise BackendError(f"Failed to initialise cache table: {exc}") from exc
        logger.info("Durable cache ready (dialect=%s)", self._engine.dialect.name)

    async def close(self) -> None:
        """Dispose of the engine's connection pool if this instance created it."""
        if self._owns_engine:
            await self._engine.dispose()

    # ------------------------------------------------------------------
    # Entry operations
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Optional[CacheEntry]:
        stmt = select(cache_entries).where(cache_entries.c.key == key)
        try:
            async with self._engine.connect() as conn:
                row = (await conn.execute(stmt)).first()
        except SQLAlchemyError as exc:
            raise BackendError(f"Cache read failed for {key!r}: {exc}") from exc
        return self._row_to_entry(row) if row is not None else None

    async def get_many(self, keys: Iterable[str]) -> dict[str, CacheEntry]:
        wanted = list(dict.fromkeys(keys))
        found: dict[str, CacheEntry] = {}
        if not wanted:
            return found
        try:
            async with self._engine.connect() as conn:
                for chunk in _chunks(wanted, _SELECT_CHUNK):
                    stmt = select(cache_entries).where(cache_entries.c.key.in_(chunk))
                    for row in await conn.execute(stmt):
                        found[row.key] = self._row_to_entry(row)
        except SQLAlchemyError as exc:
            raise BackendError(f"Cache read failed for {len(wanted)} keys: {exc}") from exc
        return found

    async def put(self, key: str, payload: dict[str, Any]) -> CacheEntry:
        entry = self._make_entry(key, payload, self.now())
        await self._upsert([entry])
        logger.debug("Cache set: key=%r  expires_at=%s", key, entry.expires_at.isoformat())
        return entry

    async def bulk_put(self, entries: Mapping[str, dict[str, Any]]) -> int:
        if not entries:
            return 0
        fetched_at = self.now()
        built = [self._make_entry(k, p, fetched_at) for k, p in entries.items()]
        for chunk in _chunks(built, self.chunk_size):
            await self._upsert(chunk)
        logger.debug("Cache bulk set: %d entries in chunks of %d", len(built), self.chunk_size)
        return len(built)

    async def invalidate(self, key: str) -> bool:
        stmt = delete(cache_entries).where(cache_entries.c.key == key)
        removed = await self._execute_delete(stmt, f"invalidate {key!r}")
        logger.debug("Cache delete: key=%r  removed=%d", key, removed)
        return removed > 0

    async def purge_expired(self) -> int:
        now_ts = _to_ts(self.now())
        stmt = delete(cache_entries).where(cache_entries.c.expires_at <= now_ts)
        removed = await self._execute_delete(stmt, "purge expired entries")
        logger.debug("Cache purge: removed %d expired entries", removed)
        return removed

    async def clear(self) -> int:
        removed = await self._execute_delete(delete(cache_entries), "clear cache")
        logger.debug("Cache cleared: removed %d entries", removed)
        return removed

    async def stats(self) -> CacheStats:
        now_ts = _to_ts(self.now())
        stmt = select(
            func.count(),
            func.coalesce(func.sum(case((cache_entries.c.expires_at > now_ts, 1), else_=0)), 0),
            func.min(cache_entries.c.fetched_at),
            func.max(cache_entries.c.fetched_at),
        ).select_from(cache_entries)
        try:
            async with self._engine.connect() as conn:
                total, valid, oldest, newest = (await conn.execute(stmt)).one()
        except SQLAlchemyError as exc:
            raise BackendError(f"Cache stats query failed: {exc}") from exc

        return CacheStats(
            total_entries=int(total),
            valid_entries=int(valid),
            expired_entries=int(total) - int(valid),
            max_size=None,
            oldest_entry=_from_ts(oldest) if oldest is not None else None,
            newest_entry=_from_ts(newest) if newest is not None else None,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _upsert(self, entries: list[CacheEntry]) -> None:
        """Write *entries* in a single transaction."""
        rows = [
            {
                "key": e.key,
                "payload": e.payload,
                "fetched_at": _to_ts(e.fetched_at),
                "expires_at": _to_ts(e.expires_at),
            }
            for e in entries
        ]
        stmt = self._insert(cache_entries)
        stmt = stmt.on_conflict_do_update(
            index_elements=[cache_entries.c.key],
            set_={
                "payload": stmt.excluded.payload,
                "fetched_at": stmt.excluded.fetched_at,
                "expires_at": stmt.excluded.expires_at,
            },
        )
        try:
            async with self._engine.begin() as conn:
                await conn.execute(stmt, rows)
        except SQLAlchemyError as exc:
            raise BackendError(f"Cache write failed for {len(rows)} entries: {exc}") from exc

    async def _execute_delete(self, stmt: Any, action: str) -> int:
        try:
            async with self._engine.begin() as conn:
                result = await conn.execute(stmt)
        except SQLAlchemyError as exc:
            raise BackendError(f"Failed to {action}: {exc}") from exc
        return max(result.rowcount or 0, 0)

    @staticmethod
    def _row_to_entry(row: Any) -> CacheEntry:
        return CacheEntry(
            key=row.key,
            payload=row.payload,
            fetched_at=_from_ts(row.fetched_at),
            expires_at=_from_ts(row.expires_at),
        )
