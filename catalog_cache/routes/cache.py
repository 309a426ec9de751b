"""
Cache administration routes.

Endpoints:
  GET    /api/cache/stats          — Health statistics of the active backend
  GET    /api/cache/entries/{key}  — Cached document (stale-serve unless fresh_only)
  PUT    /api/cache/entries/{key}  — Store a document
  DELETE /api/cache/entries/{key}  — Invalidate a key
  POST   /api/cache/sync           — Run a bulk sync and return its report
  POST   /api/cache/sync/cancel    — Stop the in-flight sync at its next page
  POST   /api/cache/purge          — Remove expired entries

The cache instance lives on ``app.state.cache`` and is created by the
application lifespan.
"""

import logging
from typing import Any, Literal, Optional

from fastapi import APIRouter, Body, HTTPException, Query, Request

from catalog_cache.errors import BackendError, CatalogCacheError, SyncAlreadyRunning
from catalog_cache.facade import CatalogCache

logger = logging.getLogger(__name__)

router = APIRouter()


def _cache(request: Request) -> CatalogCache:
    return request.app.state.cache


@router.get("/stats", summary="Cache health statistics")
async def get_stats(request: Request) -> dict:
    try:
        stats = await _cache(request).get_stats()
    except BackendError:
        logger.exception("Cache stats query failed")
        raise HTTPException(status_code=503, detail="Cache storage unavailable.")
    return stats.to_report()


@router.get("/entries/{key}", summary="Cached catalog document")
async def get_entry(
    request: Request,
    key: str,
    fresh_only: bool = Query(False, description="Treat expired entries as misses"),
) -> dict:
    """
    Return the cached document for *key*.

    Raises:
        HTTPException(404): On a miss.
        HTTPException(503): When the durable backend cannot be read.
    """
    try:
        lookup = await _cache(request).get(key, fresh_only=fresh_only)
    except BackendError:
        logger.exception("Cache read failed for %s", key)
        raise HTTPException(status_code=503, detail="Cache storage unavailable.")

    if lookup is None:
        raise HTTPException(status_code=404, detail=f"No cached entry for {key}")

    return {
        "key": key,
        "freshness": lookup.freshness.value,
        "fetchedAt": lookup.entry.fetched_at.isoformat(),
        "expiresAt": lookup.entry.expires_at.isoformat(),
        "data": lookup.payload,
    }


@router.put("/entries/{key}", summary="Store a catalog document")
async def put_entry(request: Request, key: str, payload: dict[str, Any] = Body(...)) -> dict:
    """
    Raises:
        HTTPException(503): When the durable backend cannot be written.
    """
    try:
        entry = await _cache(request).put(key, payload)
    except BackendError:
        logger.exception("Cache write failed for %s", key)
        raise HTTPException(status_code=503, detail="Cache storage unavailable.")
    return {"key": key, "expiresAt": entry.expires_at.isoformat()}


@router.delete("/entries/{key}", summary="Invalidate a cached key")
async def delete_entry(request: Request, key: str) -> dict:
    try:
        removed = await _cache(request).invalidate(key)
    except BackendError:
        logger.exception("Cache delete failed for %s", key)
        raise HTTPException(status_code=503, detail="Cache storage unavailable.")
    return {"key": key, "removed": removed}


@router.post("/sync", summary="Run a bulk catalog sync")
async def trigger_sync(
    request: Request,
    count: Optional[int] = Query(None, ge=0, description="Items to sync"),
    media_type: Optional[Literal["movie", "tv"]] = Query(
        None, description="Popular listing to walk (defaults to the first configured)"
    ),
) -> dict:
    """
    Run a sync to completion and return the report.

    Raises:
        HTTPException(409): When a sync is already running.
        HTTPException(503): When no upstream client is configured.
    """
    requested = count if count is not None else request.app.state.settings.sync_default_count
    try:
        report = await _cache(request).trigger_sync(requested, media_type=media_type)
    except SyncAlreadyRunning:
        raise HTTPException(status_code=409, detail="Sync already running.")
    except CatalogCacheError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    return report.model_dump(mode="json")


@router.post("/sync/cancel", summary="Cancel the in-flight sync")
async def cancel_sync(request: Request) -> dict:
    return {"cancelled": _cache(request).cancel_sync()}


@router.post("/purge", summary="Remove expired entries")
async def purge_expired(request: Request) -> dict:
    try:
        removed = await _cache(request).purge_expired()
    except BackendError:
        logger.exception("Cache purge failed")
        raise HTTPException(status_code=503, detail="Cache storage unavailable.")
    return {"removed": removed}
