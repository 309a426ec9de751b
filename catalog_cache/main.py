"""
FastAPI application entry point for the catalog metadata cache.

Wires together the TMDB client, the configured cache backend behind the
cache facade, and the background maintenance scheduler.  The cache is an
explicitly owned instance on ``app.state``: created on startup, closed on
shutdown.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI

from catalog_cache.config import get_settings
from catalog_cache.facade import CatalogCache
from catalog_cache.routes.cache import router as cache_router
from catalog_cache.scheduler import CacheMaintenanceScheduler
from catalog_cache.tmdb_client import TMDBClient

settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Manage application lifecycle: initialise shared resources on startup,
    tear them down cleanly on shutdown.

    Startup sequence:
      1. Create the TMDBClient.
      2. Build and start the configured cache backend behind CatalogCache.
      3. Start the maintenance scheduler (initial sync, periodic purge).

    Shutdown sequence:
      1. Stop the scheduler; an in-flight sync finishes its current page.
      2. Close the cache (disposes the durable engine, if any).
      3. Close the TMDBClient.
    """
    logger.info("Starting catalog cache service …")

    tmdb_client = TMDBClient(settings)
    cache = CatalogCache.from_settings(settings, client=tmdb_client)
    await cache.start()

    scheduler = CacheMaintenanceScheduler(cache, settings)

    app.state.settings = settings
    app.state.tmdb_client = tmdb_client
    app.state.cache = cache
    app.state.scheduler = scheduler

    await scheduler.start()
    logger.info("Catalog cache startup complete (backend=%s)", settings.cache_backend)

    yield  # application runs here

    logger.info("Shutting down catalog cache service …")
    await scheduler.stop()
    await cache.close()
    await tmdb_client.close()
    logger.info("Catalog cache shutdown complete")


app = FastAPI(
    title="Catalog Cache",
    description="Metadata cache in front of the TMDB catalog API",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(cache_router, prefix="/api/cache", tags=["cache"])


@app.get("/health", tags=["health"])
async def health_check() -> dict[str, str]:
    """Return service liveness status."""
    return {"status": "ok", "service": "catalog-cache"}
