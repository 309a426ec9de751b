"""
Cache backend variants and their configuration-driven selection.
"""

import logging
from typing import Optional

from catalog_cache.backends.base import CacheBackend, Clock, utc_now
from catalog_cache.backends.durable import DurableCache
from catalog_cache.backends.volatile import VolatileCache
from catalog_cache.config import Settings

logger = logging.getLogger(__name__)

__all__ = [
    "CacheBackend",
    "Clock",
    "DurableCache",
    "VolatileCache",
    "create_backend",
    "utc_now",
]


def create_backend(settings: Settings, clock: Optional[Clock] = None) -> CacheBackend:
    """
    Build the backend variant named by ``settings.cache_backend``.

    The returned backend has not been started; callers own its lifecycle
    (``await backend.start()`` / ``await backend.close()``).
    """
    if settings.cache_backend == "durable":
        logger.info("Using durable cache backend (ttl=%ds)", settings.cache_ttl)
        return DurableCache(
            settings.database_url,
            ttl=settings.cache_ttl,
            chunk_size=settings.durable_chunk_size,
            clock=clock,
        )

    logger.info(
        "Using volatile cache backend (ttl=%ds, max_size=%d)",
        settings.cache_ttl,
        settings.cache_max_size,
    )
    return VolatileCache(ttl=settings.cache_ttl, max_size=settings.cache_max_size, clock=clock)
