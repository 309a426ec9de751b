"""
Catalog metadata cache in front of a rate-limited upstream catalog API.
"""

from catalog_cache.facade import CatalogCache
from catalog_cache.models import CacheEntry, CacheLookup, Freshness
from catalog_cache.stats import CacheStats
from catalog_cache.sync import SyncRun, SyncStatus

__all__ = [
    "CacheEntry",
    "CacheLookup",
    "CacheStats",
    "CatalogCache",
    "Freshness",
    "SyncRun",
    "SyncStatus",
]
