"""Cache tiers shared by the sync pipeline."""

from .local_store import LocalStore, MemoryLocalStore, SqlLocalStore
from .shared_cache import SharedCacheClient
from .tiered_cache import CacheEntry, TieredCache, cache_key

__all__ = [
    "CacheEntry",
    "LocalStore",
    "MemoryLocalStore",
    "SharedCacheClient",
    "SqlLocalStore",
    "TieredCache",
    "cache_key",
]
