"""Two-level read-through cache: local TTL store, then the shared remote cache."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Optional

from pydantic import BaseModel, ValidationError

from ..telemetry import emit_event
from .local_store import LocalStore
from .shared_cache import SharedCacheClient

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def cache_key(prefix: str, domain: str, user_key: str) -> str:
    return f"{prefix}:{domain}:{user_key}"


class CacheEntry(BaseModel):
    data: Any
    timestamp: datetime

    def age(self, now: datetime) -> timedelta:
        return now - self.timestamp


class TieredCache:
    """Local tier first, shared tier second; the caller owns the authoritative fetch.

    Clearing the local tier does not purge the shared tier, so a value served
    by the shared tier can be stale until that tier's own TTL lapses. Errors
    from either tier are swallowed and read as misses.
    """

    def __init__(
        self,
        local_store: LocalStore,
        shared_cache: Optional[SharedCacheClient] = None,
        *,
        clock: Optional[Clock] = None,
    ) -> None:
        self.local_store = local_store
        self.shared_cache = shared_cache
        self._clock = clock or _utcnow

    async def get(self, key: str, ttl: timedelta, source_query: Optional[str] = None) -> Any:
        entry = self._read_local(key)
        if entry is not None:
            if entry.age(self._clock()) < ttl:
                emit_event("cache_lookup", key=key, tier="local")
                return entry.data
            logger.debug("Local cache entry %s expired", key)
            self._remove_local(key)

        data = await self._read_shared(key, source_query)
        if data is not None:
            emit_event("cache_lookup", key=key, tier="shared")
            self.set(key, data)
            return data

        emit_event("cache_lookup", key=key, tier="miss")
        return None

    def set(self, key: str, data: Any) -> None:
        entry = CacheEntry(data=data, timestamp=self._clock())
        try:
            self.local_store.set(key, entry.model_dump_json())
        except Exception as exc:  # noqa: BLE001
            logger.warning("Local cache write for %s skipped: %s", key, exc)

    def invalidate(self, keys: Iterable[str]) -> int:
        """Drop the given local entries; returns how many were present."""
        keys = list(keys)
        removed = 0
        for key in keys:
            try:
                if self.local_store.get(key) is None:
                    continue
                self.local_store.remove(key)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Local cache invalidation for %s failed: %s", key, exc)
                continue
            removed += 1
        logger.info("Invalidated %s of %s local cache entries", removed, len(keys))
        emit_event("cache_invalidated", keys=keys, removed=removed)
        return removed

    def invalidate_by_prefix(self, prefix: str) -> int:
        try:
            removed = self.local_store.remove_all(prefix)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Local cache invalidation for prefix %s failed: %s", prefix, exc)
            return 0
        logger.info("Invalidated %s local cache entries under %s", removed, prefix)
        emit_event("cache_invalidated", prefix=prefix, removed=removed)
        return removed

    def _read_local(self, key: str) -> Optional[CacheEntry]:
        try:
            raw = self.local_store.get(key)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Local cache read for %s failed: %s", key, exc)
            return None
        if not raw:
            return None
        try:
            return CacheEntry.model_validate_json(raw)
        except ValidationError:
            logger.debug("Discarding unreadable local cache entry %s", key)
            self._remove_local(key)
            return None

    def _remove_local(self, key: str) -> None:
        try:
            self.local_store.remove(key)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Local cache delete for %s failed: %s", key, exc)

    async def _read_shared(self, key: str, source_query: Optional[str]) -> Any:
        if self.shared_cache is None:
            return None
        try:
            return await self.shared_cache.lookup(key, source_query)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Shared cache lookup for %s failed: %s", key, exc)
            return None


__all__ = ["CacheEntry", "Clock", "TieredCache", "cache_key"]
