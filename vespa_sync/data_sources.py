"""Cache-backed fetchers for each dashboard data domain."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Iterable, List, Optional

from .cache import TieredCache, cache_key
from .config import Settings
from .records import (
    FLASHCARD_FIELDS,
    FLASHCARD_OBJECT,
    PLANNER_FIELDS,
    PLANNER_OBJECT,
    SCORES_FIELDS,
    SCORES_OBJECT,
    TASKBOARD_FIELDS,
    TASKBOARD_OBJECT,
    RecordFilter,
    RemoteRecord,
)
from .store_client import RecordStore, RecordStoreError, source_query

logger = logging.getLogger(__name__)

FLASHCARD_DOMAIN = "flashcards"
PLANNER_DOMAIN = "studyplanner"
TASKBOARD_DOMAIN = "taskboard"
SCORES_DOMAIN = "vespascores"


def _records_from(envelope: Any) -> List[RemoteRecord]:
    if isinstance(envelope, dict) and isinstance(envelope.get("records"), list):
        return envelope["records"]
    return []


class DashboardDataSource:
    """Reads the first record of a domain through the tiered cache.

    Cached values are ``{"records": [...]}`` envelopes in both tiers. Only
    non-empty results are written back, so a user with no record yet is
    looked up again on the next load.
    """

    def __init__(self, store: RecordStore, cache: TieredCache, settings: Settings) -> None:
        self._store = store
        self._cache = cache
        self._prefix = settings.cache_prefix
        self._ttl = timedelta(minutes=settings.cache_ttl_minutes)

    def cache_keys(self, user_id: Optional[str], email: Optional[str]) -> List[str]:
        """Local cache keys holding this user's domain records."""
        keyed = (
            (FLASHCARD_DOMAIN, user_id),
            (PLANNER_DOMAIN, user_id),
            (TASKBOARD_DOMAIN, user_id),
            (SCORES_DOMAIN, email),
        )
        return [cache_key(self._prefix, domain, user_key) for domain, user_key in keyed if user_key]

    async def flashcard_record(self, user_id: Optional[str]) -> Optional[RemoteRecord]:
        return await self._first_record(
            FLASHCARD_DOMAIN,
            user_id,
            FLASHCARD_OBJECT,
            FLASHCARD_FIELDS.user_link,
        )

    async def planner_payload(self, user_id: Optional[str]) -> Any:
        record = await self._first_record(
            PLANNER_DOMAIN,
            user_id,
            PLANNER_OBJECT,
            PLANNER_FIELDS.user_link,
            fields=[PLANNER_FIELDS.payload],
        )
        return record.get(PLANNER_FIELDS.payload) if record else None

    async def taskboard_payload(self, user_id: Optional[str]) -> Any:
        record = await self._first_record(
            TASKBOARD_DOMAIN,
            user_id,
            TASKBOARD_OBJECT,
            TASKBOARD_FIELDS.user_link,
            fields=[TASKBOARD_FIELDS.payload],
        )
        return record.get(TASKBOARD_FIELDS.payload) if record else None

    async def scores_record(self, email: Optional[str]) -> Optional[RemoteRecord]:
        return await self._first_record(SCORES_DOMAIN, email, SCORES_OBJECT, SCORES_FIELDS.email)

    async def _first_record(
        self,
        domain: str,
        user_key: Optional[str],
        object_key: str,
        link_field: str,
        *,
        fields: Optional[Iterable[str]] = None,
    ) -> Optional[RemoteRecord]:
        if not user_key:
            logger.debug("Skipping %s fetch: no user key", domain)
            return None

        key = cache_key(self._prefix, domain, user_key)
        record_filter = RecordFilter.where(link_field, user_key)
        field_list = list(fields) if fields else None

        records = _records_from(
            await self._cache.get(key, self._ttl, source_query(object_key, record_filter, field_list))
        )
        if records:
            return records[0]

        try:
            records = await self._store.query(object_key, record_filter, field_list)
        except RecordStoreError as exc:
            logger.error("Fetching %s data for %s failed: %s", domain, user_key, exc)
            return None
        if not records:
            logger.debug("No %s record for %s", domain, user_key)
            return None
        self._cache.set(key, {"records": records})
        return records[0]


__all__ = [
    "DashboardDataSource",
    "FLASHCARD_DOMAIN",
    "PLANNER_DOMAIN",
    "SCORES_DOMAIN",
    "TASKBOARD_DOMAIN",
]
