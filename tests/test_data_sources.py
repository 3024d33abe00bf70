from __future__ import annotations

import asyncio
import json
from typing import Any, List, Optional

from vespa_sync.cache import MemoryLocalStore, TieredCache
from vespa_sync.data_sources import DashboardDataSource
from vespa_sync.records import (
    FLASHCARD_FIELDS,
    FLASHCARD_OBJECT,
    PLANNER_FIELDS,
    PLANNER_OBJECT,
    SCORES_FIELDS,
    SCORES_OBJECT,
    TASKBOARD_FIELDS,
    TASKBOARD_OBJECT,
)

USER_ID = "5f1b2c3d4e5f6a7b8c9d0e1f"
EMAIL = "student@school.test"


class _SharedCache:
    def __init__(self, data: Any = None) -> None:
        self.data = data
        self.queries: List[Optional[str]] = []

    async def lookup(self, key: str, source_query: Optional[str] = None) -> Any:
        self.queries.append(source_query)
        return self.data


def _source(store, settings, shared=None) -> tuple[DashboardDataSource, MemoryLocalStore]:
    local = MemoryLocalStore()
    return DashboardDataSource(store, TieredCache(local, shared), settings), local


def test_full_miss_fetches_from_store_and_caches_envelope(store, settings) -> None:
    record = store.seed(FLASHCARD_OBJECT, **{FLASHCARD_FIELDS.user_link: USER_ID, FLASHCARD_FIELDS.boxes[0]: "[]"})
    source, local = _source(store, settings)

    assert asyncio.run(source.flashcard_record(USER_ID)) == record
    assert asyncio.run(source.flashcard_record(USER_ID)) == record

    assert len(store.calls_for("query", FLASHCARD_OBJECT)) == 1
    cached = json.loads(local.get(f"test-cache:flashcards:{USER_ID}"))
    assert cached["data"] == {"records": [record]}


def test_payload_fetchers_return_json_field(store, settings) -> None:
    store.seed(PLANNER_OBJECT, **{PLANNER_FIELDS.user_link: USER_ID, PLANNER_FIELDS.payload: '{"weekStart": "x"}'})
    store.seed(TASKBOARD_OBJECT, **{TASKBOARD_FIELDS.user_link: USER_ID, TASKBOARD_FIELDS.payload: '{"tasks": []}'})
    source, _ = _source(store, settings)

    assert asyncio.run(source.planner_payload(USER_ID)) == '{"weekStart": "x"}'
    assert asyncio.run(source.taskboard_payload(USER_ID)) == '{"tasks": []}'


def test_scores_are_keyed_by_email(store, settings) -> None:
    record = store.seed(SCORES_OBJECT, **{SCORES_FIELDS.email: EMAIL, "field_147": 7})
    source, local = _source(store, settings)

    assert asyncio.run(source.scores_record(EMAIL)) == record
    assert local.keys() == [f"test-cache:vespascores:{EMAIL}"]


def test_shared_tier_hit_skips_store(store, settings) -> None:
    shared = _SharedCache({"records": [{"id": "shared", PLANNER_FIELDS.payload: "{}"}]})
    source, _ = _source(store, settings, shared)

    assert asyncio.run(source.planner_payload(USER_ID)) == "{}"
    assert store.calls == []
    assert shared.queries[0].startswith("/objects/object_110/records?filters=")
    assert shared.queries[0].endswith(f"&fields={PLANNER_FIELDS.payload}")


def test_missing_user_key_does_no_io(store, settings) -> None:
    source, _ = _source(store, settings)
    assert asyncio.run(source.flashcard_record(None)) is None
    assert asyncio.run(source.scores_record("")) is None
    assert store.calls == []


def test_store_failure_returns_none_and_caches_nothing(store, settings) -> None:
    store.fail("query", TASKBOARD_OBJECT)
    source, local = _source(store, settings)
    assert asyncio.run(source.taskboard_payload(USER_ID)) is None
    assert local.keys() == []


def test_empty_result_is_not_cached(store, settings) -> None:
    source, local = _source(store, settings)
    assert asyncio.run(source.flashcard_record(USER_ID)) is None
    assert local.keys() == []
