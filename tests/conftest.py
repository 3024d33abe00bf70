from __future__ import annotations

from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional, Tuple
from uuid import uuid4

import pytest

from vespa_sync.config import Settings
from vespa_sync.records import RecordFilter, RemoteRecord
from vespa_sync.store_client import RecordStoreError
from vespa_sync.telemetry import TelemetryEvent, clear_listeners, register_listener


def new_record_id() -> str:
    return uuid4().hex[:24]


class FakeRecordStore:
    """In-memory record store evaluating filters the way the remote store does."""

    def __init__(self) -> None:
        self.objects: Dict[str, Dict[str, RemoteRecord]] = defaultdict(dict)
        self.calls: List[Tuple[str, str, Any]] = []
        self._failures: Dict[Tuple[str, str], Exception] = {}

    def seed(self, object_key: str, **fields: Any) -> RemoteRecord:
        record = {"id": fields.pop("id", None) or new_record_id(), **fields}
        self.objects[object_key][record["id"]] = record
        return dict(record)

    def records(self, object_key: str) -> List[RemoteRecord]:
        return [dict(record) for record in self.objects[object_key].values()]

    def fail(self, operation: str, object_key: str, exc: Optional[Exception] = None) -> None:
        self._failures[(operation, object_key)] = exc or RecordStoreError(
            f"{operation} {object_key} unavailable", status_code=503
        )

    def heal(self, operation: str, object_key: str) -> None:
        self._failures.pop((operation, object_key), None)

    def calls_for(self, operation: str, object_key: str) -> List[Any]:
        return [arg for op, obj, arg in self.calls if op == operation and obj == object_key]

    def _check(self, operation: str, object_key: str) -> None:
        failure = self._failures.get((operation, object_key))
        if failure is not None:
            raise failure

    async def query(
        self,
        object_key: str,
        record_filter: RecordFilter,
        fields: Optional[Iterable[str]] = None,
    ) -> List[RemoteRecord]:
        self.calls.append(("query", object_key, record_filter))
        self._check("query", object_key)
        return [dict(record) for record in self.objects[object_key].values() if record_filter.matches(record)]

    async def get(self, object_key: str, record_id: str) -> RemoteRecord:
        self.calls.append(("get", object_key, record_id))
        self._check("get", object_key)
        record = self.objects[object_key].get(record_id)
        if record is None:
            raise RecordStoreError(f"{object_key}/{record_id} not found", status_code=404)
        return dict(record)

    async def create(self, object_key: str, data: Dict[str, Any]) -> RemoteRecord:
        self.calls.append(("create", object_key, dict(data)))
        self._check("create", object_key)
        return self.seed(object_key, **data)

    async def update(self, object_key: str, record_id: str, data: Dict[str, Any]) -> RemoteRecord:
        self.calls.append(("update", object_key, (record_id, dict(data))))
        self._check("update", object_key)
        record = self.objects[object_key].get(record_id)
        if record is None:
            raise RecordStoreError(f"{object_key}/{record_id} not found", status_code=404)
        record.update(data)
        return dict(record)


@pytest.fixture()
def store() -> FakeRecordStore:
    return FakeRecordStore()


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        knack_api_url="https://knack.test/v1",
        knack_app_id="app-test",
        knack_api_key="key-test",
        cache_prefix="test-cache",
        cache_ttl_minutes=30,
        request_max_attempts=3,
        request_base_delay_ms=0,
        activities_url=None,
    )


@pytest.fixture()
def events() -> Iterable[List[TelemetryEvent]]:
    collected: List[TelemetryEvent] = []
    clear_listeners()
    register_listener(collected.append)
    yield collected
    clear_listeners()
