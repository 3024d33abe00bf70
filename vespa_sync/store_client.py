"""Async client for the remote record store."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Protocol
from urllib.parse import quote, urlencode

import httpx

from .config import Settings
from .records import RecordFilter, RemoteRecord
from .retry import RequestExecutor

logger = logging.getLogger(__name__)


class RecordStoreError(RuntimeError):
    """Raised when the record store rejects a call or cannot be reached."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RecordStore(Protocol):
    """Generic query/get/create/update interface over opaque records."""

    async def query(
        self,
        object_key: str,
        record_filter: RecordFilter,
        fields: Optional[Iterable[str]] = None,
    ) -> List[RemoteRecord]:  # pragma: no cover - protocol definition
        ...

    async def get(self, object_key: str, record_id: str) -> RemoteRecord:  # pragma: no cover
        ...

    async def create(self, object_key: str, data: Dict[str, Any]) -> RemoteRecord:  # pragma: no cover
        ...

    async def update(self, object_key: str, record_id: str, data: Dict[str, Any]) -> RemoteRecord:  # pragma: no cover
        ...


def records_path(object_key: str, record_id: Optional[str] = None) -> str:
    path = f"/objects/{object_key}/records"
    return f"{path}/{record_id}" if record_id else path


def source_query(
    object_key: str,
    record_filter: RecordFilter,
    fields: Optional[Iterable[str]] = None,
) -> str:
    """Relative query path identifying an authoritative fetch (shared-cache key material)."""
    params = {"filters": record_filter.to_query()}
    if fields:
        params["fields"] = ",".join(fields)
    return f"{records_path(object_key)}?{urlencode(params, quote_via=quote)}"


class KnackRecordStore:
    """Record store over the Knack-style REST API; every call is retried by the executor."""

    def __init__(
        self,
        settings: Settings,
        *,
        user_token: Optional[str] = None,
        executor: Optional[RequestExecutor] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._executor = executor or RequestExecutor(
            settings.request_max_attempts,
            settings.request_base_delay_ms,
        )
        headers = {"Content-Type": "application/json", "Authorization": user_token or ""}
        if settings.knack_app_id:
            headers["X-Knack-Application-Id"] = settings.knack_app_id
        if settings.knack_api_key:
            headers["X-Knack-REST-API-Key"] = settings.knack_api_key
        if not user_token:
            logger.debug("No user token supplied; record store calls may be rejected.")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=settings.knack_api_url.rstrip("/"),
            timeout=settings.request_timeout_seconds,
        )
        self._headers = headers

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def query(
        self,
        object_key: str,
        record_filter: RecordFilter,
        fields: Optional[Iterable[str]] = None,
    ) -> List[RemoteRecord]:
        params: Dict[str, str] = {"filters": record_filter.to_query(), "format": "raw"}
        if fields:
            params["fields"] = ",".join(fields)
        payload = await self._send("GET", records_path(object_key), params=params)
        records = payload.get("records") if isinstance(payload, dict) else None
        return list(records) if isinstance(records, list) else []

    async def get(self, object_key: str, record_id: str) -> RemoteRecord:
        return await self._send("GET", records_path(object_key, record_id), params={"format": "raw"})

    async def create(self, object_key: str, data: Dict[str, Any]) -> RemoteRecord:
        return await self._send("POST", records_path(object_key), json=data)

    async def update(self, object_key: str, record_id: str, data: Dict[str, Any]) -> RemoteRecord:
        return await self._send("PUT", records_path(object_key, record_id), json=data)

    async def _send(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        async def attempt() -> Dict[str, Any]:
            try:
                response = await self._client.request(method, path, headers=self._headers, **kwargs)
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                raise RecordStoreError(
                    f"{method} {path} returned {exc.response.status_code}: {exc.response.text[:200]}",
                    status_code=exc.response.status_code,
                ) from exc
            except httpx.HTTPError as exc:
                raise RecordStoreError(f"{method} {path} failed: {exc}") from exc
            try:
                data = response.json()
            except ValueError as exc:
                raise RecordStoreError(f"{method} {path} returned a non-JSON body") from exc
            return data if isinstance(data, dict) else {}

        return await self._executor.execute(attempt, label=f"{method} {path}")


__all__ = [
    "KnackRecordStore",
    "RecordStore",
    "RecordStoreError",
    "records_path",
    "source_query",
]
