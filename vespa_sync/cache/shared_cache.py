"""Client for the optional shared remote cache service."""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)

DEBUG_PING_KEY = "__edge_debug__"


class SharedCacheClient:
    """Best-effort lookups; every failure degrades to ``None``."""

    def __init__(
        self,
        url: str,
        *,
        timeout_seconds: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.url = url
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def lookup(self, cache_key: str, source_query: Optional[str] = None) -> Any:
        body: dict[str, Any] = {"action": "knackCache", "cacheKey": cache_key}
        if source_query:
            body["sourceQuery"] = source_query
        try:
            response = await self._client.post(self.url, json=body)
        except httpx.HTTPError as exc:
            logger.warning("Shared cache lookup for %s failed: %s", cache_key, exc)
            return None
        if response.is_error:
            logger.warning("Shared cache lookup for %s returned %s", cache_key, response.status_code)
            return None
        try:
            payload = response.json()
        except ValueError:
            logger.warning("Shared cache returned a non-JSON body for %s", cache_key)
            return None
        if not isinstance(payload, dict):
            return None
        return payload.get("data") or None

    async def ping(self) -> int:
        """Return the HTTP status of a debug lookup; raises on transport errors."""
        response = await self._client.post(
            self.url,
            json={"action": "cacheGet", "cacheKey": DEBUG_PING_KEY},
        )
        return response.status_code


__all__ = ["DEBUG_PING_KEY", "SharedCacheClient"]
