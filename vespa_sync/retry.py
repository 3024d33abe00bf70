"""Exponential-backoff executor for failable remote operations."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from .telemetry import emit_event

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


class RequestExecutor:
    """Retries an operation with delays of ``base_delay_ms * 2**retry``.

    Failures are not classified: a timeout, a transport error and a non-2xx
    response are retried the same way. The last error is re-raised once the
    attempt budget is spent. Concurrent identical calls are not deduplicated.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay_ms: int = 1000,
        *,
        sleep: Optional[Sleep] = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1.")
        self.max_attempts = max_attempts
        self.base_delay_ms = base_delay_ms
        self._sleep: Sleep = sleep or asyncio.sleep

    def delay_for(self, retry: int, base_delay_ms: Optional[int] = None) -> float:
        """Seconds to wait before retry number ``retry`` (0-based)."""
        base = self.base_delay_ms if base_delay_ms is None else base_delay_ms
        return base * (2**retry) / 1000

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        max_attempts: Optional[int] = None,
        base_delay_ms: Optional[int] = None,
        label: str = "remote call",
    ) -> T:
        attempts = self.max_attempts if max_attempts is None else max_attempts
        if attempts < 1:
            raise ValueError("max_attempts must be at least 1.")

        retry = 0
        while True:
            try:
                return await operation()
            except Exception as exc:  # noqa: BLE001
                attempt = retry + 1
                logger.warning(
                    "%s failed (attempt %s/%s): %s",
                    label,
                    attempt,
                    attempts,
                    exc,
                )
                emit_event(
                    "request_attempt_failed",
                    label=label,
                    attempt=attempt,
                    max_attempts=attempts,
                    error=exc,
                )
                if attempt >= attempts:
                    logger.error("%s failed after %s attempts.", label, attempts)
                    emit_event("request_retries_exhausted", label=label, attempts=attempts)
                    raise
                delay = self.delay_for(retry, base_delay_ms)
                logger.debug("Retrying %s in %.3fs", label, delay)
                await self._sleep(delay)
                retry += 1


__all__ = ["RequestExecutor", "Sleep"]
