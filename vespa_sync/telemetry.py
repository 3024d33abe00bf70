"""Structured telemetry for retries, cache tiers and the verification gate."""

from __future__ import annotations

import json
import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from threading import RLock
from typing import Any, Callable, Dict, List

logger = logging.getLogger("vespa.telemetry")


@dataclass(frozen=True)
class TelemetryEvent:
    name: str
    payload: Dict[str, Any]

    @property
    def counter_key(self) -> str:
        tier = self.payload.get("tier")
        return f"{self.name}.{tier}" if isinstance(tier, str) else self.name


_listeners: List[Callable[[TelemetryEvent], None]] = []
_counts: Counter[str] = Counter()
_lock = RLock()


def register_listener(listener: Callable[[TelemetryEvent], None]) -> None:
    """Register an in-process listener (used in tests)."""
    with _lock:
        _listeners.append(listener)


def clear_listeners() -> None:
    """Remove all registered listeners and counters. Mainly used to reset test state."""
    with _lock:
        _listeners.clear()
        _counts.clear()


def event_counts() -> Dict[str, int]:
    """Counts per event name (suffixed with the cache tier for cache lookups)."""
    with _lock:
        return dict(_counts)


def emit_event(name: str, **fields: Any) -> None:
    """Emit a structured telemetry event, count it and fan it out to listeners."""
    event = TelemetryEvent(name=name, payload=_sanitize(fields))

    with _lock:
        _counts[event.counter_key] += 1
        listeners = list(_listeners)

    for listener in listeners:
        try:
            listener(event)
        except Exception:  # noqa: BLE001
            logger.exception("Telemetry listener failed for %s", name)

    if logger.isEnabledFor(logging.DEBUG):
        structured = {"event": name, **event.payload}
        logger.debug("TELEMETRY %s", json.dumps(structured, default=str))


def _sanitize(fields: Dict[str, Any]) -> Dict[str, Any]:
    sanitized: Dict[str, Any] = {}
    for key, value in fields.items():
        if isinstance(value, datetime):
            sanitized[key] = value.isoformat()
        elif isinstance(value, BaseException):
            sanitized[key] = f"{type(value).__name__}: {value}"
        else:
            sanitized[key] = value
    return sanitized


__all__ = [
    "TelemetryEvent",
    "clear_listeners",
    "emit_event",
    "event_counts",
    "register_listener",
]
