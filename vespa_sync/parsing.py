"""Best-effort decoding of persisted JSON blobs and loose date values."""

from __future__ import annotations

import html
import json
import logging
import re
from datetime import date, datetime, timezone
from typing import Any, Optional
from urllib.parse import unquote

logger = logging.getLogger(__name__)

_TRAILING_COMMA = re.compile(r",\s*([}\]])")
_HTML_TAG = re.compile(r"<[^>]*?>")
_MARKUP_CHARS = re.compile(r"[_~`#]")

# Formats produced by browser Date.toString()/toDateString() and common exports.
_FALLBACK_DATE_FORMATS = (
    "%a %b %d %Y",
    "%a %b %d %Y %H:%M:%S",
    "%m/%d/%Y",
    "%Y/%m/%d",
)


def safe_parse_json(value: Any, default: Any = None) -> Any:
    """Parse JSON, retrying once after stripping escaped quotes and trailing commas."""
    if value is None or value == "":
        return default
    if isinstance(value, (dict, list)):
        return value
    if not isinstance(value, (str, bytes)):
        return default
    try:
        return json.loads(value)
    except ValueError as exc:
        logger.debug("JSON parse failed (%s); attempting repair of %.100r", exc, value)

    text = value.decode("utf-8", errors="replace") if isinstance(value, bytes) else value
    repaired = text.strip().lstrip("\ufeff").replace('\\"', '"')
    repaired = _TRAILING_COMMA.sub(r"\1", repaired)
    try:
        return json.loads(repaired)
    except ValueError as exc:
        logger.debug("JSON repair failed: %s", exc)
        return default


def decode_percent_encoded(value: str) -> str:
    """Decode values stored percent-encoded; fall back to the raw string."""
    if not value.startswith("%"):
        return value
    try:
        return unquote(value, errors="strict")
    except UnicodeDecodeError as exc:
        logger.debug("Percent-decoding failed (%s); using raw value", exc)
        return value


def parse_day(value: Any) -> Optional[date]:
    """Truncate a loosely formatted date value to its calendar day.

    Timezone-aware values are converted to local time first. Numbers are read
    as epoch milliseconds. Returns ``None`` when nothing parses.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return _local_day(value)
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc).astimezone().date()
        except (OverflowError, OSError, ValueError):
            return None
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None
    try:
        return _local_day(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError:
        pass
    for fmt in _FALLBACK_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def _local_day(moment: datetime) -> date:
    if moment.tzinfo is not None:
        moment = moment.astimezone()
    return moment.date()


def sanitize_field(value: Any) -> str:
    """Strip markup from a record value and return trimmed plain text."""
    if value is None:
        return ""
    text = _HTML_TAG.sub("", str(value))
    text = _MARKUP_CHARS.sub("", text)
    return html.unescape(text).replace("\xa0", " ").strip()


__all__ = [
    "decode_percent_encoded",
    "parse_day",
    "safe_parse_json",
    "sanitize_field",
]
