"""Resolution of connection-field values to record identifiers.

Connection fields arrive in several shapes: a bare id string, an object with
``id``/``identifier``/``_id``, or a collection of either. Extractors are tried
in a fixed order and the first valid identifier wins; anything else resolves
to ``None`` rather than raising.
"""

from __future__ import annotations

import re
from typing import Any, Callable, List, Mapping, Optional, Sequence, Tuple

_RECORD_ID = re.compile(r"^[0-9a-f]{24}$", re.IGNORECASE)

Extractor = Callable[[Any], Optional[str]]


def is_valid_record_id(value: Any) -> bool:
    return isinstance(value, str) and bool(_RECORD_ID.match(value))


def _valid_or_none(value: Any) -> Optional[str]:
    return value if is_valid_record_id(value) else None


def _explicit_id(value: Any) -> Optional[str]:
    if isinstance(value, Mapping):
        return _valid_or_none(value.get("id"))
    return None


def _explicit_identifier(value: Any) -> Optional[str]:
    if isinstance(value, Mapping):
        return _valid_or_none(value.get("identifier"))
    return None


def _single_element(value: Any) -> Optional[str]:
    if not isinstance(value, Sequence) or isinstance(value, (str, bytes)) or len(value) != 1:
        return None
    item = value[0]
    if isinstance(item, Mapping):
        return _valid_or_none(item.get("id"))
    return _valid_or_none(item)


def _underscore_id(value: Any) -> Optional[str]:
    if isinstance(value, Mapping):
        return _valid_or_none(value.get("_id"))
    return None


def _direct_string(value: Any) -> Optional[str]:
    return _valid_or_none(value)


REFERENCE_EXTRACTORS: Tuple[Extractor, ...] = (
    _explicit_id,
    _explicit_identifier,
    _single_element,
    _underscore_id,
    _direct_string,
)


def resolve_reference_id(value: Any) -> Optional[str]:
    if not value:
        return None
    for extractor in REFERENCE_EXTRACTORS:
        resolved = extractor(value)
        if resolved:
            return resolved
    return None


def collect_reference_ids(value: Any) -> List[str]:
    """Resolve every identifier in a possibly multi-valued connection field."""
    if not value:
        return []
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
        resolved = (resolve_reference_id(item) for item in value)
        return [item for item in resolved if item]
    single = resolve_reference_id(value)
    return [single] if single else []


def connection_value(ids: Sequence[str]) -> Any:
    """Connection writes take a bare id for one value and a list otherwise."""
    if not ids:
        return None
    return ids[0] if len(ids) == 1 else list(ids)


__all__ = [
    "REFERENCE_EXTRACTORS",
    "collect_reference_ids",
    "connection_value",
    "is_valid_record_id",
    "resolve_reference_id",
]
