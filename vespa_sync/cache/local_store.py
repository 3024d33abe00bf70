"""Local key-value stores backing the first cache tier."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol

from sqlalchemy import delete, select
from sqlalchemy.orm import Session, sessionmaker

from ..db.models import LocalCacheEntryModel
from ..db.session import session_scope


class LocalStore(Protocol):
    """String key-value store; implementations may raise on quota or availability problems."""

    def get(self, key: str) -> Optional[str]:  # pragma: no cover - protocol definition
        ...

    def set(self, key: str, value: str) -> None:  # pragma: no cover
        ...

    def remove(self, key: str) -> None:  # pragma: no cover
        ...

    def remove_all(self, prefix: str) -> int:  # pragma: no cover
        ...

    def keys(self) -> List[str]:  # pragma: no cover
        ...


class MemoryLocalStore:
    """Process-local store; lives as long as the process."""

    def __init__(self, max_entries: Optional[int] = None) -> None:
        self._entries: Dict[str, str] = {}
        self._max_entries = max_entries

    def get(self, key: str) -> Optional[str]:
        return self._entries.get(key)

    def set(self, key: str, value: str) -> None:
        if (
            self._max_entries is not None
            and key not in self._entries
            and len(self._entries) >= self._max_entries
        ):
            raise OverflowError(f"Local store quota of {self._max_entries} entries exceeded.")
        self._entries[key] = value

    def remove(self, key: str) -> None:
        self._entries.pop(key, None)

    def remove_all(self, prefix: str) -> int:
        doomed = [key for key in self._entries if key.startswith(prefix)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def keys(self) -> List[str]:
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()


class SqlLocalStore:
    """Local store persisted in a SQL table so entries survive process restarts."""

    def __init__(self, session_factory: Optional[sessionmaker[Session]] = None) -> None:
        self._session_factory = session_factory

    def get(self, key: str) -> Optional[str]:
        with session_scope(self._session_factory, commit=False) as session:
            model = session.get(LocalCacheEntryModel, key)
            return model.value if model is not None else None

    def set(self, key: str, value: str) -> None:
        with session_scope(self._session_factory) as session:
            model = session.get(LocalCacheEntryModel, key)
            if model is None:
                session.add(LocalCacheEntryModel(key=key, value=value))
            else:
                model.value = value
                model.updated_at = datetime.now(timezone.utc)

    def remove(self, key: str) -> None:
        with session_scope(self._session_factory) as session:
            session.execute(delete(LocalCacheEntryModel).where(LocalCacheEntryModel.key == key))

    def remove_all(self, prefix: str) -> int:
        with session_scope(self._session_factory) as session:
            result = session.execute(
                delete(LocalCacheEntryModel).where(
                    LocalCacheEntryModel.key.startswith(prefix, autoescape=True)
                )
            )
            return int(result.rowcount or 0)

    def keys(self) -> List[str]:
        with session_scope(self._session_factory, commit=False) as session:
            return list(session.execute(select(LocalCacheEntryModel.key)).scalars())


__all__ = ["LocalStore", "MemoryLocalStore", "SqlLocalStore"]
