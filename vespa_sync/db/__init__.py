"""SQL persistence for the local cache tier."""

from .models import LocalCacheEntryModel
from .session import (
    build_engine,
    dispose_engine,
    get_engine,
    get_session_factory,
    make_session_factory,
    session_scope,
)

__all__ = [
    "LocalCacheEntryModel",
    "build_engine",
    "dispose_engine",
    "get_engine",
    "get_session_factory",
    "make_session_factory",
    "session_scope",
]
