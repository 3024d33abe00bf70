"""Engine and session helpers for the SQL-backed local cache store."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import Settings, get_settings
from . import models  # noqa: F401  registers tables on Base.metadata
from .base import Base

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker[Session]] = None


def build_engine(database_url: str, *, echo: bool = False) -> Engine:
    kwargs: dict[str, object] = {
        "echo": echo,
        "pool_pre_ping": True,
    }

    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool

    engine = create_engine(database_url, **kwargs)
    Base.metadata.create_all(engine)
    return engine


def _engine_from_settings(settings: Settings) -> Engine:
    if not settings.local_store_url:
        raise RuntimeError("VESPA_LOCAL_STORE_URL must be configured before using the SQL local store.")
    return build_engine(settings.local_store_url, echo=settings.local_store_echo)


def get_engine() -> Engine:
    global _engine, _session_factory
    if _engine is None:
        _engine = _engine_from_settings(get_settings())
        _session_factory = make_session_factory(_engine)
    return _engine


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def get_session_factory() -> sessionmaker[Session]:
    global _session_factory
    if _session_factory is None:
        get_engine()
    if _session_factory is None:
        raise RuntimeError("Local store session factory was not initialised.")
    return _session_factory


@contextmanager
def session_scope(
    factory: Optional[sessionmaker[Session]] = None,
    *,
    commit: bool = True,
) -> Generator[Session, None, None]:
    session = (factory or get_session_factory())()
    try:
        yield session
        if commit:
            session.commit()
    except Exception:  # noqa: BLE001
        session.rollback()
        raise
    finally:
        session.close()


def dispose_engine() -> None:
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


__all__ = [
    "build_engine",
    "dispose_engine",
    "get_engine",
    "get_session_factory",
    "make_session_factory",
    "session_scope",
]
