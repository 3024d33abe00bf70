"""ORM models backing the persistent local cache tier."""

from __future__ import annotations

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


class LocalCacheEntryModel(TimestampMixin, Base):
    __tablename__ = "local_cache_entries"

    key: Mapped[str] = mapped_column(String(512), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)


__all__ = ["LocalCacheEntryModel"]
