"""ORM table backing the local collection cache."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from kablan.db.base import Base


class CacheEntry(Base):
    """One JSON collection (or singleton document) keyed by collection name."""

    __tablename__ = "cache_entries"

    collection: Mapped[str] = mapped_column(String(64), primary_key=True)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
