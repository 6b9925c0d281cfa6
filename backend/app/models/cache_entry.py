"""
Cache entry model — the persistent (L2) tier of the lookup cache.

One row per prefixed key. `set` upserts on the primary key, so a key
never has more than one row. Rows past `expires_at` are logically dead
and are removed lazily by the periodic sweep.
"""

import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, String
from sqlalchemy.sql import func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base, utcnow


class CacheEntry(Base):
    """Serialized cache payload with an absolute expiry."""

    __tablename__ = "cache_entries"

    key: Mapped[str] = mapped_column(
        String(255),
        primary_key=True,
    )
    value: Mapped[Any] = mapped_column(
        JSON,
        nullable=False,
    )
    expires_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return f"<CacheEntry key={self.key!r} expires_at={self.expires_at}>"
