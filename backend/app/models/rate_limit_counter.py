"""
Fixed-window rate limit counter, used by the database-backed store.

One row per identifier ("api:<key id>" or "ip:<address>"). The row is
reset in place (count=1, new reset_at) when its window has elapsed, so
the table never grows beyond the number of distinct callers.

Upserts via INSERT … ON CONFLICT DO UPDATE let several processes share
counters without explicit locks; last write wins on a reset race.
"""

import datetime

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


class RateLimitCounter(Base):
    """Per-identifier request count for the current window."""

    __tablename__ = "rate_limit_counters"

    identifier: Mapped[str] = mapped_column(
        String(255),
        primary_key=True,
    )
    count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    reset_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<RateLimitCounter id={self.identifier!r} "
            f"count={self.count} reset_at={self.reset_at}>"
        )
