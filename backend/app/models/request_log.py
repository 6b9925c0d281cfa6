"""
Request log model — one row per served lookup.

Feeds the usage metrics endpoint and the per-credential historical
quota check (count of rows for an API key since a timestamp).
Written fire-and-forget after the response is decided.
"""

import uuid
import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Uuid
from sqlalchemy.sql import func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base, utcnow


class RequestLog(Base):
    """Immutable usage record for analytics and quota accounting."""

    __tablename__ = "request_logs"
    __table_args__ = (
        Index("ix_request_logs_api_key_created", "api_key_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        primary_key=True,
        default=uuid.uuid4,
    )
    requested_name: Mapped[str] = mapped_column(
        String(255), nullable=False,
    )
    name_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(),
        ForeignKey("persian_names.id", ondelete="SET NULL"),
        nullable=True,
    )
    ip_address: Mapped[str | None] = mapped_column(
        String(64), nullable=True,
    )
    user_agent: Mapped[str | None] = mapped_column(
        String(512), nullable=True,
    )
    response_time_ms: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0,
    )
    status_code: Mapped[int] = mapped_column(
        Integer, nullable=False,
    )
    cache_status: Mapped[str | None] = mapped_column(
        String(8), nullable=True,
    )
    api_key_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(),
        ForeignKey("api_keys.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        index=True,
    )

    def __repr__(self) -> str:
        return (
            f"<RequestLog name={self.requested_name!r} "
            f"status={self.status_code} cache={self.cache_status}>"
        )
