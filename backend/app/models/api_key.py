"""
API key model — the access credential that maps a caller to a quota tier.

Security notes:
  • Raw API keys are NEVER stored. Only a SHA-256 hash is persisted.
  • The `prefix` column stores the first 12 characters (e.g., "sk_1a2b3c4d5")
    for identification in logs/UI without exposing the full key.
  • `is_active` allows key revocation without deletion (audit trail).
  • `request_limit` is captured from the tier table at issuance and is
    NOT recomputed when global tier quotas change later.
"""

import uuid
import datetime

from sqlalchemy import Boolean, DateTime, Integer, String, Text, Uuid, true
from sqlalchemy.sql import func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base, utcnow


class APIKey(Base):
    """Hashed API key with its tier and captured hourly limit."""

    __tablename__ = "api_keys"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(
        Text, nullable=False,
    )
    key_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
    )
    prefix: Mapped[str] = mapped_column(
        String(12),
        nullable=False,
    )
    tier: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="FREE",
    )
    request_limit: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )
    request_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default="0",
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=true(),
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )
    last_used_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    def __repr__(self) -> str:
        return (
            f"<APIKey id={self.id!s:.8} prefix={self.prefix!r} "
            f"tier={self.tier} active={self.is_active}>"
        )
