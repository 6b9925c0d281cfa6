"""
Persian name model — the origin dataset behind every lookup.

Rows are loaded out of band (seeding is not part of this service).
`popularity` ranks names for cache warming.
"""

import uuid

from sqlalchemy import Index, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


class PersianName(Base):
    """One (name, gender) pair with its English transliteration."""

    __tablename__ = "persian_names"
    __table_args__ = (
        UniqueConstraint("name", "gender", name="uq_persian_names_name_gender"),
        Index("ix_persian_names_popularity", "popularity"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(
        String(50), nullable=False, index=True,
    )
    gender: Mapped[str] = mapped_column(
        String(10), nullable=False,
    )
    en_name: Mapped[str | None] = mapped_column(
        Text, nullable=True,
    )
    popularity: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0",
    )

    def __repr__(self) -> str:
        return f"<PersianName {self.name!r} gender={self.gender}>"
