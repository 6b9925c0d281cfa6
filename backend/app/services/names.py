"""
Origin lookup over the `persian_names` table.

This is the authoritative data source the cache sits in front of.
Every call opens its own session so that concurrent batch items never
share one AsyncSession.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.persian_name import PersianName


def name_cache_key(name: str) -> str:
    return f"name:{name}"


@dataclass(frozen=True, slots=True)
class NameRecord:
    name: str
    gender: str | None
    en_name: str | None
    popularity: int = 0
    id: uuid.UUID | None = None

    def cache_value(self) -> dict[str, Any]:
        return {
            "gender": self.gender,
            "enName": self.en_name,
            "popularity": self.popularity,
        }


class OriginLookup(Protocol):
    """Stateless, idempotent, side-effect-free name source."""

    async def find(self, name: str) -> NameRecord | None: ...

    async def top_popular(self, limit: int) -> list[NameRecord]: ...


class NameRepository:
    """OriginLookup backed by the database."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def find(self, name: str) -> NameRecord | None:
        stmt = (
            select(PersianName)
            .where(PersianName.name == name)
            .order_by(PersianName.popularity.desc())
            .limit(1)
        )
        async with self._session_factory() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
        return _to_record(row) if row is not None else None

    async def top_popular(self, limit: int) -> list[NameRecord]:
        stmt = select(PersianName).order_by(PersianName.popularity.desc()).limit(limit)
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_to_record(row) for row in rows]


def _to_record(row: PersianName) -> NameRecord:
    return NameRecord(
        id=row.id,
        name=row.name,
        gender=row.gender,
        en_name=row.en_name,
        popularity=row.popularity,
    )
