from __future__ import annotations

import asyncio
import os
from collections.abc import AsyncIterator, Callable, Iterable

# Settings() is built at import time and requires a URL.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from app.core.database import build_engine, build_session_factory, create_schema
from app.services.names import NameRecord


class FakeClock:
    """Manually advanced wall clock (epoch seconds)."""

    def __init__(self, start: float = 1_790_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StubOrigin:
    """In-memory OriginLookup that records calls and can fail or stall."""

    def __init__(
        self,
        records: Iterable[NameRecord] = (),
        *,
        failing: Iterable[str] = (),
        delay: float = 0.0,
    ) -> None:
        self.records = {record.name: record for record in records}
        self.failing = set(failing)
        self.delay = delay
        self.calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def find(self, name: str) -> NameRecord | None:
        self.calls.append(name)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if name in self.failing:
                raise RuntimeError(f"origin unavailable for {name}")
            return self.records.get(name)
        finally:
            self.in_flight -= 1

    async def top_popular(self, limit: int) -> list[NameRecord]:
        ranked = sorted(self.records.values(), key=lambda r: r.popularity, reverse=True)
        return ranked[:limit]


SAMPLE_NAMES = [
    NameRecord(name="علی", gender="MALE", en_name="ali", popularity=95),
    NameRecord(name="زهرا", gender="FEMALE", en_name="zahra", popularity=87),
    NameRecord(name="محمد", gender="MALE", en_name="mohammad", popularity=99),
    NameRecord(name="فاطمه", gender="FEMALE", en_name="fatemeh", popularity=90),
    NameRecord(name="مریم", gender="FEMALE", en_name="maryam", popularity=80),
    NameRecord(name="حسن", gender="MALE", en_name="hasan", popularity=70),
]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_origin() -> Callable[..., StubOrigin]:
    def _make(records: Iterable[NameRecord] = SAMPLE_NAMES, **kwargs) -> StubOrigin:
        return StubOrigin(records, **kwargs)

    return _make


@pytest.fixture
def database_url(tmp_path) -> str:
    # File-backed so concurrent sessions get their own connections.
    return f"sqlite+aiosqlite:///{tmp_path / 'shenasa-test.db'}"


@pytest_asyncio.fixture
async def engine(database_url: str) -> AsyncIterator[AsyncEngine]:
    engine = build_engine(database_url)
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(engine)
