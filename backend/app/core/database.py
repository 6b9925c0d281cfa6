"""
Async database engine, session factory, and ORM base.

Rules enforced:
  • Every DB call goes through AsyncSession (no sync, no raw SQL).
  • Engines are built per application instance in the lifespan and
    handed to services through the ServiceContainer — no module-level
    engine, so tests can point an app at a throwaway database.
  • The declarative Base is shared across all models so Alembic can
    auto-detect schema changes from a single metadata object.
"""

from __future__ import annotations

import datetime
import importlib

from sqlalchemy import MetaData, func, literal_column
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase


# ── ORM Base ────────────────────────────────────────────────
class Base(DeclarativeBase):
    """Shared declarative base for all SQLAlchemy models."""


# ── Engine / session factory ────────────────────────────────
def build_engine(url: str, *, echo: bool = False) -> AsyncEngine:
    """
    Create the async engine for one application instance.

    pool_pre_ping: drop stale connections before reuse
    echo: SQL logging — only in debug mode
    """
    return create_async_engine(url, echo=echo, pool_pre_ping=True)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to `engine`; one session per unit of work."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,  # avoid lazy-load issues after commit
    )


MODEL_MODULES = (
    "app.models.api_key",
    "app.models.cache_entry",
    "app.models.persian_name",
    "app.models.rate_limit_counter",
    "app.models.request_log",
)


def load_metadata() -> MetaData:
    """Import every model module and return the populated metadata."""
    for module in MODEL_MODULES:
        importlib.import_module(module)
    return Base.metadata


async def create_schema(engine: AsyncEngine) -> None:
    """Create all tables directly from metadata (dev/tests; prod uses Alembic)."""
    metadata = load_metadata()
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)


# ── Dialect helpers ─────────────────────────────────────────
def insert_for(session: AsyncSession, table):  # type: ignore[no-untyped-def]
    """
    Dialect-specific INSERT supporting ON CONFLICT DO UPDATE.

    Postgres and SQLite both support the upsert form; the statement
    builder just lives in a different module for each.
    """
    dialect = session.get_bind().dialect.name
    if dialect == "sqlite":
        return sqlite.insert(table)
    return postgresql.insert(table)


# strftime() format on SQLite, to_char() pattern on Postgres
_BUCKETS = {
    "hour": ("%Y-%m-%d %H:00:00", "YYYY-MM-DD HH24:00:00"),
    "day": ("%Y-%m-%d", "YYYY-MM-DD"),
}


def time_bucket(session: AsyncSession, column, unit: str):  # type: ignore[no-untyped-def]
    """
    SQL expression truncating `column` to an hour or day label.

    Labels are plain strings ("2026-10-19 14:00:00" / "2026-10-19") on
    both dialects so GROUP BY results compare equal across databases.
    """
    sqlite_format, pg_pattern = _BUCKETS[unit]
    # Inline constants: a bound format would differ between SELECT and GROUP BY.
    if session.get_bind().dialect.name == "sqlite":
        return func.strftime(literal_column(f"'{sqlite_format}'"), column)
    return func.to_char(column, literal_column(f"'{pg_pattern}'"))


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def as_utc(value: datetime.datetime) -> datetime.datetime:
    """SQLite hands back naive datetimes; everything we store is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value


def from_epoch(seconds: float) -> datetime.datetime:
    return datetime.datetime.fromtimestamp(seconds, tz=datetime.timezone.utc)
