"""
Two-tier lookup cache.

  • L1 — in-process OrderedDict, bounded, LRU-evicted. Answers repeated
    reads without touching the database.
  • L2 — the `cache_entries` table. Durable across restarts and shared by
    every process behind the same database.

Reads go L1 → L2 and promote L2 hits into L1. Writes go to L1
unconditionally, then upsert into L2. An entry whose expiry has passed
is never returned, whether or not it is still physically present.

Failure contract:
  The cache is an optimization, never a correctness dependency. Storage
  errors are logged and turned into a miss (reads) or a DEGRADED /
  FATAL OpResult (writes). Nothing in this module raises to the caller.

Every key is namespaced as "<prefix>:<key>" before it reaches either
tier, so several caches can share one table without seeing each
other's entries. clear() and clean_expired() are scoped to the prefix
for the same reason.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.database import as_utc, from_epoch, insert_for
from app.core.results import OK, OpResult, Outcome
from app.models.cache_entry import CacheEntry
from app.services.names import name_cache_key

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from app.services.names import OriginLookup

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass(frozen=True, slots=True)
class CacheOptions:
    prefix: str = ""
    default_ttl_seconds: int = 3600
    max_memory_entries: int = 10_000


@dataclass(frozen=True, slots=True)
class CacheLookup:
    """Result of a cache read. `source` is "memory" or "store" on a hit."""

    hit: bool
    value: Any = None
    source: str | None = None
    outcome: Outcome = Outcome.OK


@dataclass(frozen=True, slots=True)
class WarmSummary:
    loaded: int
    stored: int
    outcome: Outcome = Outcome.OK


@dataclass(slots=True)
class CacheStats:
    memory_hits: int = 0
    store_hits: int = 0
    misses: int = 0
    store_errors: int = 0


@dataclass(slots=True)
class _MemoryItem:
    value: Any
    expires_at: float


class CacheManager:
    """Read-through / write-through cache over memory and the database."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        options: CacheOptions | None = None,
        *,
        clock: Clock = time.time,
    ) -> None:
        self._session_factory = session_factory
        self.options = options or CacheOptions()
        self._clock = clock
        self._memory: OrderedDict[str, _MemoryItem] = OrderedDict()
        self._stats = CacheStats()

    def key_for(self, key: str) -> str:
        prefix = self.options.prefix
        return f"{prefix}:{key}" if prefix else key

    # ── Reads ───────────────────────────────────────────────
    async def get(self, key: str) -> CacheLookup:
        cache_key = self.key_for(key)
        now = self._clock()

        item = self._memory.get(cache_key)
        if item is not None:
            if item.expires_at > now:
                self._memory.move_to_end(cache_key)
                self._stats.memory_hits += 1
                return CacheLookup(hit=True, value=item.value, source="memory")
            del self._memory[cache_key]

        try:
            async with self._session_factory() as session:
                row = await session.get(CacheEntry, cache_key)
        except Exception:
            logger.warning("Cache get error for %s; treating as miss", cache_key, exc_info=True)
            self._stats.store_errors += 1
            self._stats.misses += 1
            return CacheLookup(hit=False, outcome=Outcome.DEGRADED)

        if row is None:
            self._stats.misses += 1
            return CacheLookup(hit=False)

        expires_at = as_utc(row.expires_at).timestamp()
        if expires_at <= now:
            self._stats.misses += 1
            return CacheLookup(hit=False)

        self._remember(cache_key, row.value, expires_at)
        self._stats.store_hits += 1
        return CacheLookup(hit=True, value=row.value, source="store")

    # ── Writes ──────────────────────────────────────────────
    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> OpResult:
        cache_key = self.key_for(key)
        ttl = self.options.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        now = self._clock()
        expires_at = now + ttl

        self._remember(cache_key, value, expires_at)

        try:
            async with self._session_factory() as session:
                stmt = insert_for(session, CacheEntry).values(
                    key=cache_key,
                    value=value,
                    expires_at=from_epoch(expires_at),
                    updated_at=from_epoch(now),
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=["key"],
                    set_={
                        "value": stmt.excluded.value,
                        "expires_at": stmt.excluded.expires_at,
                        "updated_at": stmt.excluded.updated_at,
                    },
                )
                await session.execute(stmt)
                await session.commit()
        except Exception as exc:
            logger.warning("Cache set error for %s; kept in memory only", cache_key, exc_info=True)
            self._stats.store_errors += 1
            return OpResult.degraded(exc)

        return OK

    async def delete(self, key: str) -> OpResult:
        cache_key = self.key_for(key)
        self._memory.pop(cache_key, None)

        try:
            async with self._session_factory() as session:
                await session.execute(delete(CacheEntry).where(CacheEntry.key == cache_key))
                await session.commit()
        except Exception as exc:
            logger.warning("Cache delete error for %s", cache_key, exc_info=True)
            self._stats.store_errors += 1
            return OpResult.degraded(exc)

        return OK

    async def clear(self) -> OpResult:
        self._memory.clear()

        try:
            async with self._session_factory() as session:
                await session.execute(self._scoped(delete(CacheEntry)))
                await session.commit()
        except Exception as exc:
            logger.error("Cache clear error", exc_info=True)
            self._stats.store_errors += 1
            return OpResult.degraded(exc)

        logger.info("Cache cleared (prefix=%r)", self.options.prefix)
        return OK

    async def clean_expired(self) -> OpResult:
        now = self._clock()

        expired = [k for k, item in self._memory.items() if item.expires_at <= now]
        for cache_key in expired:
            del self._memory[cache_key]

        try:
            async with self._session_factory() as session:
                stmt = self._scoped(delete(CacheEntry)).where(
                    CacheEntry.expires_at <= from_epoch(now)
                )
                result = await session.execute(stmt)
                await session.commit()
        except Exception as exc:
            logger.error("Cache cleanup error", exc_info=True)
            self._stats.store_errors += 1
            return OpResult.degraded(exc)

        logger.debug(
            "Cache sweep removed %d memory / %s stored entries",
            len(expired),
            result.rowcount,
        )
        return OK

    async def warm(
        self,
        origin: OriginLookup,
        *,
        limit: int = 100,
        ttl_seconds: int = 7200,
    ) -> WarmSummary:
        """Pre-load the most popular names into both tiers with a longer TTL."""
        try:
            records = await origin.top_popular(limit)
        except Exception:
            logger.exception("Cache warming failed while reading popular names")
            return WarmSummary(loaded=0, stored=0, outcome=Outcome.FATAL)

        stored = 0
        for record in records:
            result = await self.set(name_cache_key(record.name), record.cache_value(), ttl_seconds)
            if result.ok:
                stored += 1

        outcome = Outcome.OK if stored == len(records) else Outcome.DEGRADED
        logger.info("Cache warmed with %d/%d popular names", stored, len(records))
        return WarmSummary(loaded=len(records), stored=stored, outcome=outcome)

    # ── Introspection ───────────────────────────────────────
    def stats(self) -> dict[str, int]:
        data = asdict(self._stats)
        data["memory_entries"] = len(self._memory)
        return data

    # ── Internals ───────────────────────────────────────────
    def _remember(self, cache_key: str, value: Any, expires_at: float) -> None:
        self._memory[cache_key] = _MemoryItem(value=value, expires_at=expires_at)
        self._memory.move_to_end(cache_key)
        while len(self._memory) > self.options.max_memory_entries:
            self._memory.popitem(last=False)

    def _scoped(self, stmt):  # type: ignore[no-untyped-def]
        prefix = self.options.prefix
        if not prefix:
            return stmt
        return stmt.where(CacheEntry.key.startswith(f"{prefix}:", autoescape=True))
