"""
Fixed-window rate limiter.

Each caller identifier ("api:<key id>" or "ip:<address>") owns one
counter with a hard reset time. The first request after the reset time
starts a new window at count=1; every other request increments.

Design decisions:
  • Fixed window, not sliding — O(1) state per caller and trivial to
    reason about. A caller can push up to 2×limit requests across a
    window boundary; that is an accepted approximation.
  • Increment first, then compare — the request that crosses the limit
    is counted, so `remaining` is always max(0, limit - hits).
  • Two interchangeable stores: in-process memory (default, one counter
    map per process) and the database (counters shared by every process,
    atomic INSERT … ON CONFLICT DO UPDATE, last write wins on resets).

Quotas come from the tier table (see app.services.tiers).
"""

from __future__ import annotations

import datetime
import logging
import math
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy import delete, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.database import as_utc, from_epoch, insert_for
from app.core.results import OK, OpResult
from app.models.rate_limit_counter import RateLimitCounter
from app.services.tiers import Tier, TierTable

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class RateLimitExceeded(Exception):
    """Raised when a caller exceeds the quota for its tier."""

    def __init__(self, decision: AdmissionDecision) -> None:
        super().__init__(f"Rate limit exceeded ({decision.limit}/window)")
        self.decision = decision


@dataclass(frozen=True, slots=True)
class Hit:
    """Counter state right after an increment."""

    total_hits: int
    time_to_expire: float  # seconds until the window resets


class RateLimitStore(Protocol):
    async def increment(self, identifier: str) -> Hit: ...

    async def decrement(self, identifier: str) -> None: ...

    async def reset_key(self, identifier: str) -> None: ...


# ── Memory store ────────────────────────────────────────────
@dataclass(slots=True)
class _Window:
    count: int
    reset_at: float


class MemoryRateLimitStore:
    """Process-local counters. No locks: the event loop serializes access."""

    def __init__(self, window_seconds: int, *, clock: Clock = time.time) -> None:
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: dict[str, _Window] = {}

    async def increment(self, identifier: str) -> Hit:
        now = self._clock()
        current = self._hits.get(identifier)

        if current is None or current.reset_at <= now:
            self._hits[identifier] = _Window(count=1, reset_at=now + self.window_seconds)
            return Hit(total_hits=1, time_to_expire=float(self.window_seconds))

        current.count += 1
        return Hit(total_hits=current.count, time_to_expire=current.reset_at - now)

    async def decrement(self, identifier: str) -> None:
        current = self._hits.get(identifier)
        if current is not None and current.count > 0:
            current.count -= 1

    async def reset_key(self, identifier: str) -> None:
        self._hits.pop(identifier, None)

    def sweep(self) -> int:
        """Drop counters whose window has elapsed. Returns how many went."""
        now = self._clock()
        stale = [key for key, window in self._hits.items() if window.reset_at <= now]
        for key in stale:
            del self._hits[key]
        return len(stale)


# ── Database store ──────────────────────────────────────────
class DatabaseRateLimitStore:
    """Counters in `rate_limit_counters`, shared across processes."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        window_seconds: int,
        *,
        clock: Clock = time.time,
    ) -> None:
        self._session_factory = session_factory
        self.window_seconds = window_seconds
        self._clock = clock

    async def increment(self, identifier: str) -> Hit:
        now = self._clock()

        async with self._session_factory() as session:
            reset_at = await self._window_reset(session, identifier)

            if reset_at is not None and reset_at > now:
                stmt = (
                    update(RateLimitCounter)
                    .where(RateLimitCounter.identifier == identifier)
                    .values(count=RateLimitCounter.count + 1)
                    .returning(RateLimitCounter.count)
                    .execution_options(synchronize_session=False)
                )
                total = (await session.execute(stmt)).scalar_one_or_none()
                if total is not None:
                    await session.commit()
                    return Hit(total_hits=total, time_to_expire=reset_at - now)
                # Row was reset (deleted) between the read and the update.

            await self._start_window(session, identifier, now)
            await session.commit()

        return Hit(total_hits=1, time_to_expire=float(self.window_seconds))

    async def _window_reset(self, session: AsyncSession, identifier: str) -> float | None:
        """Epoch seconds at which the stored window ends, or None if no counter."""
        row = await session.get(RateLimitCounter, identifier)
        if row is None:
            return None
        return as_utc(row.reset_at).timestamp()

    async def decrement(self, identifier: str) -> None:
        stmt = (
            update(RateLimitCounter)
            .where(
                RateLimitCounter.identifier == identifier,
                RateLimitCounter.count > 0,
            )
            .values(count=RateLimitCounter.count - 1)
            .execution_options(synchronize_session=False)
        )
        async with self._session_factory() as session:
            await session.execute(stmt)
            await session.commit()

    async def reset_key(self, identifier: str) -> None:
        async with self._session_factory() as session:
            await session.execute(
                delete(RateLimitCounter).where(RateLimitCounter.identifier == identifier)
            )
            await session.commit()

    async def _start_window(self, session: AsyncSession, identifier: str, now: float) -> None:
        """Atomically create or reset the counter to count=1."""
        stmt = insert_for(session, RateLimitCounter).values(
            identifier=identifier,
            count=1,
            reset_at=from_epoch(now + self.window_seconds),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["identifier"],
            set_={"count": 1, "reset_at": stmt.excluded.reset_at},
        )
        await session.execute(stmt)


# ── Admission ───────────────────────────────────────────────
@dataclass(frozen=True, slots=True)
class AdmissionDecision:
    allowed: bool
    limit: int
    total_hits: int
    reset_at: datetime.datetime
    retry_after: int | None = None

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.total_hits)

    @property
    def headers(self) -> dict[str, str]:
        """Quota headers; Retry-After only on rejection."""
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": _iso(self.reset_at),
        }
        if self.retry_after is not None:
            headers["Retry-After"] = str(self.retry_after)
        return headers


class RateLimiter:
    """Admits or rejects one request against the caller's tier quota."""

    def __init__(
        self,
        store: RateLimitStore,
        tiers: TierTable,
        *,
        clock: Clock = time.time,
    ) -> None:
        self.store = store
        self.tiers = tiers
        self._clock = clock

    def limit_for(self, tier: Tier) -> int:
        return self.tiers[tier].requests

    async def admit(self, identifier: str, tier: Tier) -> AdmissionDecision:
        limit = self.limit_for(tier)
        hit = await self.store.increment(identifier)
        reset_at = from_epoch(self._clock() + hit.time_to_expire)

        if hit.total_hits > limit:
            logger.info(
                "Rate limit exceeded for %s (tier=%s, hits=%d, limit=%d)",
                identifier, tier.value, hit.total_hits, limit,
            )
            return AdmissionDecision(
                allowed=False,
                limit=limit,
                total_hits=hit.total_hits,
                reset_at=reset_at,
                retry_after=max(1, math.ceil(hit.time_to_expire)),
            )

        return AdmissionDecision(
            allowed=True,
            limit=limit,
            total_hits=hit.total_hits,
            reset_at=reset_at,
        )

    async def check(self, identifier: str, tier: Tier) -> AdmissionDecision:
        """admit(), raising RateLimitExceeded on rejection."""
        decision = await self.admit(identifier, tier)
        if not decision.allowed:
            raise RateLimitExceeded(decision)
        return decision

    async def refund(self, identifier: str) -> OpResult:
        """Give back one request (e.g. it failed validation before doing work)."""
        try:
            await self.store.decrement(identifier)
        except Exception as exc:
            logger.warning("Rate limit refund failed for %s", identifier, exc_info=True)
            return OpResult.degraded(exc)
        return OK

    async def reset(self, identifier: str) -> None:
        await self.store.reset_key(identifier)
        logger.info("Rate limit counter reset for %s", identifier)


# ── Identifier resolution ───────────────────────────────────
def client_address(headers: Mapping[str, str], peer_host: str | None = None) -> str | None:
    """
    Best guess at the caller's network address.

    First non-empty of: CF-Connecting-IP, the first hop of
    X-Forwarded-For, the socket peer.
    """
    candidates = (
        headers.get("cf-connecting-ip", "").strip(),
        headers.get("x-forwarded-for", "").split(",")[0].strip(),
        peer_host or "",
    )
    return next((ip for ip in candidates if ip), None)


def identify_client(
    api_key_id: object | None,
    headers: Mapping[str, str],
    peer_host: str | None = None,
) -> str:
    """
    Counter identifier for one request.

    An authenticated API key always wins over the network address.
    """
    if api_key_id is not None:
        return f"api:{api_key_id}"
    return f"ip:{client_address(headers, peer_host) or 'unknown'}"


def _iso(value: datetime.datetime) -> str:
    return value.astimezone(datetime.timezone.utc).isoformat(timespec="milliseconds").replace(
        "+00:00", "Z"
    )
