"""
Credential service — issue, validate and revoke API keys.

Validation is the first admission gate for keyed callers:
  1. Hash the presented key and look it up.
  2. Fail closed if unknown or inactive.
  3. Count the key's request_logs rows within the lookback window
     (default one hour) and fail closed if it reached the key's own
     captured request_limit.
  4. Stamp last_used_at.

Step 3 is independent of the fixed-window RateLimiter: it is a rolling
historical count that only drains as old rows age out of the lookback
window, whereas the RateLimiter resets sharply at window boundaries.
Both stay in place.

Validation results are never cached, so deactivation takes effect on
the very next request.
"""

from __future__ import annotations

import datetime
import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.auth.hashing import generate_api_key, hash_api_key
from app.core.database import from_epoch
from app.core.results import OK, OpResult
from app.models.api_key import APIKey
from app.models.request_log import RequestLog
from app.services.tiers import Tier, TierTable

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class KeyValidation:
    is_valid: bool
    api_key_id: uuid.UUID | None = None
    tier: Tier | None = None
    request_limit: int | None = None
    request_count: int | None = None
    reason: str | None = None


@dataclass(frozen=True, slots=True)
class IssuedKey:
    """Returned once at creation — the only time the raw key is visible."""

    id: uuid.UUID
    key: str
    name: str
    tier: Tier
    request_limit: int
    created_at: datetime.datetime


@dataclass(frozen=True, slots=True)
class KeyStats:
    request_count: int
    request_limit: int
    remaining_requests: int
    reset_time: datetime.datetime


class CredentialService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        tiers: TierTable,
        *,
        lookback_seconds: int = 3600,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._session_factory = session_factory
        self.tiers = tiers
        self.lookback_seconds = lookback_seconds
        self._clock = clock

    async def create(self, name: str, tier: Tier = Tier.FREE) -> IssuedKey:
        """Issue a key; request_limit is frozen at the tier's current quota."""
        new_key = generate_api_key()
        request_limit = self.tiers[tier].requests

        api_key = APIKey(
            name=name,
            key_hash=new_key.digest,
            prefix=new_key.prefix,
            tier=tier.value,
            request_limit=request_limit,
            created_at=from_epoch(self._clock()),
        )
        async with self._session_factory() as session:
            session.add(api_key)
            await session.commit()

        logger.info("Issued API key %s (tier=%s, limit=%d)", api_key.prefix, tier.value, request_limit)
        return IssuedKey(
            id=api_key.id,
            key=new_key.raw,
            name=name,
            tier=tier,
            request_limit=request_limit,
            created_at=api_key.created_at,
        )

    async def validate(self, raw_key: str) -> KeyValidation:
        now = self._clock()
        try:
            async with self._session_factory() as session:
                api_key = await self._find(session, raw_key)

                if api_key is None:
                    return KeyValidation(is_valid=False, reason="unknown")
                if not api_key.is_active:
                    return KeyValidation(is_valid=False, reason="inactive")

                recent = await self._recent_requests(session, api_key.id, now)
                if recent >= api_key.request_limit:
                    logger.info(
                        "API key %s exhausted its hourly limit (%d/%d)",
                        api_key.prefix, recent, api_key.request_limit,
                    )
                    return KeyValidation(is_valid=False, reason="quota_exhausted")

                api_key.last_used_at = from_epoch(now)
                await session.commit()

                return KeyValidation(
                    is_valid=True,
                    api_key_id=api_key.id,
                    tier=Tier(api_key.tier),
                    request_limit=api_key.request_limit,
                    request_count=api_key.request_count,
                )
        except Exception:
            logger.exception("API key validation error")
            return KeyValidation(is_valid=False, reason="error")

    async def increment_usage(self, api_key_id: uuid.UUID) -> OpResult:
        """Best-effort lifetime counter bump; never blocks the request."""
        stmt = (
            update(APIKey)
            .where(APIKey.id == api_key_id)
            .values(
                request_count=APIKey.request_count + 1,
                last_used_at=from_epoch(self._clock()),
            )
        )
        try:
            async with self._session_factory() as session:
                await session.execute(stmt)
                await session.commit()
        except Exception as exc:
            logger.warning("Failed to increment API key usage for %s", api_key_id, exc_info=True)
            return OpResult.degraded(exc)
        return OK

    async def deactivate(self, raw_key: str) -> bool:
        stmt = (
            update(APIKey)
            .where(APIKey.key_hash == hash_api_key(raw_key))
            .values(is_active=False)
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                await session.commit()
        except Exception:
            logger.exception("Failed to deactivate API key")
            return False

        if result.rowcount:
            logger.info("API key deactivated")
        return bool(result.rowcount)

    async def stats(self, raw_key: str) -> KeyStats | None:
        now = self._clock()
        try:
            async with self._session_factory() as session:
                api_key = await self._find(session, raw_key)
                if api_key is None:
                    return None
                recent = await self._recent_requests(session, api_key.id, now)
        except Exception:
            logger.exception("Failed to read API key stats")
            return None

        next_hour = from_epoch(now).replace(minute=0, second=0, microsecond=0)
        next_hour += datetime.timedelta(hours=1)
        return KeyStats(
            request_count=recent,
            request_limit=api_key.request_limit,
            remaining_requests=max(0, api_key.request_limit - recent),
            reset_time=next_hour,
        )

    async def list_keys(self) -> list[APIKey]:
        async with self._session_factory() as session:
            result = await session.execute(select(APIKey).order_by(APIKey.created_at.desc()))
            return list(result.scalars().all())

    # ── Internals ───────────────────────────────────────────
    async def _find(self, session: AsyncSession, raw_key: str) -> APIKey | None:
        stmt = select(APIKey).where(APIKey.key_hash == hash_api_key(raw_key))
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def _recent_requests(
        self, session: AsyncSession, api_key_id: uuid.UUID, now: float
    ) -> int:
        since = from_epoch(now - self.lookback_seconds)
        stmt = (
            select(func.count())
            .select_from(RequestLog)
            .where(
                RequestLog.api_key_id == api_key_id,
                RequestLog.created_at >= since,
            )
        )
        return (await session.execute(stmt)).scalar_one()
