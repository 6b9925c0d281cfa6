"""
Service container — the live components of one application instance.

Built once in the FastAPI lifespan, stored on `app.state.services`, and
read by dependencies through the request. Nothing here is a module
global, so two apps (or two tests) never share a cache or a counter map.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from app.core.config import Settings
from app.services.api_keys import CredentialService
from app.services.cache import CacheManager, CacheOptions
from app.services.metrics import MetricsCollector
from app.services.names import NameRepository, OriginLookup
from app.services.pipeline import LookupPipeline
from app.services.rate_limiter import (
    DatabaseRateLimitStore,
    MemoryRateLimitStore,
    RateLimiter,
    RateLimitStore,
)
from app.services.tiers import TierTable, build_tier_table

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    tiers: TierTable
    cache: CacheManager
    origin: OriginLookup
    rate_limiter: RateLimiter
    credentials: CredentialService
    metrics: MetricsCollector
    pipeline: LookupPipeline
    _sweeper: asyncio.Task[None] | None = field(default=None, repr=False)

    # ── Background sweep ────────────────────────────────────
    def start_sweeper(self) -> None:
        interval = self.settings.CACHE_SWEEP_INTERVAL_SECONDS
        if interval > 0 and self._sweeper is None:
            self._sweeper = asyncio.create_task(self._sweep_forever(interval))

    async def _sweep_forever(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            await self.cache.clean_expired()
            store = self.rate_limiter.store
            if isinstance(store, MemoryRateLimitStore):
                dropped = store.sweep()
                if dropped:
                    logger.debug("Dropped %d elapsed rate limit windows", dropped)

    async def aclose(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None
        await self.metrics.drain()


def build_services(
    settings: Settings,
    engine: AsyncEngine,
    session_factory: async_sessionmaker[AsyncSession],
    *,
    origin: OriginLookup | None = None,
    clock: Callable[[], float] = time.time,
) -> ServiceContainer:
    """Wire every component from settings. `origin` overrides the DB-backed source."""
    tiers = build_tier_table(settings)

    cache = CacheManager(
        session_factory,
        CacheOptions(
            prefix=settings.CACHE_PREFIX,
            default_ttl_seconds=settings.CACHE_DEFAULT_TTL_SECONDS,
            max_memory_entries=settings.CACHE_MEMORY_MAX_ENTRIES,
        ),
        clock=clock,
    )

    store: RateLimitStore
    if settings.RATE_LIMIT_BACKEND == "database":
        store = DatabaseRateLimitStore(
            session_factory, settings.RATE_LIMIT_WINDOW_SECONDS, clock=clock
        )
    else:
        store = MemoryRateLimitStore(settings.RATE_LIMIT_WINDOW_SECONDS, clock=clock)

    origin = origin or NameRepository(session_factory)
    metrics = MetricsCollector(session_factory, clock=clock)

    return ServiceContainer(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        tiers=tiers,
        cache=cache,
        origin=origin,
        rate_limiter=RateLimiter(store, tiers, clock=clock),
        credentials=CredentialService(
            session_factory,
            tiers,
            lookback_seconds=settings.CREDENTIAL_LOOKBACK_SECONDS,
            clock=clock,
        ),
        metrics=metrics,
        pipeline=LookupPipeline(
            cache,
            origin,
            metrics,
            ttl_seconds=settings.CACHE_DEFAULT_TTL_SECONDS,
            timeout_seconds=settings.REQUEST_TIMEOUT_SECONDS,
            chunk_size=settings.BATCH_CHUNK_SIZE,
        ),
    )
