"""
FastAPI application entrypoint.

Lifespan:
  • On startup: build the engine and ServiceContainer, verify DB
    connectivity, optionally create the schema, start the cache sweeper.
  • On shutdown: stop the sweeper, flush pending request logs, dispose
    the engine.

Routers (all under API_PREFIX, default /api/v1):
  • /name/{name} — single lookup
  • /batch       — batch lookup (paid tiers)
  • /metrics     — usage metrics (paid tiers)
  • /admin/...   — key issuance, cache and counter maintenance
  • /health      — DB + cache health
"""

from __future__ import annotations

import datetime
import logging
import time
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

from fastapi import FastAPI, Request
from sqlalchemy import text

from app.core.config import Settings, settings as default_settings
from app.core.container import ServiceContainer, build_services
from app.core.database import build_engine, build_session_factory, create_schema
from app.core.errors import register_exception_handlers
from app.core.results import Outcome
from app.routers.admin import router as admin_router
from app.routers.analytics import router as analytics_router
from app.routers.batch import router as batch_router
from app.routers.metrics import router as metrics_router
from app.routers.names import router as names_router
from app.schemas.metrics import CheckOut, HealthOut
from app.services.names import OriginLookup

APP_VERSION = "2.0.0"

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    *,
    origin: OriginLookup | None = None,
) -> FastAPI:
    """
    Build one application instance.

    `origin` replaces the database-backed name source (tests, or an
    alternative upstream).
    """
    settings = settings or default_settings

    logging.basicConfig(
        level=logging.DEBUG if settings.DEBUG else logging.INFO,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )

    # ── Lifespan ────────────────────────────────────────────
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Startup / shutdown lifecycle."""
        engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)
        services = build_services(
            settings, engine, build_session_factory(engine), origin=origin
        )
        app.state.services = services

        # Startup — verify DB is reachable
        try:
            async with engine.begin() as conn:
                await conn.execute(text("SELECT 1"))
            logger.info("Database connection verified ✓")
        except Exception:
            logger.warning(
                "Could not reach the database on startup. "
                "The app will start; lookups fall back to the memory cache "
                "and fail on miss until the DB is available."
            )
        else:
            if settings.AUTO_CREATE_SCHEMA:
                await create_schema(engine)
                logger.info("Schema created from ORM metadata ✓")

        services.start_sweeper()

        yield  # ← application runs here

        # Shutdown — stop background work, then the connection pool
        await services.aclose()
        await engine.dispose()
        logger.info("Database engine disposed ✓")

    # ── App ─────────────────────────────────────────────────
    app = FastAPI(
        title=settings.APP_NAME,
        version=APP_VERSION,
        description=(
            "Persian name gender lookup with tiered API keys, "
            "two-tier caching and per-caller rate limiting."
        ),
        lifespan=lifespan,
    )

    async def refund_admission(request: Request) -> None:
        identifier = getattr(request.state, "admitted_identifier", None)
        if identifier is not None:
            services: ServiceContainer = request.app.state.services
            await services.rate_limiter.refund(identifier)

    register_exception_handlers(app, on_validation_error=refund_admission)

    prefix = settings.API_PREFIX
    app.include_router(names_router, prefix=prefix)
    app.include_router(batch_router, prefix=prefix)
    app.include_router(metrics_router, prefix=prefix)
    app.include_router(analytics_router, prefix=prefix)
    app.include_router(admin_router, prefix=f"{prefix}/admin")

    # ── Health check ────────────────────────────────────────
    @app.get(
        f"{prefix}/health",
        response_model=HealthOut,
        tags=["System"],
        summary="Health probe (database + cache)",
    )
    async def health_check(request: Request) -> HealthOut:
        services: ServiceContainer = request.app.state.services

        db_check = await _timed_check(_ping_database(services))
        cache_check = await _timed_check(services.cache.get("health-check"))

        if db_check.status == "fail":
            overall = "unhealthy"
        elif cache_check.status == "fail":
            overall = "degraded"
        else:
            overall = "healthy"

        return HealthOut(
            status=overall,
            timestamp=datetime.datetime.now(datetime.timezone.utc),
            version=APP_VERSION,
            checks={"database": db_check, "cache": cache_check},
        )

    return app


async def _ping_database(services: ServiceContainer) -> None:
    async with services.engine.connect() as conn:
        await conn.execute(text("SELECT 1"))


async def _timed_check(probe) -> CheckOut:  # type: ignore[no-untyped-def]
    started = time.perf_counter()
    try:
        result = await probe
    except Exception:
        logger.warning("Health probe failed", exc_info=True)
        return CheckOut(status="fail", response_time=_ms_since(started))

    # Cache lookups never raise; a degraded read means the store is down.
    status = "fail" if getattr(result, "outcome", None) is Outcome.DEGRADED else "pass"
    return CheckOut(status=status, response_time=_ms_since(started))


def _ms_since(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


app = create_app()
