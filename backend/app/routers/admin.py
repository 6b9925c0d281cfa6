"""
Admin router — credential issuance and cache / counter maintenance.

Every route requires X-Admin-Key. Admin calls are not rate limited.

  POST /admin/api-keys             — issue a key (raw key shown once)
  GET  /admin/api-keys             — list keys (no secrets)
  POST /admin/api-keys/deactivate  — revoke a key
  POST /admin/api-keys/stats       — rolling-hour usage of one key
  POST /admin/cache/warm           — pre-load popular names
  POST /admin/cache/clear          — empty both cache tiers
  POST /admin/cache/clean          — sweep expired entries now
  POST /admin/rate-limits/reset    — clear one caller's counter
"""

import logging

from fastapi import APIRouter, Depends, status

from app.auth.dependencies import Services, require_admin
from app.core.errors import ApiError
from app.schemas.admin import (
    ApiKeyCreate,
    ApiKeyCreated,
    ApiKeyOut,
    ApiKeyRef,
    ApiKeyStatsOut,
    CacheWarmOut,
    OperationOut,
    RateLimitResetIn,
)
from app.schemas.errors import error_responses

logger = logging.getLogger(__name__)

router = APIRouter(
    tags=["Admin"],
    dependencies=[Depends(require_admin)],
    responses=error_responses(401),
)


class KeyNotFound(ApiError):
    status_code = status.HTTP_404_NOT_FOUND
    code = 40401
    message = "API key not found"


# ── API keys ────────────────────────────────────────────────
@router.post(
    "/api-keys",
    response_model=ApiKeyCreated,
    status_code=status.HTTP_201_CREATED,
    summary="Create a new API key",
)
async def create_api_key(payload: ApiKeyCreate, services: Services) -> ApiKeyCreated:
    issued = await services.credentials.create(payload.name, payload.tier)
    return ApiKeyCreated(
        id=issued.id,
        key=issued.key,
        name=issued.name,
        tier=issued.tier,
        request_limit=issued.request_limit,
        created_at=issued.created_at,
    )


@router.get(
    "/api-keys",
    response_model=list[ApiKeyOut],
    summary="List API keys",
)
async def list_api_keys(services: Services) -> list[ApiKeyOut]:
    keys = await services.credentials.list_keys()
    return [ApiKeyOut.model_validate(key) for key in keys]


@router.post(
    "/api-keys/deactivate",
    response_model=OperationOut,
    summary="Deactivate an API key",
    responses=error_responses(404),
)
async def deactivate_api_key(payload: ApiKeyRef, services: Services) -> OperationOut:
    if not await services.credentials.deactivate(payload.key):
        raise KeyNotFound()
    return OperationOut(message="API key deactivated", outcome="ok")


@router.post(
    "/api-keys/stats",
    response_model=ApiKeyStatsOut,
    summary="Usage of one API key over the lookback window",
    responses=error_responses(404),
)
async def api_key_stats(payload: ApiKeyRef, services: Services) -> ApiKeyStatsOut:
    stats = await services.credentials.stats(payload.key)
    if stats is None:
        raise KeyNotFound()
    return ApiKeyStatsOut(
        request_count=stats.request_count,
        request_limit=stats.request_limit,
        remaining_requests=stats.remaining_requests,
        reset_time=stats.reset_time,
    )


# ── Cache ───────────────────────────────────────────────────
@router.post(
    "/cache/warm",
    response_model=CacheWarmOut,
    summary="Warm the cache with popular names",
)
async def warm_cache(services: Services) -> CacheWarmOut:
    summary = await services.cache.warm(
        services.origin,
        limit=services.settings.CACHE_WARM_LIMIT,
        ttl_seconds=services.settings.CACHE_WARM_TTL_SECONDS,
    )
    return CacheWarmOut(
        message="Cache warmed",
        loaded=summary.loaded,
        stored=summary.stored,
        outcome=summary.outcome.value,
    )


@router.post("/cache/clear", response_model=OperationOut, summary="Clear the cache")
async def clear_cache(services: Services) -> OperationOut:
    result = await services.cache.clear()
    return OperationOut(message="Cache cleared", outcome=result.outcome.value)


@router.post("/cache/clean", response_model=OperationOut, summary="Remove expired entries")
async def clean_cache(services: Services) -> OperationOut:
    result = await services.cache.clean_expired()
    return OperationOut(message="Expired entries removed", outcome=result.outcome.value)


# ── Rate limits ─────────────────────────────────────────────
@router.post(
    "/rate-limits/reset",
    response_model=OperationOut,
    summary="Reset one caller's rate limit counter",
)
async def reset_rate_limit(payload: RateLimitResetIn, services: Services) -> OperationOut:
    await services.rate_limiter.reset(payload.identifier)
    return OperationOut(message=f"Counter reset for {payload.identifier}", outcome="ok")
