"""
Metrics router — usage summary for paid callers.

GET /metrics?days=7
  Aggregates request_logs over the last `days` days (SQL-side) and
  attaches this process's cache counters and uptime.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from app.auth.dependencies import CallerContext, Services
from app.auth.rate_limit import require_paid_tier
from app.schemas.errors import error_responses
from app.schemas.metrics import CacheStatsOut, HourCountOut, MetricsOut, NameCountOut

router = APIRouter(tags=["Metrics"])

PaidCaller = Annotated[
    CallerContext,
    Depends(require_paid_tier("Metrics access requires a paid API key", code=40301)),
]


@router.get(
    "/metrics",
    response_model=MetricsOut,
    summary="Usage metrics",
    responses=error_responses(401, 403, 429),
)
async def get_metrics(
    _caller: PaidCaller,
    services: Services,
    days: Annotated[int | None, Query(ge=1, le=90)] = None,
) -> MetricsOut:
    summary = await services.metrics.summary(days or services.settings.METRICS_DEFAULT_DAYS)

    return MetricsOut(
        since=summary.since,
        total_requests=summary.total_requests,
        successful_requests=summary.successful_requests,
        failed_requests=summary.failed_requests,
        average_response_time=summary.average_response_time_ms,
        unique_names_count=summary.unique_names_count,
        cache_hit_rate=summary.cache_hit_rate,
        error_rate=summary.error_rate,
        top_requested_names=[
            NameCountOut(name=name, count=count) for name, count in summary.top_requested_names
        ],
        requests_by_hour=[
            HourCountOut(hour=hour, count=count) for hour, count in summary.requests_by_hour
        ],
        uptime=summary.uptime,
        cache=CacheStatsOut(**services.cache.stats()),
    )
