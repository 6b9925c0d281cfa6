"""
Analytics router — dataset and traffic breakdown for PREMIUM and up.

GET /analytics?startDate=...&endDate=...&limit=50
  Window defaults to the last ANALYTICS_DEFAULT_DAYS days ending now.
  Naive timestamps are read as UTC.
"""

import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query

from app.auth.dependencies import CallerContext, Services
from app.auth.rate_limit import require_tier
from app.core.database import as_utc
from app.core.errors import InvalidRequest
from app.schemas.errors import error_responses
from app.schemas.metrics import (
    AnalyticsOut,
    DailyTrendOut,
    GenderDistributionOut,
    PopularNameOut,
)
from app.services.tiers import Tier

router = APIRouter(tags=["Metrics"])

PremiumCaller = Annotated[
    CallerContext,
    Depends(
        require_tier(
            Tier.PREMIUM,
            "Analytics access requires Premium or Enterprise API key",
            code=40302,
        )
    ),
]


@router.get(
    "/analytics",
    response_model=AnalyticsOut,
    summary="Dataset and traffic analytics",
    responses=error_responses(400, 401, 403, 429),
)
async def get_analytics(
    caller: PremiumCaller,
    services: Services,
    start_date: Annotated[datetime.datetime | None, Query(alias="startDate")] = None,
    end_date: Annotated[datetime.datetime | None, Query(alias="endDate")] = None,
    limit: Annotated[int, Query(ge=1, le=100)] = 50,
) -> AnalyticsOut:
    try:
        summary = await services.metrics.analytics(
            as_utc(start_date) if start_date else None,
            as_utc(end_date) if end_date else None,
            limit,
            default_days=services.settings.ANALYTICS_DEFAULT_DAYS,
        )
    except ValueError as exc:
        await services.rate_limiter.refund(caller.identifier)
        raise InvalidRequest(str(exc)) from exc

    return AnalyticsOut(
        since=summary.since,
        until=summary.until,
        gender_distribution=GenderDistributionOut(**summary.gender_distribution),
        popular_names=[
            PopularNameOut(
                name=item.name,
                gender=item.gender,
                count=item.request_count,
                popularity=item.popularity,
            )
            for item in summary.popular_names
        ],
        daily_trends=[
            DailyTrendOut(date=item.date, requests=item.requests, unique_names=item.unique_names)
            for item in summary.daily_trends
        ],
    )
