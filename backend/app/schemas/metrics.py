"""
Pydantic v2 schemas for usage metrics, analytics and health.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class NameCountOut(_CamelModel):
    name: str
    count: int


class CacheStatsOut(_CamelModel):
    memory_hits: int
    store_hits: int
    misses: int
    store_errors: int
    memory_entries: int


class HourCountOut(_CamelModel):
    hour: str
    count: int


class MetricsOut(_CamelModel):
    since: datetime
    total_requests: int
    successful_requests: int
    failed_requests: int
    average_response_time: float
    unique_names_count: int
    cache_hit_rate: float
    error_rate: float
    top_requested_names: list[NameCountOut]
    requests_by_hour: list[HourCountOut]
    uptime: str
    cache: CacheStatsOut


class GenderDistributionOut(_CamelModel):
    male: int
    female: int
    unknown: int


class PopularNameOut(_CamelModel):
    name: str
    gender: str
    count: int
    popularity: int


class DailyTrendOut(_CamelModel):
    date: str
    requests: int
    unique_names: int


class AnalyticsOut(_CamelModel):
    since: datetime
    until: datetime
    gender_distribution: GenderDistributionOut
    popular_names: list[PopularNameOut]
    daily_trends: list[DailyTrendOut]


class CheckOut(_CamelModel):
    status: Literal["pass", "fail"]
    response_time: int


class HealthOut(_CamelModel):
    status: Literal["healthy", "degraded", "unhealthy"]
    timestamp: datetime
    version: str
    checks: dict[str, CheckOut]
