"""
Usage metrics — request logging and the aggregated summary.

Logging is fire-and-forget: `record()` schedules the insert as a
background task and returns immediately, so a slow or failing database
never delays a response. Pending writes are awaited on shutdown via
`drain()`.

All aggregation happens in SQL (COUNT / AVG / GROUP BY). Hour and day
buckets go through time_bucket() so the same query runs on SQLite and
Postgres.
"""

from __future__ import annotations

import asyncio
import datetime
import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.database import from_epoch, time_bucket
from app.core.results import OK, OpResult
from app.models.persian_name import PersianName
from app.models.request_log import RequestLog

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RequestRecord:
    requested_name: str
    status_code: int
    response_time_ms: int
    cache_status: str | None = None
    name_id: uuid.UUID | None = None
    api_key_id: uuid.UUID | None = None
    ip_address: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True, slots=True)
class MetricsSummary:
    since: datetime.datetime
    total_requests: int
    successful_requests: int
    failed_requests: int
    average_response_time_ms: float
    unique_names_count: int
    cache_hit_rate: float
    error_rate: float
    top_requested_names: list[tuple[str, int]]
    requests_by_hour: list[tuple[str, int]]
    uptime: str


@dataclass(frozen=True, slots=True)
class PopularName:
    name: str
    gender: str
    popularity: int
    request_count: int


@dataclass(frozen=True, slots=True)
class DailyTrend:
    date: str
    requests: int
    unique_names: int


@dataclass(frozen=True, slots=True)
class AnalyticsSummary:
    since: datetime.datetime
    until: datetime.datetime
    gender_distribution: dict[str, int]
    popular_names: list[PopularName]
    daily_trends: list[DailyTrend]


def format_uptime(seconds: float) -> str:
    """Render a duration as '1d 2h 3m 4s', dropping zero parts."""
    total = int(seconds)
    days, rest = divmod(total, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, secs = divmod(rest, 60)
    parts = [
        f"{value}{unit}"
        for value, unit in ((days, "d"), (hours, "h"), (minutes, "m"), (secs, "s"))
        if value > 0
    ]
    return " ".join(parts) or "0s"


class MetricsCollector:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock
        self._started = clock()
        self._pending: set[asyncio.Task[OpResult]] = set()

    def record(self, entry: RequestRecord) -> None:
        """Schedule a request-log write without waiting for it."""
        task = asyncio.create_task(self.log_request(entry))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def log_request(self, entry: RequestRecord) -> OpResult:
        row = RequestLog(
            requested_name=entry.requested_name[:255],
            name_id=entry.name_id,
            ip_address=entry.ip_address,
            user_agent=entry.user_agent[:512] if entry.user_agent else None,
            response_time_ms=entry.response_time_ms,
            status_code=entry.status_code,
            cache_status=entry.cache_status,
            api_key_id=entry.api_key_id,
            created_at=from_epoch(self._clock()),
        )
        try:
            async with self._session_factory() as session:
                session.add(row)
                await session.commit()
        except Exception as exc:
            logger.warning("Failed to log request for %r", entry.requested_name, exc_info=True)
            return OpResult.fatal(exc)
        return OK

    async def drain(self) -> None:
        """Wait for every scheduled write (shutdown, tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def summary(self, days: int = 7) -> MetricsSummary:
        since = from_epoch(self._clock()) - datetime.timedelta(days=days)
        window = RequestLog.created_at >= since

        async with self._session_factory() as session:
            total = await self._count(session, window)
            successful = await self._count(
                session, window, RequestLog.status_code >= 200, RequestLog.status_code < 300
            )
            failed = await self._count(session, window, RequestLog.status_code >= 400)
            cache_hits = await self._count(session, window, RequestLog.cache_status == "HIT")

            avg_stmt = select(func.avg(RequestLog.response_time_ms)).where(window)
            average = (await session.execute(avg_stmt)).scalar_one_or_none() or 0

            unique_stmt = select(func.count(func.distinct(RequestLog.requested_name))).where(window)
            unique_names = (await session.execute(unique_stmt)).scalar_one()

            count_col = func.count().label("count")
            top_stmt = (
                select(RequestLog.requested_name, count_col)
                .where(window)
                .group_by(RequestLog.requested_name)
                .order_by(count_col.desc(), RequestLog.requested_name)
                .limit(10)
            )
            top = [(name, count) for name, count in (await session.execute(top_stmt)).all()]

            hour = time_bucket(session, RequestLog.created_at, "hour").label("hour")
            hourly_stmt = (
                select(hour, func.count())
                .where(window)
                .group_by(hour)
                .order_by(hour)
            )
            by_hour = [(label, count) for label, count in (await session.execute(hourly_stmt)).all()]

        return MetricsSummary(
            since=since,
            total_requests=total,
            successful_requests=successful,
            failed_requests=failed,
            average_response_time_ms=round(float(average), 2),
            unique_names_count=unique_names,
            cache_hit_rate=round(cache_hits / total, 4) if total else 0.0,
            error_rate=round(failed / total, 4) if total else 0.0,
            top_requested_names=top,
            requests_by_hour=by_hour,
            uptime=self.uptime(),
        )

    def uptime(self) -> str:
        """Time since this collector (and so this process) started."""
        return format_uptime(self._clock() - self._started)

    async def analytics(
        self,
        start: datetime.datetime | None = None,
        end: datetime.datetime | None = None,
        limit: int = 50,
        *,
        default_days: int = 30,
    ) -> AnalyticsSummary:
        """
        Dataset and traffic breakdown for the window [start, end].

        end defaults to now and start to `default_days` before end.
        Raises ValueError if start falls after end.

        gender_distribution covers the whole name dataset; popular_names
        are the `limit` most popular names with the number of logged
        lookups that resolved to each inside the window; daily_trends
        buckets logged requests by UTC day.
        """
        end = end or from_epoch(self._clock())
        start = start or end - datetime.timedelta(days=default_days)
        if start > end:
            raise ValueError("startDate must not be after endDate")

        in_window = and_(RequestLog.created_at >= start, RequestLog.created_at <= end)

        async with self._session_factory() as session:
            gender_stmt = select(PersianName.gender, func.count()).group_by(PersianName.gender)
            by_gender = dict((await session.execute(gender_stmt)).all())

            request_count = func.count(RequestLog.id).label("request_count")
            popular_stmt = (
                select(
                    PersianName.name,
                    PersianName.gender,
                    PersianName.popularity,
                    request_count,
                )
                .outerjoin(RequestLog, and_(RequestLog.name_id == PersianName.id, in_window))
                .group_by(
                    PersianName.id,
                    PersianName.name,
                    PersianName.gender,
                    PersianName.popularity,
                )
                .order_by(PersianName.popularity.desc(), PersianName.name)
                .limit(limit)
            )
            popular = [
                PopularName(name=name, gender=gender, popularity=popularity, request_count=count)
                for name, gender, popularity, count in (await session.execute(popular_stmt)).all()
            ]

            day = time_bucket(session, RequestLog.created_at, "day").label("day")
            daily_stmt = (
                select(
                    day,
                    func.count(),
                    func.count(func.distinct(RequestLog.requested_name)),
                )
                .where(in_window)
                .group_by(day)
                .order_by(day)
            )
            trends = [
                DailyTrend(date=label, requests=requests, unique_names=unique)
                for label, requests, unique in (await session.execute(daily_stmt)).all()
            ]

        male = by_gender.pop("MALE", 0)
        female = by_gender.pop("FEMALE", 0)
        return AnalyticsSummary(
            since=start,
            until=end,
            gender_distribution={
                "male": male,
                "female": female,
                "unknown": sum(by_gender.values()),
            },
            popular_names=popular,
            daily_trends=trends,
        )

    @staticmethod
    async def _count(session: AsyncSession, *criteria) -> int:  # type: ignore[no-untyped-def]
        stmt = select(func.count()).select_from(RequestLog).where(*criteria)
        return (await session.execute(stmt)).scalar_one()
