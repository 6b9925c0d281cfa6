from __future__ import annotations

import pytest
from sqlalchemy import select

from app.models.request_log import RequestLog
from app.services.cache import CacheManager, CacheOptions
from app.services.metrics import MetricsCollector
from app.services.names import NameRecord
from app.services.pipeline import (
    CONFIDENCE_CACHED,
    CONFIDENCE_NONE,
    CONFIDENCE_ORIGIN,
    LookupPipeline,
    LookupTimeout,
    RequestMeta,
)


@pytest.fixture
def cache(session_factory, clock) -> CacheManager:
    return CacheManager(session_factory, CacheOptions(prefix="shenasa"), clock=clock)


@pytest.fixture
def metrics(session_factory, clock) -> MetricsCollector:
    return MetricsCollector(session_factory, clock=clock)


def _pipeline(cache, origin, metrics, **kwargs) -> LookupPipeline:
    return LookupPipeline(cache, origin, metrics, **kwargs)


@pytest.mark.asyncio
async def test_cached_name_never_reaches_origin(cache, metrics, make_origin) -> None:
    origin = make_origin()
    pipeline = _pipeline(cache, origin, metrics)
    await cache.set("name:علی", {"gender": "MALE", "enName": "Ali"}, ttl_seconds=3600)

    result = await pipeline.lookup("علی")

    assert (result.gender, result.en_name, result.cache_status) == ("MALE", "Ali", "HIT")
    assert origin.calls == []
    await metrics.drain()


@pytest.mark.asyncio
async def test_miss_populates_cache_for_next_lookup(cache, metrics, make_origin) -> None:
    origin = make_origin()
    pipeline = _pipeline(cache, origin, metrics)

    first = await pipeline.lookup("زهرا")
    second = await pipeline.lookup("زهرا")

    assert (first.gender, first.en_name, first.cache_status) == ("FEMALE", "zahra", "MISS")
    assert second.cache_status == "HIT"
    assert origin.calls == ["زهرا"]
    await metrics.drain()


@pytest.mark.asyncio
async def test_unknown_name_is_cached_as_null(cache, metrics, make_origin) -> None:
    origin = make_origin()
    pipeline = _pipeline(cache, origin, metrics)

    first = await pipeline.lookup("ناشناخته")
    second = await pipeline.lookup("ناشناخته")

    assert not first.found
    assert (first.gender, first.en_name) == (None, None)
    assert second.cache_status == "HIT"
    assert origin.calls == ["ناشناخته"]
    await metrics.drain()


@pytest.mark.asyncio
async def test_lookup_writes_request_log(cache, metrics, make_origin, session_factory) -> None:
    pipeline = _pipeline(cache, make_origin(), metrics)

    await pipeline.lookup("علی", RequestMeta(ip_address="203.0.113.7", user_agent="pytest"))
    await metrics.drain()

    async with session_factory() as session:
        logs = (await session.execute(select(RequestLog))).scalars().all()

    assert len(logs) == 1
    assert (logs[0].requested_name, logs[0].status_code, logs[0].cache_status) == (
        "علی", 200, "MISS",
    )
    assert logs[0].ip_address == "203.0.113.7"


@pytest.mark.asyncio
async def test_lookup_times_out(cache, metrics, make_origin) -> None:
    pipeline = _pipeline(cache, make_origin(delay=1.0), metrics, timeout_seconds=0.05)

    with pytest.raises(LookupTimeout):
        await pipeline.lookup("علی")


@pytest.mark.asyncio
async def test_batch_isolates_failing_items(cache, metrics, make_origin) -> None:
    names = ["علی", "زهرا", "محمد", "فاطمه", "مریم"]
    origin = make_origin(failing={"زهرا", "مریم"})
    pipeline = _pipeline(cache, origin, metrics)

    batch = await pipeline.lookup_batch(names)

    assert batch.processed_count == 5
    assert batch.error_count == 2
    assert [item.name for item in batch.results] == names

    by_name = {item.name: item for item in batch.results}
    for failed in ("زهرا", "مریم"):
        assert (by_name[failed].gender, by_name[failed].confidence) == (None, CONFIDENCE_NONE)
    assert by_name["علی"].gender == "MALE"
    assert by_name["علی"].confidence == CONFIDENCE_ORIGIN
    assert by_name["علی"].popularity is None


@pytest.mark.asyncio
async def test_batch_confidence_reflects_source(cache, metrics, make_origin) -> None:
    pipeline = _pipeline(cache, make_origin(), metrics)
    await cache.set("name:علی", {"gender": "MALE", "enName": "ali", "popularity": 95})

    batch = await pipeline.lookup_batch(["علی", "حسن", "ناشناخته"], include_popularity=True)

    confidences = [item.confidence for item in batch.results]
    assert confidences == [CONFIDENCE_CACHED, CONFIDENCE_ORIGIN, CONFIDENCE_NONE]
    assert [item.popularity for item in batch.results] == [95, 70, 0]
    assert batch.error_count == 1

    # Resolved origin answers are cached; unknown names are not.
    assert (await cache.get("name:حسن")).hit
    assert not (await cache.get("name:ناشناخته")).hit


@pytest.mark.asyncio
async def test_batch_runs_in_bounded_chunks(cache, metrics, make_origin) -> None:
    records = [
        NameRecord(name="نام" + "ی" * i, gender="MALE", en_name=f"n{i}", popularity=i)
        for i in range(1, 26)
    ]
    origin = make_origin(records, delay=0.01)
    pipeline = _pipeline(cache, origin, metrics, chunk_size=10)

    batch = await pipeline.lookup_batch([record.name for record in records])

    assert batch.processed_count == 25
    assert batch.error_count == 0
    assert origin.max_in_flight <= 10
    assert len(origin.calls) == 25


@pytest.mark.asyncio
async def test_batch_times_out_as_a_whole(cache, metrics, make_origin) -> None:
    pipeline = _pipeline(cache, make_origin(delay=1.0), metrics, timeout_seconds=0.05)

    with pytest.raises(LookupTimeout):
        await pipeline.lookup_batch(["علی", "زهرا"])
