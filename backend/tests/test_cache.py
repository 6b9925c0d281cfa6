from __future__ import annotations

import pytest
from sqlalchemy import select

from app.core.results import Outcome
from app.models.cache_entry import CacheEntry
from app.services.cache import CacheManager, CacheOptions


class _BrokenSession:
    async def __aenter__(self):
        raise ConnectionError("database unavailable")

    async def __aexit__(self, *exc_info) -> bool:
        return False


def _broken_factory() -> _BrokenSession:
    return _BrokenSession()


async def _stored_keys(session_factory) -> set[str]:
    async with session_factory() as session:
        return set((await session.execute(select(CacheEntry.key))).scalars())


@pytest.mark.asyncio
async def test_get_after_set_returns_value_until_ttl(session_factory, clock) -> None:
    cache = CacheManager(session_factory, CacheOptions(prefix="shenasa"), clock=clock)

    result = await cache.set("name:علی", {"gender": "MALE", "enName": "ali"}, ttl_seconds=60)
    assert result.ok

    lookup = await cache.get("name:علی")
    assert lookup.hit
    assert lookup.value == {"gender": "MALE", "enName": "ali"}
    assert lookup.source == "memory"

    clock.advance(61)
    assert not (await cache.get("name:علی")).hit


@pytest.mark.asyncio
async def test_set_is_idempotent_and_upserts(session_factory, clock) -> None:
    cache = CacheManager(session_factory, CacheOptions(prefix="shenasa"), clock=clock)

    await cache.set("k", {"v": 1})
    await cache.set("k", {"v": 1})
    await cache.set("k", {"v": 2})

    assert (await cache.get("k")).value == {"v": 2}
    assert await _stored_keys(session_factory) == {"shenasa:k"}


@pytest.mark.asyncio
async def test_negative_ttl_is_stored_but_never_served(session_factory, clock) -> None:
    cache = CacheManager(session_factory, CacheOptions(prefix="shenasa"), clock=clock)

    await cache.set("gone", {"v": 1}, ttl_seconds=-1)

    assert not (await cache.get("gone")).hit
    assert await _stored_keys(session_factory) == {"shenasa:gone"}


@pytest.mark.asyncio
async def test_store_hit_is_promoted_to_memory(session_factory, clock) -> None:
    writer = CacheManager(session_factory, CacheOptions(prefix="shenasa"), clock=clock)
    await writer.set("name:زهرا", {"gender": "FEMALE"}, ttl_seconds=600)

    # Fresh instance: empty L1, same L2 (e.g. after a restart).
    reader = CacheManager(session_factory, CacheOptions(prefix="shenasa"), clock=clock)

    first = await reader.get("name:زهرا")
    second = await reader.get("name:زهرا")

    assert (first.hit, first.source) == (True, "store")
    assert (second.hit, second.source) == (True, "memory")
    assert reader.stats()["store_hits"] == 1
    assert reader.stats()["memory_hits"] == 1


@pytest.mark.asyncio
async def test_expired_store_entry_is_a_miss(session_factory, clock) -> None:
    writer = CacheManager(session_factory, CacheOptions(prefix="shenasa"), clock=clock)
    await writer.set("k", {"v": 1}, ttl_seconds=10)
    clock.advance(11)

    reader = CacheManager(session_factory, CacheOptions(prefix="shenasa"), clock=clock)
    lookup = await reader.get("k")

    assert not lookup.hit
    assert lookup.outcome is Outcome.OK


@pytest.mark.asyncio
async def test_prefixes_isolate_caches_sharing_a_store(session_factory, clock) -> None:
    names = CacheManager(session_factory, CacheOptions(prefix="names"), clock=clock)
    other = CacheManager(session_factory, CacheOptions(prefix="other"), clock=clock)

    await names.set("k", "from-names")
    await other.set("k", "from-other")

    assert (await names.get("k")).value == "from-names"
    assert (await other.get("k")).value == "from-other"

    await names.clear()

    assert not (await names.get("k")).hit
    assert (await other.get("k")).value == "from-other"
    assert await _stored_keys(session_factory) == {"other:k"}


@pytest.mark.asyncio
async def test_delete_is_idempotent(session_factory, clock) -> None:
    cache = CacheManager(session_factory, CacheOptions(prefix="shenasa"), clock=clock)
    await cache.set("k", 1)

    assert (await cache.delete("k")).ok
    assert (await cache.delete("k")).ok
    assert not (await cache.get("k")).hit


@pytest.mark.asyncio
async def test_clean_expired_removes_only_elapsed_entries(session_factory, clock) -> None:
    cache = CacheManager(session_factory, CacheOptions(prefix="shenasa"), clock=clock)
    await cache.set("short", 1, ttl_seconds=5)
    await cache.set("long", 2, ttl_seconds=500)
    clock.advance(10)

    assert (await cache.clean_expired()).ok

    assert await _stored_keys(session_factory) == {"shenasa:long"}
    assert cache.stats()["memory_entries"] == 1


@pytest.mark.asyncio
async def test_memory_tier_is_bounded(session_factory, clock) -> None:
    cache = CacheManager(
        session_factory,
        CacheOptions(prefix="shenasa", max_memory_entries=2),
        clock=clock,
    )
    for key in ("a", "b", "c"):
        await cache.set(key, key)

    assert cache.stats()["memory_entries"] == 2
    # Evicted from memory, still served from the store.
    assert (await cache.get("a")).source == "store"


@pytest.mark.asyncio
async def test_store_failure_degrades_instead_of_raising(clock) -> None:
    cache = CacheManager(_broken_factory, CacheOptions(prefix="shenasa"), clock=clock)

    write = await cache.set("k", {"v": 1})
    assert write.outcome is Outcome.DEGRADED
    assert "database unavailable" in (write.error or "")

    # L1 still holds the value.
    assert (await cache.get("k")).value == {"v": 1}

    miss = await cache.get("missing")
    assert not miss.hit
    assert miss.outcome is Outcome.DEGRADED
    assert cache.stats()["store_errors"] == 2

    assert (await cache.clear()).outcome is Outcome.DEGRADED


@pytest.mark.asyncio
async def test_warm_loads_popular_names(session_factory, clock, make_origin) -> None:
    cache = CacheManager(session_factory, CacheOptions(prefix="shenasa"), clock=clock)
    origin = make_origin()

    summary = await cache.warm(origin, limit=3, ttl_seconds=7200)

    assert (summary.loaded, summary.stored, summary.outcome) == (3, 3, Outcome.OK)
    assert await _stored_keys(session_factory) == {
        "shenasa:name:محمد",
        "shenasa:name:علی",
        "shenasa:name:فاطمه",
    }

    clock.advance(3601)
    lookup = await cache.get("name:علی")
    assert lookup.hit
    assert lookup.value == {"gender": "MALE", "enName": "ali", "popularity": 95}


@pytest.mark.asyncio
async def test_warm_reports_failure_when_origin_is_down(session_factory, clock) -> None:
    class DownOrigin:
        async def top_popular(self, limit: int):
            raise RuntimeError("origin offline")

    cache = CacheManager(session_factory, CacheOptions(prefix="shenasa"), clock=clock)
    summary = await cache.warm(DownOrigin())

    assert (summary.loaded, summary.stored, summary.outcome) == (0, 0, Outcome.FATAL)
