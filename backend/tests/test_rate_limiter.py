from __future__ import annotations

import pytest

from app.core.config import Settings
from app.services.rate_limiter import (
    DatabaseRateLimitStore,
    MemoryRateLimitStore,
    RateLimiter,
    RateLimitExceeded,
    client_address,
    identify_client,
)
from app.services.tiers import Tier, build_tier_table

WINDOW = 3600


@pytest.fixture
def tiers():
    return build_tier_table(Settings(DATABASE_URL="sqlite+aiosqlite://"))


@pytest.fixture(params=["memory", "database"])
def store(request, clock, session_factory):
    if request.param == "memory":
        return MemoryRateLimitStore(WINDOW, clock=clock)
    return DatabaseRateLimitStore(session_factory, WINDOW, clock=clock)


@pytest.mark.asyncio
async def test_free_tier_admits_100_then_rejects(store, tiers, clock) -> None:
    limiter = RateLimiter(store, tiers, clock=clock)

    for expected_remaining in range(99, -1, -1):
        decision = await limiter.admit("ip:1.2.3.4", Tier.FREE)
        assert decision.allowed
        assert decision.remaining == expected_remaining

    last_allowed = decision
    assert last_allowed.headers["X-RateLimit-Remaining"] == "0"
    assert "Retry-After" not in last_allowed.headers

    clock.advance(600)
    rejected = await limiter.admit("ip:1.2.3.4", Tier.FREE)
    assert not rejected.allowed
    assert rejected.total_hits == 101
    assert rejected.retry_after == WINDOW - 600
    assert rejected.headers["Retry-After"] == str(WINDOW - 600)
    assert rejected.headers["X-RateLimit-Limit"] == "100"
    assert rejected.headers["X-RateLimit-Remaining"] == "0"


@pytest.mark.asyncio
async def test_new_window_resets_count_to_one(store, tiers, clock) -> None:
    limiter = RateLimiter(store, tiers, clock=clock)
    for _ in range(101):
        await limiter.admit("ip:1.2.3.4", Tier.FREE)

    clock.advance(WINDOW)
    decision = await limiter.admit("ip:1.2.3.4", Tier.FREE)

    assert decision.allowed
    assert decision.total_hits == 1
    assert decision.remaining == 99


@pytest.mark.asyncio
async def test_identifiers_are_counted_separately(store, tiers, clock) -> None:
    limiter = RateLimiter(store, tiers, clock=clock)
    for _ in range(100):
        await limiter.admit("ip:1.2.3.4", Tier.FREE)

    assert not (await limiter.admit("ip:1.2.3.4", Tier.FREE)).allowed
    assert (await limiter.admit("ip:5.6.7.8", Tier.FREE)).allowed


@pytest.mark.asyncio
async def test_paid_tier_uses_its_own_quota(store, tiers, clock) -> None:
    limiter = RateLimiter(store, tiers, clock=clock)

    decision = await limiter.admit("api:abc", Tier.BASIC)

    assert decision.limit == 1000
    assert decision.remaining == 999


@pytest.mark.asyncio
async def test_check_raises_with_decision(store, tiers, clock) -> None:
    limiter = RateLimiter(store, tiers, clock=clock)
    for _ in range(100):
        await limiter.check("ip:1.2.3.4", Tier.FREE)

    with pytest.raises(RateLimitExceeded) as excinfo:
        await limiter.check("ip:1.2.3.4", Tier.FREE)

    assert excinfo.value.decision.retry_after >= 1


@pytest.mark.asyncio
async def test_refund_and_reset(store, tiers, clock) -> None:
    limiter = RateLimiter(store, tiers, clock=clock)
    await limiter.admit("ip:1.2.3.4", Tier.FREE)
    await limiter.admit("ip:1.2.3.4", Tier.FREE)

    assert (await limiter.refund("ip:1.2.3.4")).ok
    assert (await limiter.admit("ip:1.2.3.4", Tier.FREE)).total_hits == 2

    await limiter.reset("ip:1.2.3.4")
    assert (await limiter.admit("ip:1.2.3.4", Tier.FREE)).total_hits == 1


@pytest.mark.asyncio
async def test_decrement_never_goes_below_zero(store, clock) -> None:
    await store.increment("ip:1.2.3.4")
    await store.decrement("ip:1.2.3.4")
    await store.decrement("ip:1.2.3.4")
    await store.decrement("ip:never-seen")

    assert (await store.increment("ip:1.2.3.4")).total_hits == 1


@pytest.mark.asyncio
async def test_memory_sweep_drops_elapsed_windows(clock) -> None:
    store = MemoryRateLimitStore(60, clock=clock)

    await store.increment("ip:a")
    clock.advance(61)
    await store.increment("ip:b")

    assert store.sweep() == 1
    assert (await store.increment("ip:b")).total_hits == 2


def test_tier_quotas_strictly_increase() -> None:
    table = build_tier_table(Settings(DATABASE_URL="sqlite+aiosqlite://"))

    quotas = [table[tier].requests for tier in Tier]
    assert quotas == [100, 1000, 10000, 100000]
    assert not Tier.FREE.is_paid
    assert all(tier.is_paid for tier in (Tier.BASIC, Tier.PREMIUM, Tier.ENTERPRISE))


def test_tier_table_rejects_non_increasing_quotas() -> None:
    settings = Settings(
        DATABASE_URL="sqlite+aiosqlite://",
        TIER_FREE_REQUESTS=500,
        TIER_BASIC_REQUESTS=500,
    )

    with pytest.raises(ValueError, match="strictly increasing"):
        build_tier_table(settings)


@pytest.mark.parametrize(
    ("api_key_id", "headers", "peer", "expected"),
    [
        ("k1", {"x-forwarded-for": "9.9.9.9"}, "1.1.1.1", "api:k1"),
        (None, {"cf-connecting-ip": "2.2.2.2", "x-forwarded-for": "3.3.3.3"}, None, "ip:2.2.2.2"),
        (None, {"x-forwarded-for": " 4.4.4.4 , 10.0.0.1"}, "1.1.1.1", "ip:4.4.4.4"),
        (None, {}, "1.1.1.1", "ip:1.1.1.1"),
        (None, {"x-forwarded-for": ", 10.0.0.1"}, "1.1.1.1", "ip:1.1.1.1"),
        (None, {"cf-connecting-ip": " ", "x-forwarded-for": "4.4.4.4"}, None, "ip:4.4.4.4"),
        (None, {}, None, "ip:unknown"),
    ],
)
def test_identify_client(api_key_id, headers, peer, expected) -> None:
    assert identify_client(api_key_id, headers, peer) == expected


@pytest.mark.parametrize(
    ("headers", "peer", "expected"),
    [
        ({"x-forwarded-for": ", 10.0.0.1"}, "1.1.1.1", "1.1.1.1"),
        ({"x-forwarded-for": ", 10.0.0.1"}, None, None),
        ({"cf-connecting-ip": " 2.2.2.2 "}, "1.1.1.1", "2.2.2.2"),
        ({}, None, None),
    ],
)
def test_client_address_skips_empty_candidates(headers, peer, expected) -> None:
    assert client_address(headers, peer) == expected


class _StaleReadStore(DatabaseRateLimitStore):
    """Reports a live window even though the row is already gone."""

    async def _window_reset(self, session, identifier):  # type: ignore[no-untyped-def]
        await super()._window_reset(session, identifier)
        return self._clock() + 60


@pytest.mark.asyncio
async def test_database_store_restarts_window_when_row_vanishes(session_factory, clock) -> None:
    store = _StaleReadStore(session_factory, WINDOW, clock=clock)

    hit = await store.increment("ip:1.2.3.4")

    assert hit.total_hits == 1
    assert hit.time_to_expire == WINDOW

    # The fallback left a real counter behind.
    plain = DatabaseRateLimitStore(session_factory, WINDOW, clock=clock)
    assert (await plain.increment("ip:1.2.3.4")).total_hits == 2
