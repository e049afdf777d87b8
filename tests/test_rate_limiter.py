"""Tests for the tiered fixed-window rate limiter."""

import asyncio

import pytest

from apirelay.proxy.config import RateLimitTier, default_tiers
from apirelay.proxy.rate_limiter import RateLimiter

CLIENT = "198.51.100.20"


@pytest.fixture
def limiter(clock):
    return RateLimiter(tiers=default_tiers(), clock=clock)


@pytest.mark.asyncio
async def test_hundred_pass_then_limited_then_reset(limiter, clock):
    for i in range(100):
        result = await limiter.admit("api", CLIENT)
        assert result.allowed, f"request {i + 1} should pass"

    limited = await limiter.admit("api", CLIENT)
    assert limited.allowed is False
    assert limited.remaining == 0
    assert limited.retry_after_seconds == 15 * 60

    clock.advance(15 * 60)

    assert (await limiter.admit("api", CLIENT)).allowed is True


@pytest.mark.asyncio
async def test_retry_after_counts_down(limiter, clock):
    for _ in range(10):
        await limiter.admit("burst", CLIENT)

    clock.advance(7.5)
    limited = await limiter.admit("burst", CLIENT)

    assert limited.allowed is False
    assert limited.retry_after_seconds == 3


@pytest.mark.asyncio
async def test_clients_and_tiers_are_independent(limiter):
    for _ in range(5):
        await limiter.admit("login", CLIENT)

    assert (await limiter.admit("login", CLIENT)).allowed is False
    assert (await limiter.admit("login", "198.51.100.21")).allowed is True
    assert (await limiter.admit("strict", CLIENT)).allowed is True


@pytest.mark.asyncio
async def test_concurrent_admissions_never_overshoot(clock):
    limiter = RateLimiter(tiers=[RateLimitTier("t", 60, 20)], clock=clock)

    results = await asyncio.gather(*(limiter.admit("t", CLIENT) for _ in range(50)))

    assert sum(1 for r in results if r.allowed) == 20


@pytest.mark.asyncio
async def test_headers(limiter, clock):
    ok = await limiter.admit("strict", CLIENT)
    headers = ok.headers(clock())

    assert headers == {
        "RateLimit-Limit": "30",
        "RateLimit-Remaining": "29",
        "RateLimit-Reset": "60",
    }

    for _ in range(29):
        await limiter.admit("strict", CLIENT)
    limited = await limiter.admit("strict", CLIENT)

    assert limited.headers(clock())["Retry-After"] == "60"


@pytest.mark.asyncio
async def test_peek_does_not_count(limiter):
    assert limiter.peek("login", CLIENT) is None

    await limiter.admit("login", CLIENT)
    for _ in range(3):
        standing = limiter.peek("login", CLIENT)

    assert standing.allowed is True
    assert standing.remaining == 4


@pytest.mark.asyncio
async def test_unknown_tier_raises(limiter):
    with pytest.raises(KeyError):
        await limiter.admit("nope", CLIENT)


@pytest.mark.asyncio
async def test_sweep_drops_elapsed_buckets(limiter, clock):
    await limiter.admit("burst", CLIENT)
    await limiter.admit("api", CLIENT)

    clock.advance(11)

    assert await limiter.sweep() == 1
    assert limiter.get_stats()["active_buckets"] == 1
