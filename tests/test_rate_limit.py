"""Fixed window rate limiter tests."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from shortlink.config import Settings
from shortlink.rate_limit import ActorKey, RateLimiter


def test_actor_key_prefers_user() -> None:
    assert ActorKey.of("u-1", "10.0.0.1") == ActorKey.for_user("u-1")
    assert ActorKey.of(None, "10.0.0.1") == ActorKey.for_address("10.0.0.1")
    assert str(ActorKey.for_address(None)) == "ip:unknown"
    assert ActorKey.for_user("u-1").is_authenticated
    assert not ActorKey.for_address("10.0.0.1").is_authenticated


@pytest.mark.asyncio
async def test_allow_rejects_after_max(redis_client, settings: Settings) -> None:
    limiter = RateLimiter(redis_client, settings)

    decisions = [await limiter.allow("ip:1.2.3.4", window_seconds=60, max_requests=3) for _ in range(4)]

    assert [d.allowed for d in decisions] == [True, True, True, False]
    assert decisions[2].remaining == 0
    assert 0 < decisions[3].retry_after <= 60


@pytest.mark.asyncio
async def test_allow_resets_after_window(redis_client, settings: Settings) -> None:
    limiter = RateLimiter(redis_client, settings)

    for _ in range(2):
        assert (await limiter.allow("ip:5.6.7.8", window_seconds=1, max_requests=2)).allowed
    assert not (await limiter.allow("ip:5.6.7.8", window_seconds=1, max_requests=2)).allowed

    await asyncio.sleep(1.2)
    assert (await limiter.allow("ip:5.6.7.8", window_seconds=1, max_requests=2)).allowed


@pytest.mark.asyncio
async def test_window_is_not_extended_by_later_requests(redis_client, settings: Settings) -> None:
    limiter = RateLimiter(redis_client, settings)
    await limiter.allow("user:a", window_seconds=60, max_requests=10)
    first_ttl = await redis_client.ttl("rate:user:a")
    await limiter.allow("user:a", window_seconds=120, max_requests=10)
    assert await redis_client.ttl("rate:user:a") <= first_ttl


@pytest.mark.asyncio
async def test_actors_have_separate_budgets(redis_client, settings: Settings) -> None:
    limiter = RateLimiter(redis_client, settings)
    assert (await limiter.allow("ip:a", 60, 1)).allowed
    assert not (await limiter.allow("ip:a", 60, 1)).allowed
    assert (await limiter.allow("ip:b", 60, 1)).allowed


@pytest.mark.asyncio
async def test_allow_rejects_bad_arguments(redis_client, settings: Settings) -> None:
    limiter = RateLimiter(redis_client, settings)
    with pytest.raises(ValueError):
        await limiter.allow("ip:a", 0, 1)
    with pytest.raises(ValueError):
        await limiter.allow("ip:a", 60, 0)


@pytest.mark.asyncio
async def test_allow_fails_open_when_cache_is_down(settings: Settings) -> None:
    cache = AsyncMock()
    cache.pipeline = MagicMock(side_effect=RedisConnectionError("down"))
    limiter = RateLimiter(cache, settings)

    decision = await limiter.allow("ip:a", 60, 1)
    assert decision.allowed


@pytest.mark.asyncio
async def test_check_uses_tier_limits(redis_client) -> None:
    settings = Settings(RATE_LIMIT_ANON_MAX=1, RATE_LIMIT_USER_MAX=2, RATE_LIMIT_WINDOW_SECONDS=60)
    limiter = RateLimiter(redis_client, settings)

    anon = ActorKey.for_address("9.9.9.9")
    assert (await limiter.check(anon)).allowed
    assert not (await limiter.check(anon)).allowed

    user = ActorKey.for_user("u-1")
    assert (await limiter.check(user)).allowed
    assert (await limiter.check(user)).allowed
    assert not (await limiter.check(user)).allowed
