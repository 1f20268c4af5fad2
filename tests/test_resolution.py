"""Resolution cache tests: cache-aside reads, write-through, invalidation and degradation."""

import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from shortlink.clicks import ClickAccountant
from shortlink.config import Settings
from shortlink.enums import CacheStatus
from shortlink.models import ShortLink, utcnow
from shortlink.redis import owner_url_key, url_key
from shortlink.resolution import ResolutionCache
from shortlink.schemas import CachedTarget
from shortlink.store import LinkStore
from shortlink.tasks import TaskRunner


def _resolution(cache, store: LinkStore, tasks: TaskRunner, settings: Settings) -> ResolutionCache:
    clicks = ClickAccountant(cache, store, tasks, settings)
    return ResolutionCache(cache, store, clicks, settings)


def _link(code: str = "abc123", **kwargs) -> ShortLink:
    return ShortLink.new(code=code, target="https://example.com/page", retention_days=30, **kwargs)


@pytest.mark.asyncio
async def test_round_trip(redis_client, store, tasks, settings) -> None:
    resolution = _resolution(redis_client, store, tasks, settings)
    link = await resolution.write(_link())

    resolved = await resolution.resolve(link.code)
    assert resolved.target == "https://example.com/page"
    assert resolved.cache_status is CacheStatus.HIT


@pytest.mark.asyncio
async def test_unknown_code_is_none(redis_client, store, tasks, settings) -> None:
    resolution = _resolution(redis_client, store, tasks, settings)
    assert await resolution.resolve("nothere") is None


@pytest.mark.asyncio
async def test_miss_populates_cache(redis_client, store, tasks, settings) -> None:
    resolution = _resolution(redis_client, store, tasks, settings)
    await store.insert(_link())

    first = await resolution.resolve("abc123")
    second = await resolution.resolve("abc123")

    assert first.cache_status is CacheStatus.MISS
    assert second.cache_status is CacheStatus.HIT
    assert await redis_client.get(url_key("abc123")) is not None


@pytest.mark.asyncio
async def test_owned_links_get_owner_scoped_entry_and_longer_ttl(redis_client, store, tasks, settings) -> None:
    resolution = _resolution(redis_client, store, tasks, settings)
    await resolution.write(_link(owner_id="u-1"))
    await resolution.write(_link("anon01"))

    assert await redis_client.exists(owner_url_key("u-1", "abc123"))
    assert await redis_client.ttl(url_key("abc123")) > await redis_client.ttl(url_key("anon01"))


def test_ttl_never_outlives_the_link(redis_client, store, tasks, settings) -> None:
    resolution = _resolution(redis_client, store, tasks, settings)
    now = utcnow()
    assert resolution.ttl_for(None, now + datetime.timedelta(seconds=90), now) == 90
    assert resolution.ttl_for("u-1", now + datetime.timedelta(days=365), now) == settings.CACHE_TTL_OWNER_SECONDS
    assert resolution.ttl_for(None, now - datetime.timedelta(seconds=5), now) == 1


@pytest.mark.asyncio
async def test_invalidate_then_resolve_never_returns_stale_target(redis_client, store, tasks, settings) -> None:
    resolution = _resolution(redis_client, store, tasks, settings)
    await resolution.write(_link(owner_id="u-1"))
    await store.update_fields("abc123", {"target": "https://example.org/new"})

    assert (await resolution.resolve("abc123")).target == "https://example.com/page"
    assert await resolution.invalidate("abc123")
    assert not await redis_client.exists(owner_url_key("u-1", "abc123"))
    assert (await resolution.resolve("abc123")).target == "https://example.org/new"


@pytest.mark.asyncio
async def test_apply_replaces_cached_target(redis_client, store, tasks, settings) -> None:
    resolution = _resolution(redis_client, store, tasks, settings)
    await resolution.write(_link())

    await resolution.apply("abc123", {"target": "https://example.org/moved"})
    assert (await resolution.resolve("abc123")).target == "https://example.org/moved"


@pytest.mark.asyncio
async def test_apply_deactivation_drops_cache_entry(redis_client, store, tasks, settings) -> None:
    resolution = _resolution(redis_client, store, tasks, settings)
    await resolution.write(_link())

    await resolution.apply("abc123", {"active": False})
    assert await redis_client.get(url_key("abc123")) is None
    assert await resolution.resolve("abc123") is None


@pytest.mark.asyncio
async def test_miss_populate_does_not_replace_newer_entry(redis_client, store, tasks, settings) -> None:
    resolution = _resolution(redis_client, store, tasks, settings)
    stale = await store.insert(_link())
    fresh = CachedTarget(code="abc123", target="https://example.org/fresh", expires_at=stale.expires_at)
    await redis_client.set(url_key("abc123"), fresh.model_dump_json())

    assert not await resolution.populate(stale, only_if_absent=True)
    assert CachedTarget.model_validate_json(await redis_client.get(url_key("abc123"))).target.endswith("/fresh")


@pytest.mark.asyncio
async def test_miss_drops_entry_when_target_changes_during_read(redis_client, store, tasks, settings, monkeypatch) -> None:
    resolution = _resolution(redis_client, store, tasks, settings)
    await store.insert(_link())
    read = store.find_resolvable

    async def read_then_retarget(code, now=None):
        link = await read(code, now)
        monkeypatch.setattr(store, "find_resolvable", read)
        await store.update_fields(code, {"target": "https://example.org/moved"})
        return link

    monkeypatch.setattr(store, "find_resolvable", read_then_retarget)

    assert (await resolution.resolve("abc123")).target == "https://example.com/page"
    assert await redis_client.get(url_key("abc123")) is None
    assert (await resolution.resolve("abc123")).target == "https://example.org/moved"


@pytest.mark.asyncio
async def test_expired_payload_is_treated_as_miss(redis_client, store, tasks, settings) -> None:
    resolution = _resolution(redis_client, store, tasks, settings)
    payload = CachedTarget(
        code="gone01",
        target="https://example.com/old",
        expires_at=utcnow() - datetime.timedelta(minutes=1),
    )
    await redis_client.set(url_key("gone01"), payload.model_dump_json())

    assert await resolution.resolve("gone01") is None
    assert await redis_client.get(url_key("gone01")) is None


@pytest.mark.asyncio
async def test_corrupt_payload_is_dropped(redis_client, store, tasks, settings) -> None:
    resolution = _resolution(redis_client, store, tasks, settings)
    await store.insert(_link())
    await redis_client.set(url_key("abc123"), "{not json")

    resolved = await resolution.resolve("abc123")
    assert resolved.target == "https://example.com/page"
    assert resolved.cache_status is CacheStatus.MISS


@pytest.mark.asyncio
async def test_cache_outage_degrades_to_store(store, tasks, settings) -> None:
    cache = AsyncMock()
    cache.get.side_effect = RedisConnectionError("down")
    cache.pipeline = MagicMock(side_effect=RedisConnectionError("down"))
    resolution = _resolution(cache, store, tasks, settings)
    await store.insert(_link())

    resolved = await resolution.resolve("abc123")

    assert resolved.target == "https://example.com/page"
    assert resolved.cache_status is CacheStatus.DEGRADED
    assert (await store.find_by_code("abc123")).click_count == 1


@pytest.mark.asyncio
async def test_cache_write_failure_does_not_fail_write(store, tasks, settings) -> None:
    cache = AsyncMock()
    cache.pipeline = MagicMock(side_effect=RedisConnectionError("down"))
    resolution = _resolution(cache, store, tasks, settings)

    link = await resolution.write(_link())

    assert link.code == "abc123"
    assert await store.exists("abc123")
