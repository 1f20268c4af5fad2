"""Durable store adapter tests against a temporary SQLite database."""

import asyncio
import datetime
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from shortlink.exceptions import ConflictError, InvalidPatchError, StoreUnavailableError
from shortlink.models import ShortLink, utcnow
from shortlink.store import LinkStore


def _link(code: str = "abc123", **kwargs) -> ShortLink:
    return ShortLink.new(code=code, target="https://example.com/page", retention_days=30, **kwargs)


@pytest.mark.asyncio
async def test_insert_and_find(store: LinkStore) -> None:
    await store.insert(_link())
    found = await store.find_by_code("abc123")
    assert found is not None
    assert found.target == "https://example.com/page"
    assert found.click_count == 0
    assert await store.exists("abc123")
    assert not await store.exists("other1")


@pytest.mark.asyncio
async def test_insert_duplicate_code_conflicts(store: LinkStore) -> None:
    await store.insert(_link())
    with pytest.raises(ConflictError):
        await store.insert(_link())


@pytest.mark.asyncio
async def test_find_resolvable_filters_inactive_and_expired(store: LinkStore) -> None:
    now = utcnow()
    await store.insert(_link("live01"))
    await store.insert(_link("expired1", expires_at=now + datetime.timedelta(seconds=1)))
    await store.insert(_link("off001"))
    await store.update_fields("off001", {"active": False})

    assert await store.find_resolvable("live01") is not None
    assert await store.find_resolvable("off001") is None
    assert await store.find_resolvable("expired1", now + datetime.timedelta(seconds=5)) is None


@pytest.mark.asyncio
async def test_concurrent_increments_are_not_lost(store: LinkStore) -> None:
    await store.insert(_link())
    results = await asyncio.gather(*(store.increment_clicks("abc123") for _ in range(10)))
    assert all(results)
    assert (await store.find_by_code("abc123")).click_count == 10


@pytest.mark.asyncio
async def test_increment_unknown_code(store: LinkStore) -> None:
    assert await store.increment_clicks("missing") is False
    with pytest.raises(ValueError):
        await store.increment_clicks("missing", 0)


@pytest.mark.asyncio
async def test_update_fields_merges_metadata(store: LinkStore) -> None:
    await store.insert(_link(meta={"campaign": "spring"}))
    updated = await store.update_fields("abc123", {"meta": {"owner": "ops"}, "target": "https://example.org"})
    assert updated.meta == {"campaign": "spring", "owner": "ops"}
    assert updated.target == "https://example.org"


@pytest.mark.asyncio
async def test_update_fields_rejects_unknown_fields(store: LinkStore) -> None:
    await store.insert(_link())
    with pytest.raises(InvalidPatchError):
        await store.update_fields("abc123", {"click_count": 99})
    assert await store.update_fields("missing", {"active": False}) is None


@pytest.mark.asyncio
async def test_delete(store: LinkStore) -> None:
    await store.insert(_link())
    removed = await store.delete("abc123")
    assert removed.code == "abc123"
    assert await store.find_by_code("abc123") is None
    assert await store.delete("abc123") is None


@pytest.mark.asyncio
async def test_purge_expired_respects_limit(store: LinkStore) -> None:
    soon = utcnow() + datetime.timedelta(seconds=1)
    for i in range(3):
        await store.insert(_link(f"old{i:03d}", owner_id="u-1", expires_at=soon))
    await store.insert(_link("keep01"))

    later = utcnow() + datetime.timedelta(minutes=1)
    first = await store.purge_expired(later, limit=2)
    second = await store.purge_expired(later, limit=2)

    assert len(first) == 2
    assert len(second) == 1
    assert all(owner == "u-1" for _, owner in first + second)
    assert await store.exists("keep01")


@pytest.mark.asyncio
async def test_connection_failure_is_store_unavailable() -> None:
    factory = MagicMock(side_effect=OperationalError("SELECT 1", {}, Exception("connection refused")))
    store = LinkStore(factory)
    with pytest.raises(StoreUnavailableError) as exc_info:
        await store.find_by_code("abc123")
    assert exc_info.value.operation == "find_by_code"
