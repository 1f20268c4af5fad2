"""Resolution cache: cache-aside reads with the durable store as source of truth.

URL Lookup & Redirect Flow
---------------------------
::
    ┌─────────────┐
    │ resolve(code)│
    └──────┬──────┘
           ▼
    ┌─────────────┐  error / timeout
    │ GET url:code │──────────────────┐ (degraded)
    └──────┬──────┘                   │
    HIT?  │                          │
    ┌─────┴─────┐                    │
    │ YES        │ NO                 │
    ▼            ▼                    ▼
┌─────────┐  ┌──────────────────────────────┐
│ EXPIRE  │  │ store.find_resolvable(code)   │
│ (slide) │  └──────┬──────────────┬────────┘
└────┬────┘         │ found        │ absent
     ▼              ▼              ▼
┌─────────┐  ┌─────────────┐   NotFound
│ record_ │  │ SET NX url: │
│ hit     │  │ record_miss │
└────┬────┘  └──────┬──────┘
     ▼              ▼
     └─────┬────────┘
           ▼
       Resolved(target)

Key Behaviours
===============
- Cache payloads carry the link's ``expires_at``; an entry never outlives its
  link and an expired payload is treated as a miss.
- TTL depends on ownership: owned links stay cached longer than anonymous ones.
- ``write`` and ``apply`` change the durable store first, then the cache.
  Cache failures after a successful durable write are logged, never raised.
- The miss path populates with ``SET NX`` so it cannot replace a newer entry
  written by ``write``/``apply`` while the durable read was in flight. After
  a successful populate it re-reads the store and drops the entry if the link
  was deactivated or changed in the meantime.
- ``invalidate`` deletes ``url:<code>`` and the owner-scoped duplicate in one
  command.
- A cache error on the read path degrades to the durable store instead of
  failing the resolution.
"""

import datetime
import logging
import time
from dataclasses import dataclass
from typing import Any

import redis.asyncio as redis
from pydantic import ValidationError
from redis.exceptions import RedisError

from shortlink.clicks import ClickAccountant, Visit
from shortlink.config import Settings
from shortlink.enums import CacheStatus, RequestStatus
from shortlink.exceptions import StoreUnavailableError
from shortlink.metrics import CACHE_ERRORS_TOTAL, RESOLUTION_DURATION, RESOLUTION_REQUESTS_TOTAL
from shortlink.models import ShortLink, as_utc, utcnow
from shortlink.redis import owner_url_key, url_key
from shortlink.schemas import CachedTarget
from shortlink.store import LinkStore

__all__ = ["ResolvedLink", "ResolutionCache"]


@dataclass(frozen=True)
class ResolvedLink:
    code: str
    target: str
    cache_status: CacheStatus


class ResolutionCache:
    """Cache-aside lookups of ``code -> target`` in front of ``LinkStore``.

    Example:
        >>> cache = ResolutionCache(redis_client, store, clicks, settings)
        >>> await cache.write(ShortLink.new(code="abc123", target="https://example.com", retention_days=30))
        >>> resolved = await cache.resolve("abc123")
        >>> resolved.target
        'https://example.com'
    """

    def __init__(
        self,
        cache: redis.Redis,
        store: LinkStore,
        clicks: ClickAccountant,
        settings: Settings,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ):
        self._cache = cache
        self._store = store
        self._clicks = clicks
        self._settings = settings
        self._logger = logger or logging.getLogger("shortlink.resolution")

    # ========================================================================
    # PUBLIC API METHODS
    # ========================================================================

    async def resolve(self, code: str, visit: Visit | None = None) -> ResolvedLink | None:
        """Return the target for ``code``, or None when it is unknown, inactive or expired.

        Raises:
            StoreUnavailableError: the cache missed and the durable store failed.
        """
        start_time = time.perf_counter()
        now = utcnow()

        cached, status = await self._lookup(code, now)
        if cached is not None:
            await self._touch(cached, now)
            await self._clicks.record_hit(code, visit)
            self._observe(start_time, RequestStatus.SUCCESS, CacheStatus.HIT)
            return ResolvedLink(code=code, target=cached.target, cache_status=CacheStatus.HIT)

        link = await self._store.find_resolvable(code, now)
        if link is None:
            self._observe(start_time, RequestStatus.NOT_FOUND, status)
            self._logger.debug(f"Resolution miss for unknown or inactive code {code}")
            return None

        if status is not CacheStatus.DEGRADED and await self.populate(link, now, only_if_absent=True):
            await self._recheck(link, now)
        await self._clicks.record_miss(code, visit)
        self._observe(start_time, RequestStatus.SUCCESS, status)
        return ResolvedLink(code=code, target=link.target, cache_status=status)

    async def write(self, link: ShortLink) -> ShortLink:
        """Insert ``link`` durably, then cache it. ``ConflictError`` from the insert propagates."""
        link = await self._store.insert(link)
        await self.populate(link)
        return link

    async def apply(self, code: str, patch: dict[str, Any]) -> ShortLink | None:
        """Update fields durably, then replace or drop every cache entry derived from ``code``."""
        link = await self._store.update_fields(code, patch)
        if link is None:
            return None
        if not (link.is_resolvable() and await self.populate(link)):
            await self.invalidate(code, link.owner_id)
        return link

    async def invalidate(self, code: str, owner_key: str | None = None) -> bool:
        """Delete ``url:<code>`` and its owner-scoped duplicate. Returns False if the cache failed."""
        try:
            if owner_key is None:
                owner_key = await self._cached_owner(code)
            keys = [url_key(code)]
            if owner_key is not None:
                keys.append(owner_url_key(owner_key, code))
            await self._cache.delete(*keys)
            return True
        except (RedisError, TimeoutError) as exc:
            CACHE_ERRORS_TOTAL.labels(operation="invalidate").inc()
            self._logger.error(f"Cache invalidation failed for {code}, entry may be stale for one TTL: {exc}")
            return False

    async def populate(self, link: ShortLink, now: datetime.datetime | None = None, only_if_absent: bool = False) -> bool:
        """Best-effort cache write for a resolvable link. Returns True only if ``url:<code>`` was written."""
        now = now or utcnow()
        if not link.is_resolvable(now):
            return False
        payload = CachedTarget.model_validate(link).model_dump_json()
        ttl = self.ttl_for(link.owner_id, link.expires_at, now)
        try:
            async with self._cache.pipeline(transaction=False) as pipe:
                pipe.set(url_key(link.code), payload, ex=ttl, nx=only_if_absent)
                if link.owner_id is not None:
                    pipe.set(owner_url_key(link.owner_id, link.code), payload, ex=ttl, nx=only_if_absent)
                results = await pipe.execute()
            return bool(results[0])
        except (RedisError, TimeoutError) as exc:
            CACHE_ERRORS_TOTAL.labels(operation="populate").inc()
            self._logger.warning(f"Cache population failed for {link.code}: {exc}")
            return False

    def ttl_for(self, owner_id: str | None, expires_at: datetime.datetime, now: datetime.datetime | None = None) -> int:
        """Owner-tier TTL, capped at the link's remaining lifetime."""
        now = now or utcnow()
        policy = self._settings.CACHE_TTL_OWNER_SECONDS if owner_id else self._settings.CACHE_TTL_ANON_SECONDS
        remaining = int((as_utc(expires_at) - as_utc(now)).total_seconds())
        return max(1, min(policy, remaining))

    # ========================================================================
    # PRIVATE HELPER METHODS
    # ========================================================================

    async def _lookup(self, code: str, now: datetime.datetime) -> tuple[CachedTarget | None, CacheStatus]:
        try:
            raw = await self._cache.get(url_key(code))
        except (RedisError, TimeoutError) as exc:
            CACHE_ERRORS_TOTAL.labels(operation="lookup").inc()
            self._logger.warning(f"Cache lookup failed for {code}, falling back to store: {exc}")
            return None, CacheStatus.DEGRADED

        if raw is None:
            return None, CacheStatus.MISS

        try:
            cached = CachedTarget.model_validate_json(raw)
        except ValidationError as exc:
            self._logger.error(f"Cache deserialization error for {code}: {exc}")
            await self.invalidate(code)
            return None, CacheStatus.MISS

        if as_utc(cached.expires_at) <= now:
            await self.invalidate(code, cached.owner_id)
            return None, CacheStatus.MISS
        return cached, CacheStatus.HIT

    async def _recheck(self, link: ShortLink, now: datetime.datetime) -> None:
        """Drop a just-populated entry if the link changed while it was being read."""
        try:
            fresh = await self._store.find_resolvable(link.code, now)
        except StoreUnavailableError as exc:
            self._logger.warning(f"Store re-read failed for {link.code}, dropping cache entry: {exc}")
            await self.invalidate(link.code, link.owner_id)
            return
        if fresh is not None and (fresh.target, as_utc(fresh.expires_at), fresh.owner_id) == (
            link.target,
            as_utc(link.expires_at),
            link.owner_id,
        ):
            return
        self._logger.info(f"Link {link.code} changed during cache population, dropping entry")
        await self.invalidate(link.code, link.owner_id)

    async def _cached_owner(self, code: str) -> str | None:
        raw = await self._cache.get(url_key(code))
        if raw is None:
            return None
        try:
            return CachedTarget.model_validate_json(raw).owner_id
        except ValidationError:
            return None

    async def _touch(self, cached: CachedTarget, now: datetime.datetime) -> None:
        """Sliding expiration for hot links."""
        try:
            await self._cache.expire(url_key(cached.code), self.ttl_for(cached.owner_id, cached.expires_at, now))
        except (RedisError, TimeoutError) as exc:
            CACHE_ERRORS_TOTAL.labels(operation="touch").inc()
            self._logger.warning(f"Cache TTL refresh failed for {cached.code}: {exc}")

    @staticmethod
    def _observe(start_time: float, status: RequestStatus, cache_status: CacheStatus) -> None:
        RESOLUTION_DURATION.observe(time.perf_counter() - start_time)
        RESOLUTION_REQUESTS_TOTAL.labels(status=status, cache=cache_status).inc()
