"""Fixed window rate limiting on the cache tier.

Flow Diagram — allow()
======================
::
    ┌──────────────────────────────┐
    │ MULTI                         │
    │   INCR   rate:<actor>         │
    │   EXPIRE rate:<actor> w NX    │
    │   TTL    rate:<actor>         │
    │ EXEC                          │
    └──────────────┬───────────────┘
                   ▼
          count <= max_requests ?
           ┌───────┴───────┐
           │ YES            │ NO
           ▼                ▼
       allowed         RateLimited(retry_after=TTL)

Key Behaviours
===============
- The increment and the expiry run in one transaction. ``EXPIRE ... NX`` only
  sets a TTL when the counter has none, so the first request of a window
  starts the clock and no counter can be left without an expiry.
- Authenticated actors (``user:<id>``) and anonymous actors (``ip:<addr>``)
  live in separate namespaces and never share a budget.
- A rejected request is not retried by the server; ``retry_after`` tells the
  caller how long to back off.
- If the cache tier is unreachable the request is allowed and the failure is
  logged.

Requires Redis 7 or newer for ``EXPIRE ... NX``.
"""

import logging
from dataclasses import dataclass

import redis.asyncio as redis
from redis.exceptions import RedisError

from shortlink.config import Settings
from shortlink.metrics import CACHE_ERRORS_TOTAL, RATE_LIMIT_REJECTIONS_TOTAL
from shortlink.redis import rate_key

__all__ = ["ActorKey", "RateDecision", "RateLimiter"]


@dataclass(frozen=True)
class ActorKey:
    """Identity a rate limit budget is charged to."""

    kind: str
    identity: str

    USER = "user"
    ADDRESS = "ip"

    @classmethod
    def for_user(cls, user_id: str) -> "ActorKey":
        return cls(cls.USER, str(user_id))

    @classmethod
    def for_address(cls, address: str | None) -> "ActorKey":
        return cls(cls.ADDRESS, address or "unknown")

    @classmethod
    def of(cls, user_id: str | None, address: str | None) -> "ActorKey":
        """Authenticated identity wins; otherwise fall back to the network address."""
        if user_id:
            return cls.for_user(user_id)
        return cls.for_address(address)

    @property
    def is_authenticated(self) -> bool:
        return self.kind == self.USER

    def __str__(self) -> str:
        return f"{self.kind}:{self.identity}"


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    count: int
    limit: int
    retry_after: int

    @property
    def remaining(self) -> int:
        return max(self.limit - self.count, 0)


class RateLimiter:
    def __init__(
        self,
        cache: redis.Redis,
        settings: Settings,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ):
        self._cache = cache
        self._settings = settings
        self._logger = logger or logging.getLogger("shortlink.rate_limit")

    async def allow(self, actor_key: str, window_seconds: int, max_requests: int) -> RateDecision:
        if window_seconds < 1 or max_requests < 1:
            raise ValueError("window_seconds and max_requests must be positive")

        key = rate_key(actor_key)
        try:
            async with self._cache.pipeline(transaction=True) as pipe:
                pipe.incr(key)
                pipe.expire(key, window_seconds, nx=True)
                pipe.ttl(key)
                count, _, ttl = await pipe.execute()
        except (RedisError, TimeoutError) as exc:
            CACHE_ERRORS_TOTAL.labels(operation="rate_limit").inc()
            self._logger.warning(f"Rate limit check failed for {actor_key}, allowing request: {exc}")
            return RateDecision(allowed=True, count=0, limit=max_requests, retry_after=0)

        count = int(count)
        ttl = int(ttl)
        allowed = count <= max_requests
        retry_after = 0 if allowed else (ttl if ttl > 0 else window_seconds)
        return RateDecision(allowed=allowed, count=count, limit=max_requests, retry_after=retry_after)

    async def check(self, actor: ActorKey) -> RateDecision:
        """Charge one request to ``actor`` using the configured budget for its kind."""
        limit = self._settings.RATE_LIMIT_USER_MAX if actor.is_authenticated else self._settings.RATE_LIMIT_ANON_MAX
        decision = await self.allow(str(actor), self._settings.RATE_LIMIT_WINDOW_SECONDS, limit)
        if not decision.allowed:
            RATE_LIMIT_REJECTIONS_TOTAL.labels(actor_kind=actor.kind).inc()
            self._logger.info(f"Rate limit exceeded for {actor}: {decision.count}/{decision.limit}")
        return decision
