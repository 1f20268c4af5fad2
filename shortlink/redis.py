"""Redis client management for the shortlink cache tier.

This module builds the redis.asyncio client shared by the resolution cache,
click accounting, and the rate limiter. Every command carries a bounded
socket timeout so a slow cache degrades a request instead of hanging it.

Flow Diagram — Redis Client
===========================
::
    ┌─────────────┐
    │ get_redis()  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Check global │
    │ client var   │
    └──────┬──────┘
    EXISTS?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│ Create  │  │ Return  │
│ client  │  │ existing│
└─────────┘  └─────────┘

Key Namespaces
==============
::
    url:<code>                  cached resolution payload
    user:<owner>:url:<code>     owner-scoped duplicate
    clicks:<code>               fast click counter
    rate:<actor>                rate limit window counter
    analytics:<code>            bounded click event log (sorted set)

Functions:
    build_redis():  Create a client with bounded timeouts.
    get_redis():  Process-wide client, created lazily.
    close_redis():  Cleanup function for shutdown.
    url_key(), owner_url_key(), clicks_key(), rate_key(), analytics_key():  key builders.
"""

import redis.asyncio as redis

from shortlink.config import get_settings

__all__ = [
    "build_redis",
    "get_redis",
    "close_redis",
    "url_key",
    "owner_url_key",
    "clicks_key",
    "rate_key",
    "analytics_key",
]

settings = get_settings()

redis_client: redis.Redis | None = None


def url_key(code: str) -> str:
    return f"url:{code}"


def owner_url_key(owner_key: str, code: str) -> str:
    return f"user:{owner_key}:url:{code}"


def clicks_key(code: str) -> str:
    return f"clicks:{code}"


def rate_key(actor_key: str) -> str:
    return f"rate:{actor_key}"


def analytics_key(code: str) -> str:
    return f"analytics:{code}"


def build_redis(url: str, timeout_seconds: float) -> redis.Redis:
    return redis.from_url(
        url,
        encoding="utf-8",
        decode_responses=True,
        socket_timeout=timeout_seconds,
        socket_connect_timeout=timeout_seconds,
    )


async def get_redis() -> redis.Redis:
    global redis_client
    if redis_client is None:
        redis_client = build_redis(settings.REDIS_URL, settings.REDIS_TIMEOUT_SECONDS)
    return redis_client


async def close_redis() -> None:
    global redis_client
    if redis_client is not None:
        await redis_client.aclose()
        redis_client = None
