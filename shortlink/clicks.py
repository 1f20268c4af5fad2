"""Click accounting: fast counters, durable counts, and the bounded analytics log.

Click Tracking Flow
------------------
::
    resolution (hit)                     resolution (miss)
          │                                     │
          ▼                                     ▼
    ┌─────────────┐                     ┌─────────────────┐
    │ MULTI        │                     │ UPDATE click_    │
    │  INCR clicks │                     │ count + 1 (sync) │
    │  ZADD event  │                     └────────┬────────┘
    │  ZREMRANGE   │                              ▼
    │  EXPIRE      │                     ┌─────────────┐
    │ EXEC         │                     │ MULTI ... EXEC│
    └──────┬──────┘                     │ (same as hit) │
           ▼                             └─────────────┘
    ┌─────────────────┐
    │ TaskRunner:      │
    │ UPDATE click_    │
    │ count + 1 (async)│
    └─────────────────┘

Key Behaviours
===============
- ``clicks:<code>`` is incremented on every resolution with a single INCR.
- ``click_count`` in the durable store changes only through an in-database
  increment, so concurrent resolutions never overwrite each other.
- On the hit path the durable increment is fire-and-forget; if it fails it is
  logged and dropped. ``click_count`` may lag the real number of resolutions
  but never exceeds it.
- ``analytics:<code>`` is a sorted set scored by event time and trimmed to
  the most recent ``ANALYTICS_MAX_EVENTS`` entries on every write.
"""

import datetime
import logging
import time
from collections import Counter
from dataclasses import dataclass
from urllib.parse import urlsplit

import redis.asyncio as redis
from nanoid import generate
from redis.exceptions import RedisError

from shortlink.config import Settings
from shortlink.enums import BrowserFamily, DeviceType
from shortlink.metrics import CACHE_ERRORS_TOTAL, DURABLE_INCREMENT_FAILURES_TOTAL
from shortlink.redis import analytics_key, clicks_key
from shortlink.schemas import ClickEvent
from shortlink.store import LinkStore
from shortlink.tasks import TaskRunner

__all__ = ["Visit", "ClickAccountant", "classify_device", "classify_browser", "referrer_label"]

HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS


@dataclass(frozen=True)
class Visit:
    """Request attributes a resolution is attributed to."""

    user_agent: str | None = None
    referrer: str | None = None
    country: str | None = None
    client_ip: str | None = None


def classify_device(user_agent: str | None) -> DeviceType:
    ua = (user_agent or "").lower()
    if "tablet" in ua or "ipad" in ua:
        return DeviceType.TABLET
    if "mobile" in ua:
        return DeviceType.MOBILE
    return DeviceType.DESKTOP


def classify_browser(user_agent: str | None) -> BrowserFamily:
    # Order matters: Edge announces Chrome, Chrome announces Safari.
    ua = (user_agent or "").lower()
    if "edg" in ua:
        return BrowserFamily.EDGE
    if "chrome" in ua or "crios" in ua:
        return BrowserFamily.CHROME
    if "firefox" in ua or "fxios" in ua:
        return BrowserFamily.FIREFOX
    if "safari" in ua:
        return BrowserFamily.SAFARI
    return BrowserFamily.OTHER


def referrer_label(referrer: str | None) -> str:
    if not referrer:
        return "direct"
    try:
        host = urlsplit(referrer).hostname
    except ValueError:
        return "direct"
    return host or "direct"


def _now_ms() -> int:
    return int(time.time() * 1000)


class ClickAccountant:
    def __init__(
        self,
        cache: redis.Redis,
        store: LinkStore,
        tasks: TaskRunner,
        settings: Settings,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ):
        self._cache = cache
        self._store = store
        self._tasks = tasks
        self._settings = settings
        self._logger = logger or logging.getLogger("shortlink.clicks")

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    async def record_hit(self, code: str, visit: Visit | None = None) -> None:
        """Cache-hit path: fast counter now, durable increment in the background."""
        await self._record_fast(code, visit)
        self._tasks.submit(self._increment_durable(code), f"increment_clicks:{code}")

    async def record_miss(self, code: str, visit: Visit | None = None) -> None:
        """Cache-miss path: durable increment first, then the fast counter."""
        await self._store.increment_clicks(code, 1)
        await self._record_fast(code, visit)

    async def _increment_durable(self, code: str) -> None:
        try:
            found = await self._store.increment_clicks(code, 1)
        except Exception as exc:
            DURABLE_INCREMENT_FAILURES_TOTAL.inc()
            self._logger.error(f"Durable click increment failed for {code}: {exc}", exc_info=True)
            return
        if not found:
            self._logger.debug(f"Durable click increment skipped, {code} no longer exists")

    def build_event(self, visit: Visit | None, timestamp_ms: int | None = None) -> ClickEvent:
        visit = visit or Visit()
        return ClickEvent(
            id=generate(size=12),
            timestamp=timestamp_ms if timestamp_ms is not None else _now_ms(),
            device=classify_device(visit.user_agent),
            browser=classify_browser(visit.user_agent),
            referrer=referrer_label(visit.referrer),
            country=(visit.country or "unknown").lower(),
        )

    async def _record_fast(self, code: str, visit: Visit | None) -> None:
        key = analytics_key(code)
        cap = self._settings.ANALYTICS_MAX_EVENTS
        try:
            event = self.build_event(visit)
            async with self._cache.pipeline(transaction=True) as pipe:
                pipe.incr(clicks_key(code))
                pipe.zadd(key, {event.model_dump_json(): event.timestamp})
                pipe.zremrangebyrank(key, 0, -(cap + 1))
                pipe.expire(key, self._settings.ANALYTICS_RETENTION_DAYS * 86400)
                await pipe.execute()
        except (RedisError, TimeoutError, ValueError) as exc:
            CACHE_ERRORS_TOTAL.labels(operation="record_click").inc()
            self._logger.warning(f"Fast click counter update failed for {code}: {exc}")

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    async def realtime_clicks(self, code: str) -> int | None:
        """Current fast counter, or None when the cache tier cannot be read."""
        try:
            value = await self._cache.get(clicks_key(code))
        except (RedisError, TimeoutError) as exc:
            CACHE_ERRORS_TOTAL.labels(operation="realtime_clicks").inc()
            self._logger.warning(f"Fast click counter read failed for {code}: {exc}")
            return None
        return int(value) if value else 0

    async def events(self, code: str, since_ms: int, until_ms: int | None = None) -> list[ClickEvent]:
        until_ms = until_ms if until_ms is not None else _now_ms()
        raw = await self._cache.zrangebyscore(analytics_key(code), since_ms, until_ms)
        events = []
        for item in raw:
            try:
                events.append(ClickEvent.model_validate_json(item))
            except ValueError as exc:
                self._logger.warning(f"Skipping unreadable analytics entry for {code}: {exc}")
        return events

    async def realtime_stats(self, code: str) -> dict:
        now = _now_ms()
        day = await self.events(code, now - DAY_MS, now)
        hour = [event for event in day if event.timestamp >= now - HOUR_MS]
        return {
            "clicks_last_hour": len(hour),
            "clicks_last_24_hours": len(day),
            "current_hour": hourly_breakdown(hour),
            "top_referrers": top_referrers(day),
            "devices": dict(Counter(str(event.device) for event in day)),
        }

    async def summary(self, code: str, days: int = 30) -> dict:
        now = _now_ms()
        events = await self.events(code, now - days * DAY_MS, now)
        return {
            "total": len(events),
            "devices": dict(Counter(str(event.device) for event in events)),
            "browsers": dict(Counter(str(event.browser) for event in events)),
            "referrers": dict(Counter(event.referrer for event in events)),
            "hourly": hourly_breakdown(events),
        }

    async def forget(self, code: str) -> None:
        """Drop the fast counter and analytics log of a deleted link."""
        try:
            await self._cache.delete(clicks_key(code), analytics_key(code))
        except (RedisError, TimeoutError) as exc:
            CACHE_ERRORS_TOTAL.labels(operation="forget_clicks").inc()
            self._logger.warning(f"Could not drop click counters for {code}: {exc}")


def hourly_breakdown(events: list[ClickEvent]) -> dict[int, int]:
    hours = Counter(
        datetime.datetime.fromtimestamp(event.timestamp / 1000, tz=datetime.timezone.utc).hour for event in events
    )
    return dict(sorted(hours.items()))


def top_referrers(events: list[ClickEvent], limit: int = 5) -> list[dict[str, str | int]]:
    counts = Counter(event.referrer for event in events)
    return [{"referrer": referrer, "count": count} for referrer, count in counts.most_common(limit)]
