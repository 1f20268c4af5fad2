"""Expired link reaper.

Expiry is already enforced on every read path; the reaper only reclaims
storage. It deletes expired rows in batches and drops the cache entries and
click counters derived from them. It is an independent loop that can be
stopped and restarted at any time without affecting correctness.

Run standalone::

    python -m shortlink.reaper
"""

import asyncio
import logging
import signal
import sys

from shortlink.clicks import ClickAccountant
from shortlink.config import Settings, get_settings
from shortlink.database import close_db, get_session_factory, init_db
from shortlink.metrics import REAPED_LINKS_TOTAL
from shortlink.redis import close_redis, get_redis
from shortlink.resolution import ResolutionCache
from shortlink.store import LinkStore
from shortlink.tasks import TaskRunner

__all__ = ["ExpiredLinkReaper", "main"]


class ExpiredLinkReaper:
    def __init__(
        self,
        store: LinkStore,
        resolution: ResolutionCache,
        clicks: ClickAccountant,
        settings: Settings,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ):
        self._store = store
        self._resolution = resolution
        self._clicks = clicks
        self._interval = settings.REAPER_INTERVAL_SECONDS
        self._batch_size = settings.REAPER_BATCH_SIZE
        self._logger = logger or logging.getLogger("shortlink.reaper")
        self._stopping = asyncio.Event()

    async def run_once(self) -> int:
        """Purge expired links until a short batch comes back. Returns the number removed."""
        total = 0
        while True:
            purged = await self._store.purge_expired(limit=self._batch_size)
            for code, owner_id in purged:
                await self._resolution.invalidate(code, owner_id)
                await self._clicks.forget(code)
            REAPED_LINKS_TOTAL.inc(len(purged))
            total += len(purged)
            if len(purged) < self._batch_size:
                break
        if total:
            self._logger.info(f"Reaped {total} expired links")
        return total

    async def run_forever(self) -> None:
        self._stopping.clear()
        self._logger.info(f"Starting expired link reaper every {self._interval}s")
        while not self._stopping.is_set():
            try:
                await self.run_once()
            except Exception as e:
                self._logger.error(f"Reaper pass failed: {e}", exc_info=True)
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self._interval)
            except TimeoutError:
                pass
        self._logger.info("Expired link reaper stopped")

    def stop(self) -> None:
        self._stopping.set()


async def main() -> None:
    settings = get_settings()

    logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    logger = logging.getLogger("shortlink.reaper")

    await init_db()
    cache = await get_redis()
    store = LinkStore(get_session_factory(), timeout_seconds=settings.STORE_TIMEOUT_SECONDS, logger=logger)
    tasks = TaskRunner(logger=logger)
    clicks = ClickAccountant(cache, store, tasks, settings, logger=logger)
    resolution = ResolutionCache(cache, store, clicks, settings, logger=logger)
    reaper = ExpiredLinkReaper(store, resolution, clicks, settings, logger=logger)

    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, reaper.stop)

    try:
        await reaper.run_forever()
    except Exception as e:
        logger.error(f"Reaper failed: {e}")
        sys.exit(1)
    finally:
        await close_redis()
        await close_db()


if __name__ == "__main__":
    asyncio.run(main())
