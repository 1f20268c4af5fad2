"""Fire-and-forget background work with a logging-only error channel.

Side effects such as durable click increments on the cache-hit path must not
delay the response and must not fail it. ``TaskRunner.submit`` schedules the
coroutine on the running loop, keeps a strong reference until it finishes, and
logs whatever exception it ends with. The submitting request never awaits it.
``drain()`` waits for outstanding work; it is used on shutdown and in tests.
"""

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

from shortlink.metrics import BACKGROUND_TASK_FAILURES_TOTAL

__all__ = ["TaskRunner"]


class TaskRunner:
    def __init__(self, logger: logging.Logger | logging.LoggerAdapter | None = None):
        self._logger = logger or logging.getLogger("shortlink.tasks")
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, coro: Coroutine[Any, Any, Any], description: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=description)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            self._logger.debug(f"Background task cancelled: {task.get_name()}")
            return
        exc = task.exception()
        if exc is not None:
            BACKGROUND_TASK_FAILURES_TOTAL.inc()
            self._logger.error(f"Background task failed: {task.get_name()}: {exc}", exc_info=exc)

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for every task submitted so far, including ones submitted while waiting."""
        async with asyncio.timeout(timeout):
            while self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
