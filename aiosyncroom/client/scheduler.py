"""Cooperative scheduler for the periodic activities of a client."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from contextlib import suppress

logger = logging.getLogger(__name__)

TickCallback = Callable[[], Awaitable[None] | None]
SleepFunc = Callable[[float], Awaitable[None]]


class Scheduler:
    """
    Runs named periodic tasks on the running event loop.

    Each task calls its callback, then sleeps for its interval. A failing
    callback is logged and the task keeps running; only cancel_all() (session
    teardown) stops the tasks. The sleep function can be replaced so tests can
    drive virtual time.
    """

    def __init__(self, sleep: SleepFunc = asyncio.sleep) -> None:
        """Create a scheduler without tasks."""
        self._sleep = sleep
        self._tasks: dict[str, asyncio.Task[None]] = {}

    @property
    def names(self) -> list[str]:
        """Names of the running tasks."""
        return [name for name, task in self._tasks.items() if not task.done()]

    def every(self, name: str, interval: float, callback: TickCallback) -> None:
        """Run ``callback`` every ``interval`` seconds under ``name``."""
        if interval <= 0:
            raise ValueError("interval must be positive")
        previous = self._tasks.get(name)
        if previous is not None and not previous.done():
            raise ValueError(f"Task {name!r} is already scheduled")
        loop = asyncio.get_running_loop()
        self._tasks[name] = loop.create_task(self._run(name, interval, callback))
        logger.debug("Scheduled %s every %.3fs", name, interval)

    def cancel(self, name: str) -> None:
        """Cancel one task without waiting for it."""
        task = self._tasks.pop(name, None)
        if task is not None and not task.done():
            task.cancel()

    async def cancel_all(self) -> None:
        """Cancel every task and wait until they are finished."""
        tasks, self._tasks = self._tasks, {}
        current = asyncio.current_task()
        for task in tasks.values():
            if task is not current:
                task.cancel()
        for task in tasks.values():
            if task is not current:
                with suppress(asyncio.CancelledError):
                    await task

    async def _run(self, name: str, interval: float, callback: TickCallback) -> None:
        while True:
            try:
                result = callback()
                if asyncio.iscoroutine(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Periodic task %s failed", name)
            await self._sleep(interval)
