"""Detached background work that must not affect the response it follows."""

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class DeferredTaskRunner:
    """Run coroutines as detached tasks whose failures are only logged.

    Strong references are kept until each task finishes so the event
    loop does not garbage-collect them mid-flight.
    """

    def __init__(self):
        self._tasks: set[asyncio.Task] = set()

    def submit(
        self, factory: Callable[[], Awaitable[object]], description: str = "deferred task"
    ) -> asyncio.Task:
        async def run() -> None:
            try:
                await factory()
            except asyncio.CancelledError:
                logger.warning(f"{description} cancelled")
                raise
            except Exception:
                logger.exception(f"{description} failed")

        task = asyncio.create_task(run(), name=description)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for all submitted tasks (used on shutdown and in tests)."""
        while self._tasks:
            tasks = list(self._tasks)
            done, not_done = await asyncio.wait(tasks, timeout=timeout)
            if not_done:
                logger.warning(f"{len(not_done)} deferred tasks still running after {timeout}s")
                return
