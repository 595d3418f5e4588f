"""Supervised background tasks spawned by the slot loop."""

import asyncio
import logging
from typing import Coroutine

from .. import metrics

logger = logging.getLogger(__name__)


class TaskSupervisor:
    """Keeps track of background tasks and collects their failures.

    The slot loop never awaits its background work directly; instead it
    drains ``failures`` at the top of every tick.
    """

    def __init__(self):
        self._tasks: set[asyncio.Task] = set()
        self._failures: list[tuple[str, BaseException]] = []
        self.failed_count = 0

    def spawn(self, coro: Coroutine, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.failed_count += 1
            self._failures.append((task.get_name(), exc))
            metrics.record_background_failure()
            logger.error(f"Background task {task.get_name()} failed: {exc!r}")

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def drain_failures(self) -> list[tuple[str, BaseException]]:
        failures, self._failures = self._failures, []
        return failures

    async def wait(self) -> None:
        """Wait until every spawned task, including ones spawned meanwhile, is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
            # Let done callbacks run before checking again.
            await asyncio.sleep(0)

    async def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
