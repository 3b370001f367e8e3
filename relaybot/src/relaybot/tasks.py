from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Set

logger = logging.getLogger(__name__)


class BackgroundTasks:
    """Runs side effects without blocking the caller, and drains them on shutdown.

    Failures are logged; nothing awaits an individual task's result.
    """

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task] = set()

    def spawn(self, awaitable: Awaitable, *, name: str | None = None) -> asyncio.Task:
        task = asyncio.ensure_future(awaitable)
        if name is not None:
            task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("background task %s failed: %r", task.get_name(), exc)

    def __len__(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until every spawned task, including ones spawned meanwhile, finished."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
