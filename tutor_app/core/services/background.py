"""Tracking for fire-and-forget calls to the backend."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Coroutine

logger = logging.getLogger(__name__)


class BackgroundCalls:
    """Schedules coroutines without awaiting them and logs their failures."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    def schedule(self, coro: Coroutine[Any, Any, Any], description: str) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=description)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def pending_count(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every scheduled call. Failures were already logged."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("Background call %s was cancelled", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background call %s failed: %s", task.get_name(), exc)
