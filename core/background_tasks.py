"""
Fire-and-forget background work

Spawns coroutines as asyncio tasks, keeps a strong reference until they finish
and logs (never raises) their failures. Used for notifications, event
publishing and audit writes that must not block or abort the caller.
"""

import asyncio
import logging
from typing import Awaitable, Optional, Set

logger = logging.getLogger(__name__)


class BackgroundTasks:
    """Tracks detached tasks for one service"""

    def __init__(self, name: str = "background"):
        self.name = name
        self._tasks: Set[asyncio.Task] = set()

    def spawn(self, coro: Awaitable, label: Optional[str] = None) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        task.set_name(label or f"{self.name}-task")
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"[{self.name}] background task {task.get_name()} failed: {exc}")

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for all currently running tasks (tests and graceful shutdown)"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> None:
        for task in list(self._tasks):
            if not task.done():
                task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._tasks.clear()
