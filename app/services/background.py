"""
Detached background tasks.

Used for work the request path must not wait on (usage ledger writes).
The runner holds a strong reference to every task until it finishes, and
logs anything that escapes the task, so nothing disappears silently.
"""

import asyncio
import logging
from typing import Awaitable, Optional

logger = logging.getLogger(__name__)


class TaskRunner:
    """Spawns fire-and-forget tasks with their own error boundary."""

    def __init__(self):
        self._tasks: set[asyncio.Task] = set()

    def spawn(self, coro: Awaitable, name: Optional[str] = None) -> asyncio.Task:
        """Schedule `coro` on the running loop and return without awaiting it."""
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                f"Background task {task.get_name()} failed: {exc}",
                exc_info=exc,
            )

    @property
    def pending(self) -> int:
        """Number of tasks still running."""
        return len(self._tasks)

    async def drain(self):
        """Wait for every in-flight task (shutdown, tests)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
