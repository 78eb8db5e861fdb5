"""
Delayed work owned by the engine.
"""

import asyncio
from typing import Awaitable, Callable, Set

from shared.logging import get_logger


class TaskScheduler:
    """Runs callbacks after a delay and cancels whatever is pending on shutdown."""

    def __init__(self):
        self.logger = get_logger("personalization.scheduler")
        self.tasks: Set[asyncio.Task] = set()
        self.closed = False

    def call_later(self, delay: float, callback: Callable[[], Awaitable[None]],
                   name: str = "timer") -> asyncio.Task:
        """Schedule ``await callback()`` after ``delay`` seconds."""
        if self.closed:
            raise RuntimeError("Scheduler is closed")

        async def run() -> None:
            await asyncio.sleep(max(0.0, delay))
            try:
                await callback()
            except Exception as e:
                self.logger.error("Scheduled task failed", name=name, error=str(e))

        task = asyncio.create_task(run(), name=name)
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self.tasks)

    async def cancel_all(self) -> None:
        """Cancel every pending task and wait for them to finish."""
        self.closed = True
        tasks = list(self.tasks)
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.tasks.clear()
        if tasks:
            self.logger.debug("Cancelled pending tasks", count=len(tasks))
