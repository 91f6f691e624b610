"""
Task scheduler owned by the relay: background work and delayed callbacks.

One instance is created at startup and passed to the realtime connection and the
session tracker. shutdown() cancels everything still pending.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Coroutine, Optional, Set

logger = logging.getLogger(__name__)


class TaskScheduler:
    """Runs coroutines as tracked asyncio tasks on the current event loop."""

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def pending(self) -> int:
        """Number of tasks not yet finished."""
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], name: Optional[str] = None) -> Optional[asyncio.Task]:
        """Start coro in the background. Failures are logged, never raised."""
        if self._closed:
            coro.close()
            logger.debug("Scheduler closed; dropping task %s", name)
            return None
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def call_later(
        self,
        delay: float,
        callback: Callable[[], Awaitable[Any]],
        name: Optional[str] = None,
    ) -> Optional[asyncio.Task]:
        """Await callback() after delay seconds. Cancel the returned task to abort."""
        return self.spawn(self._delayed(delay, callback), name=name)

    @staticmethod
    async def _delayed(delay: float, callback: Callable[[], Awaitable[Any]]) -> None:
        await asyncio.sleep(delay)
        await callback()

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background task %s failed: %s", task.get_name(), exc, exc_info=exc)

    async def shutdown(self) -> None:
        """Cancel all pending tasks and wait for them to finish."""
        self._closed = True
        tasks = [t for t in self._tasks if not t.done()]
        current = asyncio.current_task()
        for task in tasks:
            if task is not current:
                task.cancel()
        tasks = [t for t in tasks if t is not current]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Task scheduler stopped (%s task(s) cancelled)", len(tasks))
