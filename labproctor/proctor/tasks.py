"""
Task Registry - Cancellable scheduled tasks keyed by session

Timers of a running session (countdown, analysis tick, recorder loops,
lab-start animation) and fire-and-forget requests are registered under keys
derived from the session key, so one `cancel` stops a whole group.
"""

import asyncio
import logging
from collections import defaultdict
from typing import Awaitable, Callable, Dict, Set

logger = logging.getLogger(__name__)


class TaskRegistry:
    """
    Owns asyncio tasks grouped by session key.

    Periodic loops spawn each tick as its own task, so a slow tick (for
    example a classifier round-trip) never delays the next tick of another
    loop or the countdown.
    """

    def __init__(self):
        self._tasks: Dict[str, Set[asyncio.Task]] = defaultdict(set)

    def spawn(self, key: str, coro: Awaitable, name: str = "task") -> asyncio.Task:
        """Schedule a coroutine under `key`."""
        task = asyncio.ensure_future(coro)
        task.set_name(f"{key}:{name}")
        self._tasks[key].add(task)
        task.add_done_callback(lambda t: self._discard(key, t))
        return task

    def every(
        self,
        key: str,
        interval: float,
        tick: Callable[[], Awaitable],
        name: str = "periodic"
    ) -> asyncio.Task:
        """
        Run `tick` every `interval` seconds until the key is cancelled.

        The first tick fires after one interval, matching setInterval.
        """
        async def loop():
            while True:
                await asyncio.sleep(interval)
                self.spawn(key, self._guarded(tick, name), name=f"{name}-tick")

        return self.spawn(key, loop(), name=name)

    async def _guarded(self, tick: Callable[[], Awaitable], name: str):
        try:
            await tick()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[TASKS] {name} tick failed: {e}")

    def _discard(self, key: str, task: asyncio.Task):
        tasks = self._tasks.get(key)
        if tasks is None:
            return
        tasks.discard(task)
        if not tasks:
            self._tasks.pop(key, None)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"[TASKS] {task.get_name()} raised: {task.exception()}")

    def active(self, key: str) -> int:
        """Number of live tasks under `key`"""
        return len(self._tasks.get(key, ()))

    def cancel(self, key: str) -> int:
        """
        Cancel every task under `key` without waiting.

        Returns the number of tasks cancelled.
        """
        tasks = self._tasks.pop(key, set())
        current = asyncio.current_task() if _loop_running() else None
        cancelled = 0
        for task in tasks:
            if task is current or task.done():
                continue
            task.cancel()
            cancelled += 1
        if cancelled:
            logger.debug(f"[TASKS] Cancelled {cancelled} task(s) for {key}")
        return cancelled


def _loop_running() -> bool:
    try:
        asyncio.get_running_loop()
        return True
    except RuntimeError:
        return False
