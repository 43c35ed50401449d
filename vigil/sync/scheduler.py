"""Timer ownership for one consumer: every handle it schedules, cancellable at once."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Coroutine

logger = logging.getLogger(__name__)


class TimerSet:
    """Tracks timer handles and tasks so teardown can cancel all of them synchronously."""

    def __init__(self) -> None:
        self._handles: set[asyncio.TimerHandle] = set()
        self._tasks: set[asyncio.Task] = set()

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> asyncio.TimerHandle:
        loop = asyncio.get_running_loop()
        handle: asyncio.TimerHandle

        def fire() -> None:
            self._handles.discard(handle)
            callback(*args)

        handle = loop.call_later(delay, fire)
        self._handles.add(handle)
        return handle

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str | None = None) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def every(self, interval: float, fn: Callable[[], Awaitable[Any]], name: str | None = None) -> asyncio.Task:
        """Run `fn` every `interval` seconds, first run after one interval."""

        async def loop() -> None:
            while True:
                await asyncio.sleep(interval)
                await fn()

        return self.spawn(loop(), name=name)

    def cancel(self, item: asyncio.TimerHandle | asyncio.Task | None) -> None:
        if item is None:
            return
        item.cancel()
        if isinstance(item, asyncio.Task):
            self._tasks.discard(item)
        else:
            self._handles.discard(item)

    def cancel_all(self) -> None:
        for handle in list(self._handles):
            handle.cancel()
        for task in list(self._tasks):
            task.cancel()
        self._handles.clear()
        self._tasks.clear()

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Scheduled task %s failed", task.get_name(), exc_info=task.exception())

    @property
    def pending(self) -> int:
        return len(self._handles) + len(self._tasks)
