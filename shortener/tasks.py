"""Detached background tasks whose failures go to a reporting sink.

Used for work that must not sit on a response's critical path, such as the
click increment after a redirect has already been sent.
"""

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

__all__ = ["TaskSupervisor"]

ErrorSink = Callable[[str, BaseException], None]


def _log_error(name: str, exc: BaseException) -> None:
    logging.getLogger("urlshortener.tasks").error(f"Background task {name} failed: {exc!r}")


class TaskSupervisor:
    def __init__(self, on_error: ErrorSink = _log_error):
        self._on_error = on_error
        self._tasks: set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        # Event loop holds only weak references to tasks
        self._tasks.add(task)
        task.add_done_callback(self._finished)
        return task

    def _finished(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._on_error(task.get_name(), exc)

    async def drain(self) -> None:
        """Wait for every task spawned so far, including ones they spawn."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await self.drain()
