from __future__ import annotations

import asyncio
import logging
from typing import Any, Coroutine, Optional, Set, TypeVar

from proofmill.runtime.metrics import inc_counter, set_gauge


log = logging.getLogger("proofmill.tasks")

T = TypeVar("T")


class TaskRegistry:
    """Retains every background task the pipeline spawns.

    Nothing is fire-and-forget: tasks stay referenced until done, their
    exceptions are logged, and shutdown either drains or abandons the set.
    """

    def __init__(self, name: str = "pipeline") -> None:
        self._name = name
        self._tasks: Set[asyncio.Task[Any]] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    @property
    def pending(self) -> int:
        return len([t for t in self._tasks if not t.done()])

    def spawn(self, coro: Coroutine[Any, Any, T], *, name: Optional[str] = None) -> "asyncio.Task[T]":
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        set_gauge(f"{self._name}_tasks", len(self._tasks))
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: "asyncio.Task[Any]") -> None:
        self._tasks.discard(task)
        set_gauge(f"{self._name}_tasks", len(self._tasks))
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            inc_counter(f"{self._name}_task_errors_total", 1)
            log.error("background task %s failed", task.get_name(), exc_info=exc)

    async def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait until no tasks remain (including ones spawned while draining).

        Returns False if the timeout elapsed first.
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + float(timeout)
        while self._tasks:
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                return False
            await asyncio.wait(set(self._tasks), timeout=remaining)
        return True

    async def abandon(self) -> int:
        """Cancel everything still running. Returns how many were cancelled."""
        tasks = [t for t in self._tasks if not t.done()]
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        return len(tasks)
