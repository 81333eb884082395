from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from typing import Awaitable, Callable, Optional

from proofmill.pipeline.coordinator import WorkerCoordinator
from proofmill.pipeline.model import Cycle
from proofmill.pipeline.monitor import AsyncResultMonitor
from proofmill.pipeline.pipeline_logging import log_event
from proofmill.pipeline.stats import StatsAggregator
from proofmill.runtime.metrics import inc_counter, set_gauge
from proofmill.runtime.tasks import TaskRegistry


log = logging.getLogger("proofmill.scheduler")

Sleep = Callable[[float], Awaitable[None]]


class SchedulerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    WAITING = "waiting"


def _fmt_runtime(seconds: int) -> str:
    h, rem = divmod(max(0, int(seconds)), 3600)
    m, s = divmod(rem, 60)
    return f"{h}h {m}m {s}s"


class CycleScheduler:
    """Runs cycles back to back with a fixed pause after each generation phase.

    The pause is measured from the end of a cycle's dispatch, not from its
    start, and submissions of earlier cycles keep settling in the background
    while the next cycle runs. There is no stop state: continuous mode ends
    only when the process does.
    """

    def __init__(
        self,
        *,
        coordinator: WorkerCoordinator,
        monitor: AsyncResultMonitor,
        stats: StatsAggregator,
        registry: TaskRegistry,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._coordinator = coordinator
        self._monitor = monitor
        self._stats = stats
        self._registry = registry
        self._sleep = sleep
        self.state = SchedulerState.IDLE
        self.last_cycle_error: Optional[str] = None

    async def run_cycle(self) -> bool:
        """One generation + dispatch pass. Returns False if dispatch raised."""
        cycle = Cycle(id=self._stats.record_cycle())
        self.state = SchedulerState.RUNNING
        set_gauge("current_cycle", cycle.id)
        inc_counter("cycles_total", 1)
        started = time.monotonic()
        try:
            pending = await self._coordinator.dispatch(cycle)
        except Exception as e:
            inc_counter("cycle_errors_total", 1)
            self.last_cycle_error = f"{type(e).__name__}:{e}"
            log.exception("cycle %s dispatch failed", cycle.id)
            return False
        finally:
            self.state = SchedulerState.IDLE

        self.last_cycle_error = None
        self._monitor.watch(cycle, pending)
        log_event(
            log,
            "cycle_dispatched",
            cycle=cycle.id,
            submissions=len(pending),
            generation_ms=int((time.monotonic() - started) * 1000),
        )
        return True

    async def run_forever(self, interval_s: float) -> None:
        log_event(log, "scheduler_start", mode="continuous", interval_s=interval_s)
        while True:
            await self.run_cycle()

            g = self._stats.global_stats()
            runtime_s = int((time.time() * 1000 - g.started_ms) / 1000)
            log_event(
                log,
                "scheduler_waiting",
                runtime=_fmt_runtime(runtime_s),
                successful=g.successful,
                failed=g.failed,
                in_flight=self._registry.pending,
                next_cycle_in_s=interval_s,
            )

            self.state = SchedulerState.WAITING
            try:
                await self._sleep(interval_s)
            finally:
                self.state = SchedulerState.IDLE

    async def run_once(self, *, drain_timeout: Optional[float] = None) -> int:
        """Single-shot mode: one cycle, wait for its submissions, exit code."""
        log_event(log, "scheduler_start", mode="single")
        ok = await self.run_cycle()
        drained = await self._registry.drain(drain_timeout)
        if not drained:
            log_event(log, "scheduler_drain_timeout", level=logging.WARNING, in_flight=self._registry.pending)
        return 0 if ok else 1
