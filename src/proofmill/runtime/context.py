from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from proofmill.api.health_state import HealthState
from proofmill.api.server import HealthServer
from proofmill.pipeline.config import PipelineConfig
from proofmill.pipeline.monitor import AsyncResultMonitor
from proofmill.pipeline.pipeline_logging import log_event
from proofmill.pipeline.scheduler import CycleScheduler
from proofmill.pipeline.session import SessionManager
from proofmill.pipeline.stats import StatsAggregator
from proofmill.runtime.metrics import inc_counter
from proofmill.runtime.tasks import TaskRegistry


log = logging.getLogger("proofmill.runtime")


@dataclass
class AppContext:
    """Everything one submitter process owns, in shutdown order."""

    cfg: PipelineConfig
    sessions: SessionManager
    stats: StatsAggregator
    registry: TaskRegistry
    monitor: AsyncResultMonitor
    scheduler: CycleScheduler
    health: HealthState
    health_server: Optional[HealthServer] = None
    shutdown_event: asyncio.Event = field(default_factory=asyncio.Event)
    _closed: bool = False

    def request_shutdown(self, reason: str = "") -> None:
        if not self.shutdown_event.is_set():
            log_event(log, "shutdown_requested", reason=reason)
        self.shutdown_event.set()

    def pipeline_detail(self) -> Dict[str, Any]:
        out: Dict[str, Any] = dict(self.stats.snapshot())
        out["scheduler_state"] = self.scheduler.state.value
        out["in_flight"] = self.registry.pending
        out["session_generation"] = self.sessions.current().generation if self.sessions.started else None
        return out

    async def shutdown(self) -> None:
        """Stop the health server, cancel pending work, close the session."""
        if self._closed:
            return
        self._closed = True
        self.health.set_status("stopped")
        if self.health_server is not None:
            try:
                await asyncio.to_thread(self.health_server.stop)
            except Exception:
                log.exception("health server stop failed")
        cancelled = await self.registry.abandon()
        await self.sessions.close()
        inc_counter("shutdown_total", 1)
        log_event(log, "shutdown_complete", abandoned_tasks=cancelled)


def install_exception_guard(loop: asyncio.AbstractEventLoop) -> None:
    """Log stray loop errors instead of letting them pass silently."""

    def _handler(loop: asyncio.AbstractEventLoop, context: Dict[str, Any]) -> None:
        inc_counter("unhandled_loop_errors_total", 1)
        exc = context.get("exception")
        msg = context.get("message") or "unhandled error in event loop"
        if exc is not None:
            log.error("%s", msg, exc_info=exc)
        else:
            log.error("%s", msg)

    loop.set_exception_handler(_handler)
