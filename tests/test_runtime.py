from __future__ import annotations

import asyncio
import logging
import threading

import pytest

from pipeline_harness import build_rig
from proofmill.api.health_state import HealthState
from proofmill.runtime import metrics
from proofmill.runtime.context import AppContext, install_exception_guard
from proofmill.runtime.tasks import TaskRegistry


def test_registry_drains_tasks_spawned_while_draining() -> None:
    async def _run():
        reg = TaskRegistry("t")
        done = []

        async def _child():
            await asyncio.sleep(0)
            done.append("child")

        async def _parent():
            await asyncio.sleep(0)
            reg.spawn(_child(), name="child")
            done.append("parent")

        reg.spawn(_parent(), name="parent")
        ok = await reg.drain(5)
        return ok, done, len(reg)

    ok, done, remaining = asyncio.run(_run())
    assert ok is True
    assert done == ["parent", "child"]
    assert remaining == 0


def test_registry_drain_timeout_and_abandon() -> None:
    async def _run():
        reg = TaskRegistry("t")
        reg.spawn(asyncio.Event().wait(), name="forever")
        drained = await reg.drain(0.01)
        cancelled = await reg.abandon()
        return drained, cancelled, reg.pending

    drained, cancelled, pending = asyncio.run(_run())
    assert drained is False
    assert cancelled == 1
    assert pending == 0


def test_failed_background_task_is_logged_and_counted(caplog: pytest.LogCaptureFixture) -> None:
    async def _boom():
        raise ValueError("bad")

    async def _run():
        reg = TaskRegistry("t")
        reg.spawn(_boom(), name="boom")
        await reg.drain(5)

    with caplog.at_level(logging.ERROR, logger="proofmill.tasks"):
        asyncio.run(_run())
    assert metrics.snapshot()["counters"].get("t_task_errors_total") == 1
    assert any("boom" in r.getMessage() for r in caplog.records)


def test_exception_guard_logs_loop_errors(caplog: pytest.LogCaptureFixture) -> None:
    async def _run():
        loop = asyncio.get_running_loop()
        install_exception_guard(loop)
        loop.call_exception_handler({"message": "stray failure", "exception": RuntimeError("x")})

    with caplog.at_level(logging.ERROR, logger="proofmill.runtime"):
        asyncio.run(_run())
    assert metrics.snapshot()["counters"].get("unhandled_loop_errors_total") == 1
    assert any("stray failure" in r.getMessage() for r in caplog.records)


def test_metrics_prometheus_text() -> None:
    metrics.inc_counter("cycles_total", 2)
    metrics.set_gauge("session_generation", 3)
    metrics.add_gauge("submissions_in_flight", 2)
    metrics.add_gauge("submissions_in_flight", -1)

    text = metrics.format_prometheus()
    assert "proofmill_cycles_total 2\n" in text
    assert "proofmill_session_generation 3\n" in text
    assert "proofmill_submissions_in_flight 1\n" in text


class _ThreadRecordingServer:
    def __init__(self) -> None:
        self.stopped_on = None

    def stop(self) -> None:
        self.stopped_on = threading.current_thread()


def test_shutdown_stops_health_server_off_the_event_loop() -> None:
    async def _run():
        rig = await build_rig()
        ctx = AppContext(
            cfg=rig.cfg,
            sessions=rig.sessions,
            stats=rig.stats,
            registry=rig.registry,
            monitor=rig.monitor,
            scheduler=rig.scheduler,
            health=HealthState(),
        )
        server = _ThreadRecordingServer()
        ctx.health_server = server  # type: ignore[assignment]
        loop_thread = threading.current_thread()
        await ctx.shutdown()
        await ctx.shutdown()
        return rig, ctx, server, loop_thread

    rig, ctx, server, loop_thread = asyncio.run(_run())
    assert server.stopped_on is not None
    assert server.stopped_on is not loop_thread
    assert ctx.health.snapshot().status == "stopped"
    assert rig.ledger.clients[0].closed is True
    assert metrics.snapshot()["counters"].get("shutdown_total") == 1
