from __future__ import annotations

import logging
import os
import threading
import time
from dataclasses import dataclass
from typing import Optional

import uvicorn

from proofmill.api.app import create_app
from proofmill.api.health_state import HealthState
from proofmill.pipeline.pipeline_logging import log_event
from proofmill.runtime.metrics import inc_counter


log = logging.getLogger("proofmill.health")


def _env_int(name: str, default: int) -> int:
    v = os.environ.get(name)
    if v is None or not str(v).strip():
        return int(default)
    try:
        return int(str(v).strip())
    except Exception:
        return int(default)


@dataclass(frozen=True, slots=True)
class HealthConfig:
    host: str = "0.0.0.0"
    port: int = 8080


def health_config_from_env() -> HealthConfig:
    host = (os.environ.get("PROOFMILL_HEALTH_HOST") or "0.0.0.0").strip() or "0.0.0.0"
    port = _env_int("PROOFMILL_HEALTH_PORT", _env_int("PORT", 8080))
    if port < 0 or port > 65535:
        port = 8080
    return HealthConfig(host=host, port=port)


class HealthServer:
    """Runs the health app under uvicorn on a daemon thread.

    The pipeline's event loop stays the main loop; uvicorn gets its own loop
    on the server thread and never installs signal handlers there.
    """

    def __init__(
        self,
        health: HealthState,
        *,
        cfg: Optional[HealthConfig] = None,
        startup_timeout: float = 5.0,
    ) -> None:
        self._cfg = cfg or health_config_from_env()
        self._health = health
        self._startup_timeout = float(startup_timeout)
        self._server: Optional[uvicorn.Server] = None
        self._t: Optional[threading.Thread] = None
        self._started = False
        self._error: Optional[str] = None

    @property
    def started(self) -> bool:
        return self._started

    def start(self) -> bool:
        if self._started:
            return True
        config = uvicorn.Config(
            create_app(self._health),
            host=self._cfg.host,
            port=self._cfg.port,
            log_level="warning",
            access_log=False,
        )
        server = uvicorn.Server(config)
        self._server = server
        self._error = None
        self._t = threading.Thread(target=self._serve, name="proofmill-health", daemon=True)
        self._t.start()

        # uvicorn exits its thread (SystemExit) when the port cannot be bound.
        deadline = time.monotonic() + self._startup_timeout
        while not server.started and self._t.is_alive() and time.monotonic() < deadline:
            time.sleep(0.02)
        if not server.started:
            server.should_exit = True
            inc_counter("health_server_failed_total", 1)
            log_event(
                log,
                "health_server_failed",
                level=logging.ERROR,
                host=self._cfg.host,
                port=self._cfg.port,
                error=self._error or "startup_timeout",
            )
            return False

        self._started = True
        inc_counter("health_server_start_total", 1)
        log_event(log, "health_server_started", host=self._cfg.host, port=self._cfg.port)
        return True

    def _serve(self) -> None:
        server = self._server
        if server is None:
            return
        try:
            server.run()
        except (Exception, SystemExit) as e:
            self._error = f"{type(e).__name__}: {e}"
            if server.started:
                log_event(log, "health_server_crashed", level=logging.ERROR, error=self._error)

    def stop(self) -> None:
        if not self._started:
            return
        server = self._server
        if server is not None:
            server.should_exit = True
        t = self._t
        if t is not None:
            t.join(timeout=2.0)
        self._started = False
        inc_counter("health_server_stop_total", 1)
        log_event(log, "health_server_stopped")
