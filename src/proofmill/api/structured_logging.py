# src/proofmill/api/structured_logging.py
from __future__ import annotations

import logging
import os
import time
import uuid
from typing import Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from proofmill.pipeline.pipeline_logging import log_event

_SCRAPE_PATHS = frozenset({"/health", "/metrics"})


def configure_structured_logging() -> None:
    """Configure stdlib logging for JSONL output (stdout).

    - Level from PROOFMILL_LOG_LEVEL (default INFO).
    - Safe to call multiple times.
    """
    level_name = (os.environ.get("PROOFMILL_LOG_LEVEL") or "INFO").strip().upper()
    level = getattr(logging, level_name, logging.INFO)

    root = logging.getLogger()
    if getattr(root, "_proofmill_configured", False):  # type: ignore[attr-defined]
        root.setLevel(level)
        return

    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))

    root.handlers = [handler]
    root.setLevel(level)
    setattr(root, "_proofmill_configured", True)  # type: ignore[attr-defined]

    # uvicorn access lines duplicate RequestLogMiddleware
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


class RequestLogMiddleware(BaseHTTPMiddleware):
    """One http_request event per health/stats/metrics request.

    PROOFMILL_LOG_REQUESTS=0 turns it off. Scrapers hit /health and /metrics
    often, so those log at DEBUG; anything else (and any 5xx) logs at INFO.
    """

    def __init__(self, app) -> None:
        super().__init__(app)
        raw = (os.environ.get("PROOFMILL_LOG_REQUESTS") or "1").strip().lower()
        self._enabled = raw not in {"0", "false", "no", "n", "off"}
        self._logger = logging.getLogger("proofmill.http")

    async def dispatch(self, request: Request, call_next):
        if not self._enabled:
            return await call_next(request)

        started = time.monotonic()
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex

        status = 500
        err: Optional[str] = None
        response: Optional[Response] = None

        try:
            response = await call_next(request)
            status = int(getattr(response, "status_code", 200) or 200)
            return response
        except Exception as e:
            err = str(e)
            raise
        finally:
            dur_ms = int((time.monotonic() - started) * 1000)
            path = str(request.url.path or "")
            quiet = path in _SCRAPE_PATHS and status < 500 and err is None
            log_event(
                self._logger,
                "http_request",
                level=logging.DEBUG if quiet else logging.INFO,
                request_id=request_id,
                method=request.method,
                path=path,
                status=status,
                duration_ms=dur_ms,
                error=err,
            )
            if response is not None:
                response.headers.setdefault("x-request-id", request_id)
