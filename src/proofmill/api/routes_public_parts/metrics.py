from __future__ import annotations

from fastapi import APIRouter, Request, Response

from proofmill.runtime.metrics import format_prometheus, metrics_enabled


router = APIRouter()


@router.get("/metrics")
def metrics(request: Request) -> Response:
    """Process counters plus per-account submission totals.

    Off unless PROOFMILL_METRICS_ENABLED=1. The account series come from the
    pipeline detail the submitter attaches to HealthState, so a bare health
    app exports only the process counters.
    """
    if not metrics_enabled():
        return Response(status_code=404, content="not_found\n", media_type="text/plain")
    pipeline = request.app.state.health.detail()
    return Response(content=format_prometheus(pipeline=pipeline), media_type="text/plain; version=0.0.4")
