from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse, JSONResponse

from proofmill import __version__
from proofmill.api.health_state import HealthSnapshot, HealthState
from proofmill.api.schemas import HealthPayload, ProofCounts, RuntimeInfo, StatsPayload

router = APIRouter()


def _iso(ms: Optional[int]) -> Optional[str]:
    if ms is None:
        return None
    return datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc).isoformat().replace("+00:00", "Z")


def _state(request: Request) -> HealthState:
    return request.app.state.health


def _counts(snap: HealthSnapshot) -> ProofCounts:
    return ProofCounts(
        total=snap.total,
        successful=snap.successful,
        failed=snap.failed,
        success_rate=snap.success_rate(),
    )


@router.get("/health", response_model=HealthPayload)
def health(request: Request) -> JSONResponse:
    st = _state(request)
    now = st.now_ms()
    snap = st.snapshot()
    healthy = snap.healthy(now)
    payload = HealthPayload(
        status="healthy" if healthy else "unhealthy",
        service=st.service,
        version=__version__,
        uptime_s=max(0, (now - snap.started_ms) // 1000),
        timestamp=_iso(now) or "",
        last_proof_time=_iso(snap.last_proof_ms),
        proofs=_counts(snap),
    )
    return JSONResponse(status_code=200 if healthy else 503, content=payload.model_dump())


@router.get("/stats", response_model=StatsPayload)
def stats(request: Request) -> StatsPayload:
    st = _state(request)
    now = st.now_ms()
    snap = st.snapshot()
    runtime_ms = max(0, now - snap.started_ms)
    hours, rem = divmod(runtime_ms, 3_600_000)
    minutes = rem // 60_000
    return StatsPayload(
        service=st.service,
        status=snap.status,
        runtime=RuntimeInfo(milliseconds=runtime_ms, formatted=f"{hours}h {minutes}m"),
        proofs=_counts(snap),
        last_proof_time=_iso(snap.last_proof_ms),
        timestamp=_iso(now) or "",
        pipeline=st.detail(),
    )


_INDEX_HTML = """<!DOCTYPE html>
<html>
<head><title>{service}</title></head>
<body>
  <h1>{service}</h1>
  <p>Status: <strong>{status}</strong></p>
  <ul>
    <li>Total proofs: {total}</li>
    <li>Successful: {successful}</li>
    <li>Failed: {failed}</li>
    <li>Success rate: {rate}</li>
    <li>Last proof: {last}</li>
  </ul>
  <p><a href="/health">health</a> | <a href="/stats">stats</a></p>
</body>
</html>
"""


@router.get("/", response_class=HTMLResponse)
def index(request: Request) -> HTMLResponse:
    st = _state(request)
    snap = st.snapshot()
    return HTMLResponse(
        _INDEX_HTML.format(
            service=st.service,
            status=snap.status,
            total=snap.total,
            successful=snap.successful,
            failed=snap.failed,
            rate=snap.success_rate(),
            last=_iso(snap.last_proof_ms) or "none yet",
        )
    )
