"""
proofmill — process metrics

Two sources feed the /metrics exposition:
  * process-wide counters/gauges bumped from the pipeline (attempts,
    retries, reconnects, in-flight submissions, task registry sizes)
  * a pipeline detail snapshot (StatsAggregator totals plus the current
    session generation) read at scrape time

Only integers are exported. Everything here is safe to call from the HTTP
server thread.
"""

from __future__ import annotations

import os
import threading
import time
from typing import Any, Dict, List, Mapping, Optional


_lock = threading.Lock()
_counters: Dict[str, int] = {}
_gauges: Dict[str, int] = {}
_started_ms = int(time.time() * 1000)

# StatsAggregator field -> exported series name
_ACCOUNT_SERIES = (
    ("submitted", "account_submitted_total"),
    ("successful", "account_successful_total"),
    ("failed", "account_failed_total"),
)
_GLOBAL_SERIES = (
    ("total_attempts", "proofs_submitted_total"),
    ("successful", "proofs_successful_total"),
    ("failed", "proofs_failed_total"),
    ("cycles", "cycles_completed_total"),
)


def metrics_enabled() -> bool:
    v = (os.environ.get("PROOFMILL_METRICS_ENABLED") or "").strip().lower()
    return v in {"1", "true", "yes", "y", "on"}


def _name(name: str) -> str:
    return str(name or "").strip()


def inc_counter(name: str, value: int = 1) -> None:
    n = _name(name)
    if not n:
        return
    with _lock:
        _counters[n] = _counters.get(n, 0) + int(value)


def set_gauge(name: str, value: int) -> None:
    n = _name(name)
    if not n:
        return
    with _lock:
        _gauges[n] = int(value)


def add_gauge(name: str, delta: int) -> None:
    """Move a gauge up or down (in-flight submissions)."""
    n = _name(name)
    if not n:
        return
    with _lock:
        _gauges[n] = _gauges.get(n, 0) + int(delta)


def snapshot() -> dict:
    now = int(time.time() * 1000)
    with _lock:
        return {
            "ts_ms": now,
            "started_ms": _started_ms,
            "uptime_ms": now - _started_ms,
            "counters": dict(_counters),
            "gauges": dict(_gauges),
        }


def reset() -> None:
    """Drop all counters and gauges (tests)."""
    with _lock:
        _counters.clear()
        _gauges.clear()


def _int_or_none(v: Any) -> Optional[int]:
    if isinstance(v, bool) or v is None:
        return None
    try:
        return int(v)
    except (TypeError, ValueError):
        return None


def _pipeline_lines(pre: str, pipeline: Mapping[str, Any]) -> List[str]:
    lines: List[str] = []

    totals = pipeline.get("global")
    if isinstance(totals, Mapping):
        for field_name, series in _GLOBAL_SERIES:
            v = _int_or_none(totals.get(field_name))
            if v is not None:
                lines.append(f"# TYPE {pre}{series} counter")
                lines.append(f"{pre}{series} {v}")

    accounts = pipeline.get("accounts")
    if isinstance(accounts, Mapping) and accounts:
        # Roster slots sort numerically, not as strings ("10" after "9").
        order = sorted(accounts, key=lambda k: (len(str(k)), str(k)))
        for field_name, series in _ACCOUNT_SERIES:
            lines.append(f"# TYPE {pre}{series} counter")
            for k in order:
                st = accounts[k]
                v = _int_or_none(st.get(field_name)) if isinstance(st, Mapping) else None
                if v is not None:
                    lines.append(f'{pre}{series}{{account="{k}"}} {v}')

    return lines


def format_prometheus(prefix: str = "proofmill_", *, pipeline: Optional[Mapping[str, Any]] = None) -> str:
    """Prometheus exposition text.

    `pipeline` is the AppContext.pipeline_detail() shape: StatsAggregator's
    snapshot ("global", "accounts") plus "session_generation". When given,
    its session generation wins over the process gauge of the same name.
    """
    pre = _name(prefix) or "proofmill_"
    snap = snapshot()
    counters: Dict[str, int] = snap["counters"]
    gauges: Dict[str, int] = snap["gauges"]

    if pipeline:
        gen = _int_or_none(pipeline.get("session_generation"))
        if gen is not None:
            gauges["session_generation"] = gen

    lines: List[str] = [f"{pre}uptime_ms {snap['uptime_ms']}"]
    for k in sorted(counters):
        lines.append(f"{pre}{k} {counters[k]}")
    for k in sorted(gauges):
        lines.append(f"{pre}{k} {gauges[k]}")

    if pipeline:
        lines.extend(_pipeline_lines(pre, pipeline))

    return "\n".join(lines) + "\n"
