from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional


# No included proof for this long -> unhealthy
STALE_AFTER_MS = 300_000


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True, slots=True)
class HealthSnapshot:
    status: str
    started_ms: int
    last_proof_ms: Optional[int]
    total: int
    successful: int
    failed: int

    def success_rate(self) -> str:
        if self.total <= 0:
            return "0%"
        return f"{(self.successful / self.total) * 100:.1f}%"

    def healthy(self, now_ms: int) -> bool:
        if self.status != "running":
            return False
        if self.last_proof_ms is None:
            return True
        return (now_ms - self.last_proof_ms) < STALE_AFTER_MS


class HealthState:
    """Health reporting sink shared between the pipeline and the HTTP server.

    The pipeline pushes totals via update_stats(); the HTTP thread reads
    snapshots. Optional detail providers (per-account stats, scheduler state)
    are read best-effort.
    """

    def __init__(self, *, service: str = "proofmill", clock: Callable[[], int] = _now_ms) -> None:
        self.service = service
        self._clock = clock
        self._lock = threading.Lock()
        self._status = "starting"
        self._started_ms = clock()
        self._last_proof_ms: Optional[int] = None
        self._last_successful = 0
        self._total = 0
        self._successful = 0
        self._failed = 0
        self.details: Optional[Callable[[], Dict[str, Any]]] = None

    def now_ms(self) -> int:
        return self._clock()

    def set_status(self, status: str) -> None:
        with self._lock:
            self._status = str(status)

    def update_stats(self, total_attempts: int, successful: int, failed: int) -> None:
        with self._lock:
            self._total = int(total_attempts)
            if int(successful) > self._last_successful:
                self._last_proof_ms = self._clock()
            self._last_successful = int(successful)
            self._successful = int(successful)
            self._failed = int(failed)

    def snapshot(self) -> HealthSnapshot:
        with self._lock:
            return HealthSnapshot(
                status=self._status,
                started_ms=self._started_ms,
                last_proof_ms=self._last_proof_ms,
                total=self._total,
                successful=self._successful,
                failed=self._failed,
            )

    def detail(self) -> Dict[str, Any]:
        fn = self.details
        if fn is None:
            return {}
        try:
            out = fn()
        except Exception:
            return {}
        return out if isinstance(out, dict) else {}
