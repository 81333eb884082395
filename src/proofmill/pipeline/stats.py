from __future__ import annotations

import threading
from dataclasses import asdict, dataclass, field
from typing import Dict, Iterable, List, Optional, Protocol

from proofmill.pipeline.model import SubmissionOutcome, now_ms


class HealthReportingSink(Protocol):
    """Push-only consumer of global totals (never blocks the pipeline)."""

    def update_stats(self, total_attempts: int, successful: int, failed: int) -> None: ...


@dataclass(slots=True)
class AccountStats:
    submitted: int = 0
    successful: int = 0
    failed: int = 0

    @property
    def settled(self) -> int:
        return self.successful + self.failed

    @property
    def in_flight(self) -> int:
        return self.submitted - self.settled

    def success_rate(self) -> float:
        if self.submitted <= 0:
            return 0.0
        return (self.successful / self.submitted) * 100.0


@dataclass(slots=True)
class GlobalStats:
    total_attempts: int = 0
    successful: int = 0
    failed: int = 0
    cycles: int = 0
    started_ms: int = field(default_factory=now_ms)


class StatsAggregator:
    """Per-account and global submission counters.

    Writers:
      - record_dispatch(): WorkerCoordinator, once per dispatched artifact
      - record_outcome(): AsyncResultMonitor, once per settled outcome

    Counters only ever increase, so successful + failed <= submitted holds
    for every account at every instant.

    A lock guards the counters because the health endpoint reads them from
    the HTTP server thread.
    """

    def __init__(self, *, sink: Optional[HealthReportingSink] = None) -> None:
        self._lock = threading.Lock()
        self._accounts: Dict[int, AccountStats] = {}
        self._global = GlobalStats()
        self._sink = sink

    def attach_sink(self, sink: Optional[HealthReportingSink]) -> None:
        self._sink = sink

    def ensure_accounts(self, indices: Iterable[int]) -> None:
        with self._lock:
            for i in indices:
                self._accounts.setdefault(int(i), AccountStats())

    def record_cycle(self) -> int:
        with self._lock:
            self._global.cycles += 1
            return self._global.cycles

    def record_dispatch(self, account_index: int, count: int = 1) -> None:
        n = max(0, int(count))
        with self._lock:
            st = self._accounts.setdefault(int(account_index), AccountStats())
            st.submitted += n
            self._global.total_attempts += n

    def record_outcome(self, outcome: SubmissionOutcome) -> None:
        with self._lock:
            st = self._accounts.setdefault(int(outcome.account_index), AccountStats())
            if outcome.ok:
                st.successful += 1
                self._global.successful += 1
            else:
                st.failed += 1
                self._global.failed += 1

    def publish(self) -> None:
        sink = self._sink
        if sink is None:
            return
        g = self.global_stats()
        sink.update_stats(g.total_attempts, g.successful, g.failed)

    def account(self, index: int) -> AccountStats:
        with self._lock:
            st = self._accounts.get(int(index)) or AccountStats()
            return AccountStats(st.submitted, st.successful, st.failed)

    def global_stats(self) -> GlobalStats:
        with self._lock:
            g = self._global
            return GlobalStats(g.total_attempts, g.successful, g.failed, g.cycles, g.started_ms)

    def accounts(self) -> Dict[int, AccountStats]:
        with self._lock:
            return {i: AccountStats(s.submitted, s.successful, s.failed) for i, s in sorted(self._accounts.items())}

    def snapshot(self) -> dict:
        g = self.global_stats()
        return {
            "global": asdict(g),
            "accounts": {str(i): asdict(s) for i, s in self.accounts().items()},
        }

    def summary_lines(self) -> List[str]:
        lines: List[str] = []
        for i, st in self.accounts().items():
            lines.append(
                f"account {i + 1}: {st.successful}/{st.submitted} successful ({st.success_rate():.1f}%)"
            )
        return lines
