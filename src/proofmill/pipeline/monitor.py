from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from proofmill.pipeline.model import Cycle, PendingSubmission, SubmissionOutcome
from proofmill.pipeline.pipeline_logging import log_event
from proofmill.pipeline.stats import StatsAggregator
from proofmill.runtime.errors import error_message
from proofmill.runtime.metrics import inc_counter
from proofmill.runtime.tasks import TaskRegistry


log = logging.getLogger("proofmill.monitor")


@dataclass(frozen=True, slots=True)
class CycleReport:
    cycle_id: int
    total: int
    successful: int
    failed: int
    generation_failures: int
    latency_min_ms: Optional[int] = None
    latency_avg_ms: Optional[int] = None
    latency_max_ms: Optional[int] = None


def build_report(cycle: Cycle, outcomes: Sequence[SubmissionOutcome]) -> CycleReport:
    ok = [o for o in outcomes if o.ok]
    lat = [int(o.latency_ms) for o in ok if o.latency_ms is not None]
    return CycleReport(
        cycle_id=cycle.id,
        total=len(outcomes),
        successful=len(ok),
        failed=len(outcomes) - len(ok),
        generation_failures=len([o for o in outcomes if o.stage == "generation"]),
        latency_min_ms=min(lat) if lat else None,
        latency_avg_ms=int(sum(lat) / len(lat)) if lat else None,
        latency_max_ms=max(lat) if lat else None,
    )


class AsyncResultMonitor:
    """Settles one cycle's submissions in the background.

    Each outcome updates the stats as soon as it resolves; a report is
    logged once the whole cycle has settled. Nothing escapes settle().
    """

    def __init__(self, *, stats: StatsAggregator, registry: TaskRegistry) -> None:
        self._stats = stats
        self._registry = registry
        self.reports: List[CycleReport] = []

    def watch(self, cycle: Cycle, pending: Sequence[PendingSubmission]) -> "asyncio.Task[Optional[CycleReport]]":
        return self._registry.spawn(self.settle(cycle, list(pending)), name=f"monitor-c{cycle.id}")

    async def settle(self, cycle: Cycle, pending: Sequence[PendingSubmission]) -> Optional[CycleReport]:
        try:
            outcomes = await asyncio.gather(*[self._settle_one(p) for p in pending])
            report = build_report(cycle, outcomes)
            self.reports.append(report)
            log_event(
                log,
                "cycle_settled",
                cycle=report.cycle_id,
                total=report.total,
                successful=report.successful,
                failed=report.failed,
                generation_failures=report.generation_failures,
                latency_min_ms=report.latency_min_ms,
                latency_avg_ms=report.latency_avg_ms,
                latency_max_ms=report.latency_max_ms,
            )
            for line in self._stats.summary_lines():
                log.info(line)
            return report
        except Exception:
            inc_counter("monitor_errors_total", 1)
            log.exception("result monitor failed cycle=%s", cycle.id)
            return None

    async def _settle_one(self, p: PendingSubmission) -> SubmissionOutcome:
        try:
            outcome = await p.outcome
        except Exception as e:
            # RetryController does not raise; this only covers bugs.
            outcome = SubmissionOutcome(account_index=p.account_index, label=p.label, ok=False, error=error_message(e))

        self._stats.record_outcome(outcome)
        inc_counter("outcomes_successful_total" if outcome.ok else "outcomes_failed_total", 1)
        try:
            self._stats.publish()
        except Exception:
            log.exception("health sink update failed")
        return outcome
