from __future__ import annotations

from proofmill.pipeline.model import SubmissionOutcome
from proofmill.pipeline.stats import StatsAggregator


def _ok(i: int) -> SubmissionOutcome:
    return SubmissionOutcome(account_index=i, label="x", ok=True)


def _fail(i: int) -> SubmissionOutcome:
    return SubmissionOutcome(account_index=i, label="x", ok=False, error="timeout")


def test_settled_never_exceeds_submitted() -> None:
    stats = StatsAggregator()
    stats.ensure_accounts([0, 1])
    stats.record_dispatch(0, 3)
    stats.record_dispatch(1, 1)

    events = [_ok(0), _fail(1), _fail(0), _ok(0)]
    for ev in events:
        stats.record_outcome(ev)
        for st in stats.accounts().values():
            assert st.successful + st.failed <= st.submitted

    a0 = stats.account(0)
    assert (a0.submitted, a0.successful, a0.failed) == (3, 2, 1)
    assert a0.in_flight == 0
    g = stats.global_stats()
    assert (g.total_attempts, g.successful, g.failed) == (4, 2, 2)


def test_snapshot_and_summary() -> None:
    stats = StatsAggregator()
    stats.record_dispatch(0, 2)
    stats.record_outcome(_ok(0))
    assert stats.record_cycle() == 1

    snap = stats.snapshot()
    assert snap["global"]["cycles"] == 1
    assert snap["accounts"]["0"] == {"submitted": 2, "successful": 1, "failed": 0}
    assert stats.summary_lines() == ["account 1: 1/2 successful (50.0%)"]


def test_unknown_account_reads_as_zero() -> None:
    stats = StatsAggregator()
    st = stats.account(9)
    assert (st.submitted, st.successful, st.failed) == (0, 0, 0)
    assert st.success_rate() == 0.0
