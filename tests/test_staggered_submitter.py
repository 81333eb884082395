from __future__ import annotations

import asyncio

from pipeline_harness import build_rig, make_cfg
from proofmill.pipeline.model import Cycle
from proofmill.testing.fakes import StaticProducer


def _fixed_clock() -> float:
    return 1_000.0


def test_triple_account_submits_three_artifacts_at_staggered_offsets() -> None:
    async def _run():
        rig = await build_rig(make_cfg(account_count=1, triple_accounts=(0,)), clock=_fixed_clock)
        rc = await rig.scheduler.run_once()
        return rig, rc

    rig, rc = asyncio.run(_run())
    assert rc == 0
    st = rig.stats.account(0)
    assert (st.submitted, st.successful, st.failed) == (3, 3, 0)
    # Offset 0 starts immediately; the others wait relative to readiness.
    assert rig.stagger_sleep.delays == [7.0, 13.0]
    assert len(rig.ledger.calls) == 3
    assert rig.retry_sleep.delays == []


def test_stagger_offsets_are_measured_from_artifact_readiness() -> None:
    now = [500.0]

    def _clock() -> float:
        return now[0]

    class _SlowProducer(StaticProducer):
        async def generate_proof(self, slot):
            now[0] += 2.0
            return await super().generate_proof(slot)

    async def _run():
        rig = await build_rig(
            make_cfg(account_count=1, triple_accounts=(0,)),
            producer=_SlowProducer(),
            clock=_clock,
        )
        pending = await rig.coordinator.dispatch(Cycle(id=1))
        outcomes = await asyncio.gather(*[p.outcome for p in pending])
        return rig, pending, outcomes

    rig, pending, outcomes = asyncio.run(_run())
    assert now[0] == 506.0
    assert [p.label for p in pending] == ["c1-a0-A", "c1-a0-B", "c1-a0-C"]
    # Generation time is not subtracted from the offsets.
    assert rig.stagger_sleep.delays == [7.0, 13.0]
    assert all(o.ok for o in outcomes)


def test_any_triple_generation_failure_fails_all_three() -> None:
    async def _run():
        producer = StaticProducer(fail_calls={2})
        rig = await build_rig(make_cfg(account_count=1, triple_accounts=(0,)), producer=producer)
        rc = await rig.scheduler.run_once()
        return rig, rc

    rig, rc = asyncio.run(_run())
    assert rc == 0
    st = rig.stats.account(0)
    assert (st.submitted, st.successful, st.failed) == (3, 0, 3)
    assert rig.ledger.calls == []
    report = rig.monitor.reports[0]
    assert report.generation_failures == 3


def test_custom_offsets_change_artifact_count() -> None:
    async def _run():
        cfg = make_cfg(account_count=2, triple_accounts=(1,), stagger_offsets_ms=(0, 4_000))
        rig = await build_rig(cfg, clock=_fixed_clock)
        await rig.scheduler.run_once()
        return rig

    rig = asyncio.run(_run())
    assert rig.stats.account(1).submitted == 2
    assert rig.stats.global_stats().total_attempts == 3
    assert rig.stagger_sleep.delays == [4.0]


