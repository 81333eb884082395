from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from proofmill.pipeline.config import PipelineConfig
from proofmill.pipeline.generation import SlotAllocator, generate_artifact, settled
from proofmill.pipeline.model import Account, AccountRole, Cycle, PendingSubmission, SubmissionOutcome
from proofmill.pipeline.pipeline_logging import log_event
from proofmill.pipeline.retry import RetryController
from proofmill.pipeline.session import SessionManager
from proofmill.pipeline.staggered import StaggeredSubmitter, stagger_labels
from proofmill.pipeline.stats import StatsAggregator
from proofmill.prover.producer import ArtifactProducer
from proofmill.runtime.errors import GenerationError, error_message
from proofmill.runtime.tasks import TaskRegistry


log = logging.getLogger("proofmill.coordinator")


class WorkerCoordinator:
    """Per-cycle fan-out across the account roster.

    All accounts start at once. The coordinator waits only until every
    account has generated its artifact(s) and handed the submission(s) to a
    background task; the returned PendingSubmission list is what the result
    monitor settles. Generation failures come back as already-settled failed
    outcomes and never affect other accounts.
    """

    def __init__(
        self,
        *,
        sessions: SessionManager,
        producer: ArtifactProducer,
        retry: RetryController,
        stats: StatsAggregator,
        registry: TaskRegistry,
        cfg: PipelineConfig,
        slots: Optional[SlotAllocator] = None,
        staggered: Optional[StaggeredSubmitter] = None,
    ) -> None:
        self._sessions = sessions
        self._producer = producer
        self._retry = retry
        self._stats = stats
        self._registry = registry
        self._cfg = cfg
        self._slots = slots or SlotAllocator()
        self._staggered = staggered or StaggeredSubmitter(
            producer=producer,
            slots=self._slots,
            retry=retry,
            registry=registry,
            cfg=cfg,
        )

    def submissions_for(self, account: Account) -> int:
        if account.role is AccountRole.TRIPLE_PRIMARY:
            return self._staggered.artifacts_per_account
        return 1

    def _labels_for(self, cycle: Cycle, account: Account) -> List[str]:
        if account.role is AccountRole.TRIPLE_PRIMARY:
            return stagger_labels(cycle, account, self._staggered.artifacts_per_account)
        return [f"c{cycle.id}-a{account.index}"]

    async def dispatch(self, cycle: Cycle) -> List[PendingSubmission]:
        roster = self._sessions.current().roster
        expected = 0
        for account in roster:
            n = self.submissions_for(account)
            self._stats.record_dispatch(account.index, n)
            expected += n

        log_event(log, "cycle_dispatch_start", cycle=cycle.id, accounts=len(roster), expected_submissions=expected)

        groups = await asyncio.gather(*[self._run_account(cycle, account) for account in roster])
        pending = [p for group in groups for p in group]

        log_event(
            log,
            "cycle_dispatch_done",
            cycle=cycle.id,
            submissions=len(pending),
            generation_failures=sum(1 for p in pending if not isinstance(p.outcome, asyncio.Task)),
        )
        return pending

    async def _run_account(self, cycle: Cycle, account: Account) -> List[PendingSubmission]:
        try:
            if account.role is AccountRole.TRIPLE_PRIMARY:
                return await self._staggered.dispatch(cycle, account)
            return await self._run_single(cycle, account)
        except Exception as e:
            log.exception("account task crashed cycle=%s account=%s", cycle.id, account.index)
            err = error_message(e)
            return [
                settled(SubmissionOutcome.generation_failed(account.index, label, err))
                for label in self._labels_for(cycle, account)
            ]

    async def _run_single(self, cycle: Cycle, account: Account) -> List[PendingSubmission]:
        label = f"c{cycle.id}-a{account.index}"
        try:
            artifact = await generate_artifact(
                self._producer,
                self._slots,
                input_bits=self._cfg.input_bits,
                label=label,
            )
        except GenerationError as e:
            log_event(
                log,
                "generation_failed",
                level=logging.ERROR,
                cycle=cycle.id,
                account=account.index,
                label=label,
                error=str(e),
            )
            return [settled(SubmissionOutcome.generation_failed(account.index, label, str(e)))]

        task = self._registry.spawn(self._retry.submit(account, artifact, label), name=f"submit-{label}")
        return [PendingSubmission(account_index=account.index, label=label, outcome=task)]
