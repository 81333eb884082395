from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, List

from proofmill.pipeline.config import PipelineConfig
from proofmill.pipeline.generation import SlotAllocator, generate_artifact, settled
from proofmill.pipeline.model import Account, Artifact, Cycle, PendingSubmission, SubmissionOutcome
from proofmill.pipeline.pipeline_logging import log_event
from proofmill.pipeline.retry import RetryController
from proofmill.prover.producer import ArtifactProducer
from proofmill.runtime.errors import error_message
from proofmill.runtime.tasks import TaskRegistry


log = logging.getLogger("proofmill.staggered")

Sleep = Callable[[float], Awaitable[None]]


def stagger_labels(cycle: Cycle, account: Account, count: int) -> List[str]:
    return [f"c{cycle.id}-a{account.index}-{chr(ord('A') + i)}" for i in range(count)]


class StaggeredSubmitter:
    """Triple strategy for the distinguished account.

    Generates len(cfg.stagger_offsets_ms) artifacts concurrently, then starts
    their submission chains at fixed offsets from the moment all of them are
    ready (default 0 / 7000 / 13000 ms). Three submissions from one account
    landing in the same instant tend to collide in the ledger's pool.

    dispatch() returns as soon as the chains are scheduled.
    """

    def __init__(
        self,
        *,
        producer: ArtifactProducer,
        slots: SlotAllocator,
        retry: RetryController,
        registry: TaskRegistry,
        cfg: PipelineConfig,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._producer = producer
        self._slots = slots
        self._retry = retry
        self._registry = registry
        self._cfg = cfg
        self._sleep = sleep
        self._clock = clock

    @property
    def artifacts_per_account(self) -> int:
        return len(self._cfg.stagger_offsets_ms)

    async def dispatch(self, cycle: Cycle, account: Account) -> List[PendingSubmission]:
        offsets = list(self._cfg.stagger_offsets_ms)
        labels = stagger_labels(cycle, account, len(offsets))

        results = await asyncio.gather(
            *[
                generate_artifact(self._producer, self._slots, input_bits=self._cfg.input_bits, label=label)
                for label in labels
            ],
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, BaseException)]
        if failures:
            err = error_message(failures[0])
            log_event(
                log,
                "triple_generation_failed",
                level=logging.ERROR,
                cycle=cycle.id,
                account=account.index,
                failed=len(failures),
                error=err,
            )
            return [settled(SubmissionOutcome.generation_failed(account.index, label, err)) for label in labels]

        ready_at = self._clock()
        pending: List[PendingSubmission] = []
        for label, artifact, offset_ms in zip(labels, results, offsets):
            task = self._registry.spawn(
                self._submit_at(account, artifact, label, offset_ms=offset_ms, ready_at=ready_at),
                name=f"submit-{label}",
            )
            pending.append(PendingSubmission(account_index=account.index, label=label, outcome=task))

        log_event(
            log,
            "triple_scheduled",
            cycle=cycle.id,
            account=account.index,
            labels=labels,
            offsets_ms=offsets,
        )
        return pending

    async def _submit_at(
        self,
        account: Account,
        artifact: Artifact,
        label: str,
        *,
        offset_ms: int,
        ready_at: float,
    ) -> SubmissionOutcome:
        delay = max(0.0, ready_at + (offset_ms / 1000.0) - self._clock())
        if delay > 0:
            await self._sleep(delay)
        log_event(
            log,
            "staggered_submission_start",
            account=account.index,
            label=label,
            offset_ms=offset_ms,
            actual_offset_ms=int((self._clock() - ready_at) * 1000),
        )
        return await self._retry.submit(account, artifact, label, offset_ms=offset_ms)
