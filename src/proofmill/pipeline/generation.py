from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import AsyncIterator, Callable, List, Sequence, Set

from proofmill.pipeline.model import Artifact, PendingSubmission, SubmissionOutcome
from proofmill.pipeline.pipeline_logging import log_event
from proofmill.prover.inputs import random_input_bits, summarize_input
from proofmill.prover.producer import ArtifactProducer
from proofmill.runtime.errors import GenerationError, error_message
from proofmill.runtime.metrics import inc_counter


log = logging.getLogger("proofmill.generation")


class SlotAllocator:
    """Leases the lowest free slot number.

    Slots are unique among all outstanding generation calls, so producers
    can key temp files by slot without collisions. Released slots are
    reused, which keeps the set of temp paths bounded.
    """

    def __init__(self) -> None:
        self._in_use: Set[int] = set()

    @property
    def in_use(self) -> List[int]:
        return sorted(self._in_use)

    def acquire(self) -> int:
        slot = 0
        while slot in self._in_use:
            slot += 1
        self._in_use.add(slot)
        return slot

    def release(self, slot: int) -> None:
        self._in_use.discard(slot)

    @contextlib.asynccontextmanager
    async def lease(self) -> AsyncIterator[int]:
        slot = self.acquire()
        try:
            yield slot
        finally:
            self.release(slot)


async def generate_artifact(
    producer: ArtifactProducer,
    slots: SlotAllocator,
    *,
    input_bits: int,
    label: str,
    make_input: Callable[[int], Sequence[int]] = random_input_bits,
) -> Artifact:
    """Witness then proof for one fresh random input. Never retried.

    Any failure surfaces as GenerationError.
    """
    bits = make_input(input_bits)
    summary = summarize_input(bits)
    started = time.monotonic()
    async with slots.lease() as slot:
        try:
            await producer.generate_witness(bits, slot)
            proof, public_values = await producer.generate_proof(slot)
        except GenerationError:
            inc_counter("generation_failures_total", 1)
            raise
        except Exception as e:
            inc_counter("generation_failures_total", 1)
            raise GenerationError("generation_failed", error_message(e)) from e

    inc_counter("artifacts_generated_total", 1)
    log_event(
        log,
        "artifact_generated",
        label=label,
        slot=slot,
        ones=summary["ones_count"],
        public_signals=len(public_values),
        duration_ms=int((time.monotonic() - started) * 1000),
    )
    return Artifact(proof=proof, public_values=list(public_values), input_summary=summary, slot=slot)


def settled(outcome: SubmissionOutcome) -> PendingSubmission:
    """Wrap an outcome that is already known (e.g. failed generation)."""
    fut: "asyncio.Future[SubmissionOutcome]" = asyncio.get_running_loop().create_future()
    fut.set_result(outcome)
    return PendingSubmission(account_index=outcome.account_index, label=outcome.label, outcome=fut)
