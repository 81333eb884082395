from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from proofmill.ledger.client import Included, Rejected, SubmissionClient
from proofmill.pipeline.classify import FailureKind, classify_failure
from proofmill.pipeline.config import PipelineConfig
from proofmill.pipeline.model import Account, Artifact, SubmissionOutcome, SubmissionTask
from proofmill.pipeline.pipeline_logging import log_event
from proofmill.pipeline.session import SessionLease, SessionManager
from proofmill.runtime.errors import (
    SessionConnectionError,
    SubmissionError,
    SubmissionTimeoutError,
    error_message,
)
from proofmill.runtime.metrics import add_gauge, inc_counter
from proofmill.storage.records import PersistenceSink, SubmissionRecord


log = logging.getLogger("proofmill.retry")

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class AttemptResult:
    """Uniform result of one raced submission attempt."""

    ok: bool
    included: Optional[Included] = None
    error: Optional[str] = None
    kind: Optional[FailureKind] = None
    elapsed_ms: int = 0


class RetryController:
    """Runs one submission chain: up to cfg.max_retries attempts.

    Each attempt races the ledger's event stream against the submission
    deadline and against the session lease being superseded. Failures are
    classified by classify_failure(); retryable ones wait cfg.retry_backoff_ms
    and, for connection-class failures, trigger a session reconnect before
    the next attempt.

    submit() never raises (except CancelledError at shutdown): exhausted or
    non-retryable chains come back as a failed SubmissionOutcome.
    """

    def __init__(
        self,
        *,
        sessions: SessionManager,
        verification_key: Any,
        cfg: PipelineConfig,
        records: Optional[PersistenceSink] = None,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._sessions = sessions
        self._vkey = verification_key
        self._cfg = cfg
        self._records = records
        self._sleep = sleep
        self._clock = clock

    async def submit(
        self,
        account: Account,
        artifact: Artifact,
        label: str,
        *,
        offset_ms: int = 0,
    ) -> SubmissionOutcome:
        add_gauge("submissions_in_flight", 1)
        try:
            return await self._run_chain(account, artifact, label, offset_ms=offset_ms)
        except Exception as e:
            log.exception("submission chain crashed account=%s label=%s", account.index, label)
            return SubmissionOutcome(account_index=account.index, label=label, ok=False, error=error_message(e))
        finally:
            add_gauge("submissions_in_flight", -1)

    async def _run_chain(self, account: Account, artifact: Artifact, label: str, *, offset_ms: int) -> SubmissionOutcome:
        max_retries = max(1, int(self._cfg.max_retries))
        started = self._clock()
        attempt = 0
        last_error: Optional[str] = None

        while attempt < max_retries:
            attempt += 1
            task = SubmissionTask(
                account_index=account.index,
                artifact_label=label,
                attempt=attempt,
                scheduled_offset_ms=offset_ms,
            )
            lease = self._sessions.current()
            inc_counter("submission_attempts_total", 1)
            log_event(log, "submission_attempt", generation=lease.generation, **task.as_fields())

            res = await self._attempt(lease, account.index, artifact)

            if res.ok:
                latency_ms = int((self._clock() - started) * 1000)
                inc_counter("submission_included_total", 1)
                included = res.included or Included()
                log_event(
                    log,
                    "submission_included",
                    statement=included.statement,
                    aggregation_id=included.aggregation_id,
                    latency_ms=latency_ms,
                    **task.as_fields(),
                )
                self._record(lease.account(account.index).handle, account.index, label, artifact, included)
                return SubmissionOutcome(
                    account_index=account.index,
                    label=label,
                    ok=True,
                    attempts=attempt,
                    latency_ms=latency_ms,
                    statement=included.statement,
                    aggregation_id=included.aggregation_id,
                )

            last_error = res.error
            kind = res.kind or FailureKind.FATAL
            log_event(
                log,
                "submission_attempt_failed",
                level=logging.WARNING,
                error=res.error,
                kind=kind.value,
                elapsed_ms=res.elapsed_ms,
                **task.as_fields(),
            )

            if not kind.retryable:
                inc_counter("submission_abandoned_total", 1)
                log_event(log, "submission_abandoned", level=logging.ERROR, error=res.error, **task.as_fields())
                break
            if attempt >= max_retries:
                inc_counter("submission_exhausted_total", 1)
                log_event(
                    log,
                    "submission_retries_exhausted",
                    level=logging.ERROR,
                    max_retries=max_retries,
                    error=res.error,
                    **task.as_fields(),
                )
                break

            inc_counter("submission_retries_total", 1)
            await self._sleep(self._cfg.retry_backoff_s)
            if kind.needs_reconnect:
                await self._sessions.reconnect(seen_generation=lease.generation, reason=res.error or "")

        return SubmissionOutcome(
            account_index=account.index,
            label=label,
            ok=False,
            attempts=attempt,
            error=last_error,
        )

    async def _attempt(self, lease: SessionLease, account_index: int, artifact: Artifact) -> AttemptResult:
        """Race: first terminal ledger event vs deadline vs lease superseded."""
        started = self._clock()
        handle = lease.account(account_index).handle
        submit_task = asyncio.ensure_future(self._first_terminal(lease.client, handle, artifact))
        stale_task = asyncio.ensure_future(lease.superseded.wait())

        def _elapsed() -> int:
            return int((self._clock() - started) * 1000)

        try:
            done, _ = await asyncio.wait(
                {submit_task, stale_task},
                timeout=self._cfg.submit_timeout_s,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for t in (submit_task, stale_task):
                if not t.done():
                    t.cancel()
            await asyncio.gather(submit_task, stale_task, return_exceptions=True)

        if submit_task in done:
            exc = submit_task.exception()
            if exc is None:
                return AttemptResult(ok=True, included=submit_task.result(), elapsed_ms=_elapsed())
            msg = error_message(exc)
            return AttemptResult(ok=False, error=msg, kind=classify_failure(msg), elapsed_ms=_elapsed())

        if stale_task in done:
            err = SessionConnectionError("stale_session", f"session generation {lease.generation} was superseded")
            return AttemptResult(ok=False, error=str(err), kind=FailureKind.STALE_SESSION, elapsed_ms=_elapsed())

        err = SubmissionTimeoutError(
            "submission_timeout",
            f"Submission timeout after {self._cfg.submit_timeout_s:g} seconds",
        )
        msg = str(err)
        return AttemptResult(ok=False, error=msg, kind=classify_failure(msg), elapsed_ms=_elapsed())

    async def _first_terminal(self, client: SubmissionClient, handle: Any, artifact: Artifact) -> Included:
        stream = client.submit(
            handle,
            verification_key=self._vkey,
            proof=artifact.proof,
            public_values=artifact.public_values,
            domain_id=self._cfg.domain_id,
        )
        if inspect.isawaitable(stream):
            stream = await stream

        try:
            async for event in stream:
                if isinstance(event, Included):
                    return event
                if isinstance(event, Rejected):
                    raise SubmissionError("rejected", event.cause)
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        raise SubmissionError("stream_closed", "event stream ended without inclusion")

    def _record(self, handle: Any, index: int, label: str, artifact: Artifact, included: Included) -> None:
        if self._records is None:
            return
        try:
            self._records.write_submission(
                SubmissionRecord(
                    account=str(handle),
                    account_index=index,
                    label=label,
                    statement=included.statement,
                    aggregation_id=included.aggregation_id,
                    public_signals_count=len(artifact.public_values),
                    input_summary=dict(artifact.input_summary),
                )
            )
        except Exception:
            log.exception("submission record failed account=%s label=%s", index, label)
