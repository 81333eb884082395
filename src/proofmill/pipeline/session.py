from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from proofmill.ledger.client import AggregationReceipt, LedgerConnector, SubmissionClient
from proofmill.pipeline.model import Account, AccountRole, build_roster
from proofmill.pipeline.pipeline_logging import log_event
from proofmill.runtime.errors import InitializationError, error_message
from proofmill.runtime.metrics import inc_counter, set_gauge


log = logging.getLogger("proofmill.session")


@dataclass(slots=True)
class SessionLease:
    """One generation of the ledger session and the roster derived from it.

    A lease is replaced wholesale on reconnect. Holders of an old lease can
    await `superseded` to learn that their client is no longer current.
    """

    generation: int
    client: SubmissionClient
    roster: List[Account]
    superseded: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def is_current(self) -> bool:
        return not self.superseded.is_set()

    def account(self, index: int) -> Account:
        return self.roster[index]


class SessionManager:
    """Owns the versioned ledger session.

    - start(): first connect + roster derivation (InitializationError on failure)
    - reconnect(): rebuild the session after a connection-class failure;
      concurrent callers that saw the same generation share one reconnect
    """

    def __init__(
        self,
        *,
        connector: LedgerConnector,
        credential: str,
        account_count: int,
        triple_accounts: Sequence[int],
        domain_id: int = 0,
        on_aggregation: Optional[Callable[[AggregationReceipt], None]] = None,
    ) -> None:
        self._connector = connector
        self._credential = credential
        self._account_count = int(account_count)
        self._triple_accounts = tuple(triple_accounts)
        self._domain_id = int(domain_id)
        self._on_aggregation = on_aggregation
        self._lease: Optional[SessionLease] = None
        self._lock = asyncio.Lock()
        self.reconnects = 0

    @property
    def started(self) -> bool:
        return self._lease is not None

    def current(self) -> SessionLease:
        if self._lease is None:
            raise InitializationError("session_not_started", "ledger session has not been started")
        return self._lease

    @property
    def roster(self) -> List[Account]:
        return list(self.current().roster)

    async def _establish(self, generation: int) -> SessionLease:
        client = await self._connector.connect(self._credential)
        base = await client.base_account()
        derived = await client.derive_accounts(base, self._account_count - 1)
        handles = [base, *derived]
        if len(handles) != self._account_count:
            raise InitializationError(
                "roster_mismatch",
                f"expected {self._account_count} accounts, derived {len(handles)}",
            )
        if self._on_aggregation is not None:
            client.subscribe_aggregations(self._on_aggregation, domain_id=self._domain_id)
        roster = build_roster(handles, triple_accounts=self._triple_accounts)
        return SessionLease(generation=generation, client=client, roster=roster)

    async def start(self) -> SessionLease:
        async with self._lock:
            if self._lease is not None:
                return self._lease
            try:
                lease = await self._establish(1)
            except InitializationError:
                raise
            except Exception as e:
                raise InitializationError("session_bootstrap_failed", error_message(e)) from e
            self._lease = lease
            set_gauge("session_generation", lease.generation)
            log_event(
                log,
                "session_started",
                generation=lease.generation,
                accounts=[str(a.handle) for a in lease.roster],
                triple_accounts=[a.index for a in lease.roster if a.role is AccountRole.TRIPLE_PRIMARY],
            )
            return lease

    async def reconnect(self, *, seen_generation: int, reason: str = "") -> SessionLease:
        """Replace the session and roster unless someone already did.

        Never raises: on failure the current lease stays in place and the
        next attempt will surface the problem again.
        """
        async with self._lock:
            old = self.current()
            if old.generation != int(seen_generation):
                return old

            log_event(log, "session_reconnect_start", generation=old.generation, reason=reason)
            try:
                lease = await self._establish(old.generation + 1)
            except Exception as e:
                inc_counter("session_reconnect_failures_total", 1)
                log_event(
                    log,
                    "session_reconnect_failed",
                    level=logging.ERROR,
                    generation=old.generation,
                    error=error_message(e),
                )
                return old

            self._lease = lease
            self.reconnects += 1
            old.superseded.set()
            inc_counter("session_reconnects_total", 1)
            set_gauge("session_generation", lease.generation)
            log_event(
                log,
                "session_reconnected",
                generation=lease.generation,
                accounts=len(lease.roster),
            )

        try:
            await old.client.close()
        except Exception:
            log.exception("closing superseded session failed")
        return lease

    async def close(self) -> None:
        lease = self._lease
        if lease is None:
            return
        lease.superseded.set()
        try:
            await lease.client.close()
        except Exception:
            log.exception("closing session failed")
