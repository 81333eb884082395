from __future__ import annotations

import asyncio
import hashlib
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional

from proofmill.ledger.client import AggregationCallback, AggregationReceipt, Included, LedgerEvent, Rejected


# Script steps understood by InMemoryLedger.plan():
#   "ok"            -> Included
#   "hang"          -> never yields (exercises the submission deadline)
#   "close"         -> stream ends without a terminal event
#   "<any text>"    -> Rejected(cause=<text>)
#   BaseException   -> raised from the stream
OK = "ok"
HANG = "hang"
CLOSE = "close"


@dataclass(slots=True)
class SubmitCall:
    account: Any
    at: float
    generation: int
    domain_id: int
    public_values_count: int


class InMemoryLedgerClient:
    """One session of the in-memory ledger."""

    def __init__(self, *, ledger: "InMemoryLedger", credential: str, generation: int) -> None:
        self._ledger = ledger
        self._credential = credential
        self.generation = generation
        self.closed = False
        self.subscriptions: List[tuple[AggregationCallback, int]] = []

    async def base_account(self) -> str:
        digest = hashlib.sha256(self._credential.encode("utf-8")).hexdigest()
        return f"mem{digest[:13]}"

    async def derive_accounts(self, base: str, count: int) -> List[str]:
        if self._ledger.derive_error is not None:
            raise self._ledger.derive_error
        return [f"{base}//{i}" for i in range(1, int(count) + 1)]

    def subscribe_aggregations(self, callback: AggregationCallback, *, domain_id: int) -> None:
        self.subscriptions.append((callback, int(domain_id)))

    async def close(self) -> None:
        self.closed = True

    async def submit(
        self,
        account: Any,
        *,
        verification_key: Any,
        proof: Any,
        public_values: List[Any],
        domain_id: int,
    ) -> AsyncIterator[LedgerEvent]:
        ledger = self._ledger
        ledger.calls.append(
            SubmitCall(
                account=account,
                at=ledger.clock(),
                generation=self.generation,
                domain_id=int(domain_id),
                public_values_count=len(public_values),
            )
        )
        step = ledger._next_step(account)

        if isinstance(step, BaseException):
            raise step
        if step == HANG:
            await asyncio.Event().wait()
            return
        if step == CLOSE:
            return

        await asyncio.sleep(0)
        if step == OK:
            ledger.included += 1
            yield Included(
                statement=f"0x{ledger.included:064x}",
                aggregation_id=ledger.included,
                block_hash=f"0x{self.generation:08x}{ledger.included:056x}",
            )
            return
        yield Rejected(cause=str(step))


class InMemoryLedger:
    """
    In-process ledger connector used by --dry-run and unit tests.

    - Opens no sockets
    - Includes every submission unless a scripted step says otherwise
    - Records every connect() and submit() for assertions

    Example:
        ledger = InMemoryLedger()
        ledger.plan(None, "timeout", "timeout", "ok")   # any account
        ledger.plan("mem...//3", "disconnected")        # one account
    """

    def __init__(self, *, clock=time.monotonic) -> None:
        self.clock = clock
        self.connects = 0
        self.clients: List[InMemoryLedgerClient] = []
        self.calls: List[SubmitCall] = []
        self.included = 0
        self.connect_error: Optional[BaseException] = None
        self.derive_error: Optional[BaseException] = None
        self._scripts: Dict[Any, List[Any]] = {}

    async def connect(self, credential: str) -> InMemoryLedgerClient:
        self.connects += 1
        if self.connect_error is not None:
            raise self.connect_error
        client = InMemoryLedgerClient(ledger=self, credential=credential, generation=self.connects)
        self.clients.append(client)
        return client

    def plan(self, account: Any, *steps: Any) -> None:
        self._scripts.setdefault(account, []).extend(steps)

    def _next_step(self, account: Any) -> Any:
        for key in (account, None):
            script = self._scripts.get(key)
            if script:
                return script.pop(0)
        return OK

    @property
    def current(self) -> Optional[InMemoryLedgerClient]:
        return self.clients[-1] if self.clients else None

    def emit_aggregation(self, receipt: AggregationReceipt) -> int:
        """Deliver a receipt to the current session's subscribers."""
        client = self.current
        if client is None:
            return 0
        n = 0
        for callback, domain_id in list(client.subscriptions):
            if domain_id != receipt.domain_id:
                continue
            callback(receipt)
            n += 1
        return n

    def calls_for(self, account: Any) -> List[SubmitCall]:
        return [c for c in self.calls if c.account == account]
