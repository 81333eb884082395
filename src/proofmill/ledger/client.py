"""
proofmill — Ledger client interfaces

Goal:
  Keep the pipeline independent of any particular ledger SDK. The pipeline
  needs only:
    * an opaque account handle per roster slot
    * an opaque submit operation that eventually reports inclusion or failure
    * a way to rebuild the session from the original credential

This module is pure structure: no network code here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Protocol, Union, runtime_checkable


# ---------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class Included:
    """The submission was included in a block."""
    statement: Optional[str] = None
    aggregation_id: Optional[int] = None
    block_hash: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Rejected:
    """The ledger (or the client) reported an error for this submission."""
    cause: str


LedgerEvent = Union[Included, Rejected]


@dataclass(frozen=True, slots=True)
class AggregationReceipt:
    block_hash: str
    domain_id: int
    aggregation_id: int


AggregationCallback = Callable[[AggregationReceipt], None]


# ---------------------------------------------------------------------
# Client interface
# ---------------------------------------------------------------------

@runtime_checkable
class SubmissionClient(Protocol):
    """
    A live ledger session bound to one credential.

    submit() returns an async iterator of events; the first Included or
    Rejected is terminal for that submission. Closing the iterator early is
    allowed.
    """

    async def base_account(self) -> Any: ...
    async def derive_accounts(self, base: Any, count: int) -> List[Any]: ...

    def submit(
        self,
        account: Any,
        *,
        verification_key: Any,
        proof: Any,
        public_values: List[Any],
        domain_id: int,
    ) -> AsyncIterator[LedgerEvent]: ...

    def subscribe_aggregations(self, callback: AggregationCallback, *, domain_id: int) -> None: ...

    async def close(self) -> None: ...


@runtime_checkable
class LedgerConnector(Protocol):
    """Builds a fresh SubmissionClient from the original credential."""

    async def connect(self, credential: str) -> SubmissionClient: ...


def parse_aggregation_id(v: Any) -> int:
    """Aggregation ids arrive as ints or as display strings like "1,234"."""
    if isinstance(v, bool):
        raise ValueError("aggregation id must be numeric")
    if isinstance(v, int):
        return v
    s = str(v or "").replace(",", "").replace("_", "").strip()
    return int(s)
