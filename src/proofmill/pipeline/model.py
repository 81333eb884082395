from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Dict, List, Optional, Sequence

Json = Dict[str, Any]


def now_ms() -> int:
    return int(time.time() * 1000)


class AccountRole(str, Enum):
    SINGLE = "single"
    TRIPLE_PRIMARY = "triple_primary"


@dataclass(frozen=True, slots=True)
class Account:
    """One logical submitting identity.

    `handle` is opaque to the pipeline; it is whatever the ledger client
    derived for this roster slot.
    """

    index: int
    handle: Any
    role: AccountRole = AccountRole.SINGLE

    @property
    def short(self) -> str:
        s = str(self.handle)
        return f"{s[:8]}..." if len(s) > 8 else s


def build_roster(handles: Sequence[Any], *, triple_accounts: Sequence[int]) -> List[Account]:
    triples = set(int(i) for i in triple_accounts)
    return [
        Account(
            index=i,
            handle=h,
            role=AccountRole.TRIPLE_PRIMARY if i in triples else AccountRole.SINGLE,
        )
        for i, h in enumerate(handles)
    ]


@dataclass(frozen=True, slots=True)
class Artifact:
    proof: Any
    public_values: List[Any]
    input_summary: Json = field(default_factory=dict)
    slot: int = -1


@dataclass(frozen=True, slots=True)
class SubmissionTask:
    """One attempt of one submission chain (log/trace only, never persisted)."""

    account_index: int
    artifact_label: str
    attempt: int
    scheduled_offset_ms: int = 0

    def as_fields(self) -> Json:
        return {
            "account": self.account_index,
            "label": self.artifact_label,
            "attempt": self.attempt,
            "offset_ms": self.scheduled_offset_ms,
        }


@dataclass(frozen=True, slots=True)
class Cycle:
    id: int
    started_ms: int = field(default_factory=now_ms)


@dataclass(frozen=True, slots=True)
class SubmissionOutcome:
    """Settled result of one submission task (or of its failed generation)."""

    account_index: int
    label: str
    ok: bool
    attempts: int = 0
    latency_ms: Optional[int] = None
    stage: str = "submission"  # "generation" | "submission"
    error: Optional[str] = None
    statement: Optional[str] = None
    aggregation_id: Optional[int] = None

    @classmethod
    def generation_failed(cls, account_index: int, label: str, error: str) -> "SubmissionOutcome":
        return cls(account_index=account_index, label=label, ok=False, attempts=0, stage="generation", error=error)


@dataclass(frozen=True, slots=True)
class PendingSubmission:
    """A dispatched submission chain whose outcome the monitor will collect."""

    account_index: int
    label: str
    outcome: Awaitable[SubmissionOutcome]
