"""Submission failure classification.

The ledger client only reports free-text error messages, so retryability is
decided by matching a fixed table of case-sensitive substrings. Everything
that depends on the table goes through classify_failure(); a structured error
channel can replace it here without touching retry/backoff code.
"""

from __future__ import annotations

from enum import Enum
from typing import Tuple


class FailureKind(str, Enum):
    TRANSIENT = "transient"
    CONNECTION = "connection"
    STALE_SESSION = "stale_session"
    FATAL = "fatal"

    @property
    def retryable(self) -> bool:
        return self is not FailureKind.FATAL

    @property
    def needs_reconnect(self) -> bool:
        return self is FailureKind.CONNECTION


CONNECTION_PATTERNS: Tuple[str, ...] = (
    "disconnected",
    "Abnormal Closure",
    "not found in session",
)

TRANSIENT_PATTERNS: Tuple[str, ...] = (
    "Priority is too low",
    "already in the pool",
    "timeout",
    "Connection",
    "1014:",
)


def classify_failure(message: str) -> FailureKind:
    msg = str(message or "")
    # Connection loss wins over the generic "Connection" transient match.
    for pat in CONNECTION_PATTERNS:
        if pat in msg:
            return FailureKind.CONNECTION
    for pat in TRANSIENT_PATTERNS:
        if pat in msg:
            return FailureKind.TRANSIENT
    return FailureKind.FATAL
