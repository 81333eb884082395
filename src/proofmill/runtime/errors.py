from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class PipelineError(Exception):
    """Canonical error type for pipeline failures."""

    code: str
    reason: str
    details: Any | None = None

    def __str__(self) -> str:
        if self.details is None:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"


class GenerationError(PipelineError):
    """Witness or proof generation failed. Terminal for that artifact, never retried."""


class SubmissionError(PipelineError):
    """A single submission attempt failed. Classified by the retry controller."""


class SessionConnectionError(SubmissionError):
    """The ledger session was lost (or superseded) under a submission attempt."""


class SubmissionTimeoutError(SubmissionError):
    """A submission attempt exceeded its deadline."""


class InitializationError(PipelineError):
    """Startup failure: credential, verification material or session bootstrap."""


def error_message(err: BaseException | None) -> str:
    """Best-effort human message for an arbitrary exception."""
    if err is None:
        return "Unknown error"
    try:
        msg = str(err)
    except Exception:
        msg = ""
    if msg:
        return msg
    return type(err).__name__ or "Unknown error"
