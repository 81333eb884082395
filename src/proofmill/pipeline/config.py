from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True, slots=True)
class PipelineConfig:
    # Roster
    account_count: int = 8
    triple_accounts: Tuple[int, ...] = (0,)

    # Submission policy
    max_retries: int = 3
    submit_timeout_ms: int = 20_000
    retry_backoff_ms: int = 5_000
    stagger_offsets_ms: Tuple[int, ...] = (0, 7_000, 13_000)
    domain_id: int = 0

    # Scheduling
    interval_s: float = 30.0

    # Artifacts
    input_bits: int = 16_384

    # Persistence
    data_dir: str = "./data"

    @property
    def submit_timeout_s(self) -> float:
        return float(self.submit_timeout_ms) / 1000.0

    @property
    def retry_backoff_s(self) -> float:
        return float(self.retry_backoff_ms) / 1000.0

    def submissions_per_cycle(self) -> int:
        triples = len([i for i in self.triple_accounts if 0 <= i < self.account_count])
        return len(self.stagger_offsets_ms) * triples + (self.account_count - triples)


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, str(default)))
    except Exception:
        return int(default)


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, str(default)))
    except Exception:
        return float(default)


def _env_int_tuple(name: str, default: Tuple[int, ...]) -> Tuple[int, ...]:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return tuple(default)
    out: list[int] = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            out.append(int(part))
        except Exception:
            return tuple(default)
    return tuple(out)


def pipeline_config_from_env() -> PipelineConfig:
    account_count = max(1, _env_int("PROOFMILL_ACCOUNT_COUNT", 8))

    triple_accounts = tuple(
        sorted({i for i in _env_int_tuple("PROOFMILL_TRIPLE_ACCOUNTS", (0,)) if 0 <= i < account_count})
    )

    offsets = _env_int_tuple("PROOFMILL_STAGGER_OFFSETS_MS", (0, 7_000, 13_000))
    offsets = tuple(sorted(max(0, o) for o in offsets)) or (0, 7_000, 13_000)

    return PipelineConfig(
        account_count=int(account_count),
        triple_accounts=triple_accounts,
        max_retries=max(1, _env_int("PROOFMILL_MAX_RETRIES", 3)),
        submit_timeout_ms=max(1_000, _env_int("PROOFMILL_SUBMIT_TIMEOUT_MS", 20_000)),
        retry_backoff_ms=max(0, _env_int("PROOFMILL_RETRY_BACKOFF_MS", 5_000)),
        stagger_offsets_ms=offsets,
        domain_id=max(0, _env_int("PROOFMILL_DOMAIN_ID", 0)),
        interval_s=max(1.0, _env_float("PROOFMILL_INTERVAL_SECONDS", 30.0)),
        input_bits=max(1, _env_int("PROOFMILL_INPUT_BITS", 16_384)),
        data_dir=(os.environ.get("PROOFMILL_DATA_DIR") or "./data").strip() or "./data",
    )
