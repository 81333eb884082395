from __future__ import annotations

import json
import logging
import re
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, Sequence

from proofmill.ledger.client import AggregationReceipt
from proofmill.pipeline.model import Account
from proofmill.pipeline.pipeline_logging import log_event

Json = Dict[str, Any]

log = logging.getLogger("proofmill.records")

_SUBMISSION_RE = re.compile(r"^submission_(\d+)\.json$")
ROSTER_FILE = "derived-accounts.json"


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True, slots=True)
class SubmissionRecord:
    account: str
    account_index: int
    label: str
    statement: Optional[str]
    aggregation_id: Optional[int]
    public_signals_count: int
    input_summary: Json = field(default_factory=dict)
    timestamp: str = field(default_factory=_iso_now)

    def to_json(self) -> Json:
        return {
            "account": self.account,
            "account_index": self.account_index,
            "label": self.label,
            "input_summary": self.input_summary,
            "statement": self.statement,
            "aggregation_id": self.aggregation_id,
            "timestamp": self.timestamp,
            "public_signals_count": self.public_signals_count,
        }


class PersistenceSink(Protocol):
    def write_submission(self, record: SubmissionRecord) -> Optional[Path]: ...
    def write_aggregation(self, receipt: AggregationReceipt) -> Optional[Path]: ...


class JsonRecordSink:
    """One pretty-printed JSON file per record under data_dir.

    Files:
      - submission_<n>.json   (n increases monotonically, resumes after restarts)
      - aggregation_<id>.json (keyed by aggregation id)
      - derived-accounts.json (latest roster, overwritten)

    Write failures are logged and swallowed; records are best-effort.
    """

    def __init__(self, data_dir: str | Path) -> None:
        self.data_dir = Path(data_dir)
        self._lock = threading.Lock()
        self._counter = self._highest_existing()

    def _highest_existing(self) -> int:
        try:
            names = [p.name for p in self.data_dir.iterdir()]
        except OSError:
            return 0
        best = 0
        for n in names:
            m = _SUBMISSION_RE.match(n)
            if m:
                best = max(best, int(m.group(1)))
        return best

    def _next_id(self) -> int:
        with self._lock:
            self._counter += 1
            return self._counter

    def _write(self, path: Path, payload: Json) -> Optional[Path]:
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(payload, indent=2, sort_keys=False) + "\n", encoding="utf-8")
        except (OSError, TypeError, ValueError) as e:
            log_event(log, "record_write_failed", level=logging.WARNING, path=str(path), error=str(e))
            return None
        return path

    def write_submission(self, record: SubmissionRecord) -> Optional[Path]:
        n = self._next_id()
        return self._write(self.data_dir / f"submission_{n}.json", record.to_json())

    def write_aggregation(self, receipt: AggregationReceipt) -> Optional[Path]:
        payload = {
            "block_hash": receipt.block_hash,
            "domain_id": int(receipt.domain_id),
            "aggregation_id": int(receipt.aggregation_id),
            "timestamp": _iso_now(),
        }
        out = self._write(self.data_dir / f"aggregation_{int(receipt.aggregation_id)}.json", payload)
        if out is not None:
            log_event(
                log,
                "aggregation_receipt_saved",
                aggregation_id=int(receipt.aggregation_id),
                domain_id=int(receipt.domain_id),
                block_hash=receipt.block_hash,
            )
        return out

    def on_aggregation(self, receipt: AggregationReceipt) -> None:
        """Subscription callback; never raises into the ledger client."""
        try:
            self.write_aggregation(receipt)
        except Exception:
            log.exception("aggregation receipt handling failed")

    def write_roster(self, roster: Sequence[Account], *, generation: Optional[int] = None) -> Optional[Path]:
        """Snapshot the derived roster. Handles are written as display strings."""
        accounts = [
            {
                "index": a.index,
                "handle": str(a.handle),
                "role": a.role.value,
                "kind": "base" if a.index == 0 else "derived",
            }
            for a in roster
        ]
        payload = {
            "base_account": accounts[0]["handle"] if accounts else None,
            "derived_accounts": [a["handle"] for a in accounts[1:]],
            "accounts": accounts,
            "session_generation": generation,
            "timestamp": _iso_now(),
        }
        out = self._write(self.data_dir / ROSTER_FILE, payload)
        if out is not None:
            log_event(log, "roster_saved", path=str(out), accounts=len(accounts))
        return out
