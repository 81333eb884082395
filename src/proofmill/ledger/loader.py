from __future__ import annotations

import importlib
import os

from proofmill.ledger.client import LedgerConnector
from proofmill.ledger.memory import InMemoryLedger
from proofmill.runtime.errors import InitializationError


def load_connector(spec: str | None = None) -> LedgerConnector:
    """Resolve a ledger connector from "memory" or "package.module:factory".

    The factory may be a class or a zero-argument callable; its result must
    provide `async connect(credential)`.
    """
    raw = (spec if spec is not None else os.environ.get("PROOFMILL_LEDGER_CONNECTOR", "")).strip()
    if not raw:
        raise InitializationError(
            "connector_missing",
            "no ledger connector configured: set PROOFMILL_LEDGER_CONNECTOR or use --dry-run",
        )
    if raw == "memory":
        return InMemoryLedger()

    mod_name, sep, attr = raw.partition(":")
    if not sep or not mod_name or not attr:
        raise InitializationError("connector_invalid", f"expected 'module:factory', got {raw!r}")

    try:
        mod = importlib.import_module(mod_name)
        factory = getattr(mod, attr)
    except (ImportError, AttributeError) as e:
        raise InitializationError("connector_invalid", f"cannot load {raw!r}", str(e)) from e

    connector = factory() if callable(factory) else factory
    if not callable(getattr(connector, "connect", None)):
        raise InitializationError("connector_invalid", f"{raw!r} has no connect()")
    return connector
