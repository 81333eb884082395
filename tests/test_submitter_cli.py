from __future__ import annotations

import asyncio
import json
import signal
import sys

import pytest

from proofmill.ledger.memory import InMemoryLedger
from proofmill.services.submitter import build_parser, main, run_submitter
from proofmill.testing.fakes import StaticProducer


@pytest.fixture
def cli_env(monkeypatch: pytest.MonkeyPatch, tmp_path):
    monkeypatch.setenv("PROOFMILL_DOTENV_PATH", str(tmp_path / "absent.env"))
    monkeypatch.setenv("PROOFMILL_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("PROOFMILL_ACCOUNT_COUNT", "3")
    monkeypatch.setenv("PROOFMILL_TRIPLE_ACCOUNTS", "0")
    monkeypatch.setenv("PROOFMILL_STAGGER_OFFSETS_MS", "0")
    monkeypatch.setenv("PROOFMILL_SEED_PHRASE", "dry run seed words")
    monkeypatch.delenv("PROOFMILL_SEED_PHRASE_FILE", raising=False)
    monkeypatch.delenv("PROOFMILL_LEDGER_CONNECTOR", raising=False)
    return tmp_path


def test_dry_run_single_shot_exits_zero(cli_env) -> None:
    rc = main(["--dry-run", "--no-health"])
    assert rc == 0

    records = sorted((cli_env / "data").glob("submission_*.json"))
    # Triple account with one offset plus two singles.
    assert len(records) == 3
    labels = {json.loads(p.read_text(encoding="utf-8"))["label"] for p in records}
    assert labels == {"c1-a0-A", "c1-a1", "c1-a2"}


def test_missing_credential_exits_one(cli_env, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("PROOFMILL_SEED_PHRASE", raising=False)
    monkeypatch.delenv("SEED_PHRASE", raising=False)
    assert main(["--dry-run", "--no-health"]) == 1


def test_missing_circuit_files_exit_one(cli_env, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PROOFMILL_WASM_PATH", str(cli_env / "missing.wasm"))
    assert main(["--no-health"]) == 1


def test_session_bootstrap_failure_exits_one(cli_env) -> None:
    ledger = InMemoryLedger()
    ledger.connect_error = OSError("ledger unreachable")
    args = build_parser().parse_args(["--dry-run", "--no-health"])
    assert asyncio.run(run_submitter(args, connector=ledger)) == 1


@pytest.mark.skipif(sys.platform == "win32", reason="loop signal handlers are POSIX only")
def test_continuous_mode_stops_on_shutdown_request(cli_env) -> None:
    ledger = InMemoryLedger()
    args = build_parser().parse_args(["--dry-run", "--no-health", "--continuous", "--interval", "1"])

    async def _run():
        task = asyncio.ensure_future(run_submitter(args, connector=ledger, producer=StaticProducer()))
        while ledger.included < 3:
            await asyncio.sleep(0.01)
        signal.raise_signal(signal.SIGTERM)
        return await asyncio.wait_for(task, timeout=5)

    assert asyncio.run(_run()) == 0
    assert ledger.clients[0].closed is True


def test_parser_defaults() -> None:
    args = build_parser().parse_args([])
    assert args.continuous is False
    assert args.dry_run is False
    assert args.health is True
    assert args.interval is None
