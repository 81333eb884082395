from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import os
from typing import Optional

from proofmill.api.structured_logging import configure_structured_logging
from proofmill.env import credential_fingerprint, load_credential, load_dotenv_if_present
from proofmill.ledger.client import LedgerConnector
from proofmill.ledger.loader import load_connector
from proofmill.ledger.memory import InMemoryLedger
from proofmill.pipeline.config import PipelineConfig, pipeline_config_from_env
from proofmill.pipeline.pipeline_logging import log_event
from proofmill.pipeline.session import SessionManager
from proofmill.runtime.errors import InitializationError
from proofmill.storage.records import JsonRecordSink


log = logging.getLogger("proofmill.accounts")


def _apply_args(cfg: PipelineConfig, args: argparse.Namespace) -> PipelineConfig:
    if args.count is not None:
        count = max(1, int(args.count))
        triples = tuple(i for i in cfg.triple_accounts if i < count)
        cfg = dataclasses.replace(cfg, account_count=count, triple_accounts=triples)
    if args.data_dir:
        cfg = dataclasses.replace(cfg, data_dir=str(args.data_dir))
    return cfg


async def show_accounts(args: argparse.Namespace, *, connector: Optional[LedgerConnector] = None) -> int:
    """Open one session, print the derived roster, save derived-accounts.json.

    Exit codes: 0 ok, 1 init/session failure or the roster file could not be
    written.
    """
    try:
        cfg = _apply_args(pipeline_config_from_env(), args)
        credential = load_credential(secret_file=args.seed_file)
        if connector is None:
            connector = InMemoryLedger() if args.dry_run else load_connector()
    except InitializationError as e:
        log_event(log, "accounts_init_failed", level=logging.ERROR, code=e.code, error=str(e))
        print(f"error: {e.reason}")
        return 1

    sessions = SessionManager(
        connector=connector,
        credential=credential,
        account_count=cfg.account_count,
        triple_accounts=cfg.triple_accounts,
        domain_id=cfg.domain_id,
    )
    try:
        lease = await sessions.start()
    except InitializationError as e:
        log_event(log, "accounts_init_failed", level=logging.ERROR, code=e.code, error=str(e))
        print(f"error: {e.reason}")
        return 1

    try:
        roster = list(lease.roster)
        print(f"{'index':>5}  {'role':<14}  {'kind':<7}  handle")
        for a in roster:
            kind = "base" if a.index == 0 else "derived"
            print(f"{a.index:>5}  {a.role.value:<14}  {kind:<7}  {a.handle}")
        print(f"{len(roster)} accounts ready for submission")

        out = JsonRecordSink(cfg.data_dir).write_roster(roster, generation=lease.generation)
        if out is None:
            print(f"error: could not write roster under {cfg.data_dir}")
            return 1
        print(f"saved {out}")
        log_event(
            log,
            "accounts_listed",
            credential=credential_fingerprint(credential),
            accounts=len(roster),
            path=str(out),
        )
        return 0
    finally:
        await sessions.close()


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="proofmill-accounts",
        description="Derive the submission roster from the seed phrase and save it",
    )
    p.add_argument("--dry-run", action="store_true", help="derive from the in-memory ledger")
    p.add_argument("--count", type=int, default=None, help="accounts to derive (default PROOFMILL_ACCOUNT_COUNT)")
    p.add_argument("--data-dir", default="", help="where derived-accounts.json goes (default PROOFMILL_DATA_DIR)")
    p.add_argument("--seed-file", default=os.environ.get("PROOFMILL_SEED_PHRASE_FILE", ""))
    return p


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    load_dotenv_if_present()
    configure_structured_logging()

    try:
        return asyncio.run(show_accounts(args))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
