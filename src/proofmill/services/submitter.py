from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import os
import signal
from typing import Optional

from proofmill.api.health_state import HealthState
from proofmill.api.server import HealthServer
from proofmill.api.structured_logging import configure_structured_logging
from proofmill.env import credential_fingerprint, load_credential, load_dotenv_if_present
from proofmill.ledger.client import LedgerConnector
from proofmill.ledger.loader import load_connector
from proofmill.ledger.memory import InMemoryLedger
from proofmill.pipeline.config import PipelineConfig, pipeline_config_from_env
from proofmill.pipeline.coordinator import WorkerCoordinator
from proofmill.pipeline.monitor import AsyncResultMonitor
from proofmill.pipeline.pipeline_logging import log_event
from proofmill.pipeline.retry import RetryController
from proofmill.pipeline.scheduler import CycleScheduler
from proofmill.pipeline.session import SessionManager
from proofmill.pipeline.stats import StatsAggregator
from proofmill.prover.assets import CircuitAsset, load_verification_key, verify_assets
from proofmill.prover.producer import ArtifactProducer, SubprocessProducer, prover_config_from_env
from proofmill.runtime.context import AppContext, install_exception_guard
from proofmill.runtime.errors import InitializationError
from proofmill.runtime.tasks import TaskRegistry
from proofmill.storage.records import JsonRecordSink
from proofmill.testing.fakes import StaticProducer


log = logging.getLogger("proofmill.submitter")

# Placeholder key for --dry-run; the in-memory ledger never inspects it.
DRY_RUN_VKEY = {"protocol": "groth16", "curve": "bn128", "dry_run": True}


def _apply_args(cfg: PipelineConfig, args: argparse.Namespace) -> PipelineConfig:
    if args.interval is not None:
        cfg = dataclasses.replace(cfg, interval_s=max(1.0, float(args.interval)))
    return cfg


async def bootstrap(
    args: argparse.Namespace,
    *,
    connector: Optional[LedgerConnector] = None,
    producer: Optional[ArtifactProducer] = None,
) -> AppContext:
    """Build and start every pipeline component. Raises InitializationError."""
    cfg = _apply_args(pipeline_config_from_env(), args)
    credential = load_credential(secret_file=args.seed_file)

    if args.dry_run:
        vkey = DRY_RUN_VKEY
        producer = producer or StaticProducer()
        connector = connector or InMemoryLedger()
    else:
        pcfg = prover_config_from_env()
        verify_assets(
            [
                CircuitAsset("witness generator", pcfg.wasm_path),
                CircuitAsset("proving key", pcfg.zkey_path, pcfg.zkey_size),
                CircuitAsset("verification key", pcfg.vkey_path),
            ]
        )
        vkey = load_verification_key(pcfg.vkey_path)
        producer = producer or SubprocessProducer(pcfg)
        connector = connector or load_connector()

    records = JsonRecordSink(cfg.data_dir)
    health = HealthState()
    stats = StatsAggregator(sink=health)
    registry = TaskRegistry("pipeline")

    sessions = SessionManager(
        connector=connector,
        credential=credential,
        account_count=cfg.account_count,
        triple_accounts=cfg.triple_accounts,
        domain_id=cfg.domain_id,
        on_aggregation=records.on_aggregation,
    )
    await sessions.start()
    stats.ensure_accounts(a.index for a in sessions.roster)

    retry = RetryController(sessions=sessions, verification_key=vkey, cfg=cfg, records=records)
    coordinator = WorkerCoordinator(
        sessions=sessions,
        producer=producer,
        retry=retry,
        stats=stats,
        registry=registry,
        cfg=cfg,
    )
    monitor = AsyncResultMonitor(stats=stats, registry=registry)
    scheduler = CycleScheduler(coordinator=coordinator, monitor=monitor, stats=stats, registry=registry)

    ctx = AppContext(
        cfg=cfg,
        sessions=sessions,
        stats=stats,
        registry=registry,
        monitor=monitor,
        scheduler=scheduler,
        health=health,
    )
    health.details = ctx.pipeline_detail

    if args.health:
        server = HealthServer(health)
        if await asyncio.to_thread(server.start):
            ctx.health_server = server

    health.set_status("running")
    log_event(
        log,
        "submitter_ready",
        dry_run=bool(args.dry_run),
        credential=credential_fingerprint(credential),
        accounts=cfg.account_count,
        triple_accounts=list(cfg.triple_accounts),
        submissions_per_cycle=cfg.submissions_per_cycle(),
        max_retries=cfg.max_retries,
        submit_timeout_ms=cfg.submit_timeout_ms,
        stagger_offsets_ms=list(cfg.stagger_offsets_ms),
    )
    return ctx


def _install_signal_handlers(loop: asyncio.AbstractEventLoop, ctx: AppContext) -> None:
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, ctx.request_shutdown, sig.name)
        except (NotImplementedError, RuntimeError):
            # Not available on this platform / not the main thread.
            pass


async def _race_shutdown(ctx: AppContext, work: "asyncio.Future[Optional[int]]") -> Optional[int]:
    """Run work until it finishes or shutdown is requested (then None)."""
    stopper = asyncio.ensure_future(ctx.shutdown_event.wait())
    try:
        done, _ = await asyncio.wait({work, stopper}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for t in (work, stopper):
            if not t.done():
                t.cancel()
        await asyncio.gather(work, stopper, return_exceptions=True)

    if work in done and not work.cancelled():
        exc = work.exception()
        if exc is not None:
            log.error("scheduler stopped with an error", exc_info=exc)
            return 1
        return work.result()
    return None


async def run_submitter(
    args: argparse.Namespace,
    *,
    connector: Optional[LedgerConnector] = None,
    producer: Optional[ArtifactProducer] = None,
) -> int:
    loop = asyncio.get_running_loop()
    install_exception_guard(loop)

    try:
        ctx = await bootstrap(args, connector=connector, producer=producer)
    except InitializationError as e:
        log_event(log, "submitter_init_failed", level=logging.ERROR, code=e.code, error=str(e))
        return 1

    _install_signal_handlers(loop, ctx)
    try:
        if args.continuous:
            work = asyncio.ensure_future(ctx.scheduler.run_forever(ctx.cfg.interval_s))
            rc = await _race_shutdown(ctx, work)
            return 0 if rc is None else int(rc)

        work = asyncio.ensure_future(ctx.scheduler.run_once())
        rc = await _race_shutdown(ctx, work)
        return 0 if rc is None else int(rc)
    finally:
        await ctx.shutdown()


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="proofmill-submitter",
        description="Generate proofs and submit them from a roster of ledger accounts",
    )
    p.add_argument("--continuous", action="store_true", help="run cycles until interrupted")
    p.add_argument("--interval", type=float, default=None, help="seconds between cycles (default 30)")
    p.add_argument("--dry-run", action="store_true", help="use the in-memory ledger and a fake prover")
    p.add_argument("--no-health", dest="health", action="store_false", help="do not start the health server")
    p.add_argument("--seed-file", default=os.environ.get("PROOFMILL_SEED_PHRASE_FILE", ""))
    return p


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    # Load .env early so PROOFMILL_* vars exist before anything reads them.
    load_dotenv_if_present()
    configure_structured_logging()

    try:
        return asyncio.run(run_submitter(args))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
