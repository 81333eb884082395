from __future__ import annotations

import asyncio
import json
import logging
import os
import shlex
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Protocol, Sequence, Tuple, runtime_checkable

from proofmill.pipeline.pipeline_logging import log_event
from proofmill.runtime.errors import GenerationError


log = logging.getLogger("proofmill.prover")


@runtime_checkable
class ArtifactProducer(Protocol):
    """Two-phase artifact generation keyed by a worker slot.

    Concurrent calls with distinct slots must not share temp resources.
    Either phase raises GenerationError on failure.
    """

    async def generate_witness(self, input_bits: Sequence[int], slot: int) -> str: ...
    async def generate_proof(self, slot: int) -> Tuple[Any, List[Any]]: ...


@dataclass(frozen=True, slots=True)
class ProverConfig:
    witness_cmd: Tuple[str, ...] = ("npx", "snarkjs", "wtns", "calculate")
    prover_cmd: Tuple[str, ...] = ("./rapidsnark-prover",)
    wasm_path: str = "./k20/sha256_k20_js/sha256_k20.wasm"
    zkey_path: str = "./k20/sha256_k20_0000.zkey"
    zkey_size: int = 0
    vkey_path: str = "./k20/sha256_k20_vkey.json"
    temp_dir: str = ""


def _env_cmd(name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    return tuple(shlex.split(raw))


def prover_config_from_env() -> ProverConfig:
    try:
        zkey_size = max(0, int(os.environ.get("PROOFMILL_ZKEY_SIZE", "0")))
    except Exception:
        zkey_size = 0
    return ProverConfig(
        witness_cmd=_env_cmd("PROOFMILL_WITNESS_CMD", ("npx", "snarkjs", "wtns", "calculate")),
        prover_cmd=_env_cmd("PROOFMILL_PROVER_CMD", ("./rapidsnark-prover",)),
        wasm_path=os.environ.get("PROOFMILL_WASM_PATH", "./k20/sha256_k20_js/sha256_k20.wasm"),
        zkey_path=os.environ.get("PROOFMILL_ZKEY_PATH", "./k20/sha256_k20_0000.zkey"),
        zkey_size=zkey_size,
        vkey_path=os.environ.get("PROOFMILL_VKEY_PATH", "./k20/sha256_k20_vkey.json"),
        temp_dir=(os.environ.get("PROOFMILL_TEMP_DIR") or "").strip(),
    )


@dataclass(frozen=True, slots=True)
class SlotPaths:
    input_file: Path
    witness: Path
    proof: Path
    public: Path


def _read_clean_json(path: Path) -> Any:
    # rapidsnark pads its output buffers with NUL bytes
    raw = path.read_text(encoding="utf-8").replace("\0", "").strip()
    return json.loads(raw)


class SubprocessProducer:
    """Witness via snarkjs, proof via rapidsnark, both as child processes."""

    def __init__(self, cfg: ProverConfig) -> None:
        self.cfg = cfg
        self._temp_root = Path(cfg.temp_dir or tempfile.gettempdir())

    def slot_paths(self, slot: int) -> SlotPaths:
        root = self._temp_root
        return SlotPaths(
            input_file=root / f"proofmill_input_{slot}.json",
            witness=root / f"proofmill_witness_{slot}.wtns",
            proof=root / f"proofmill_proof_{slot}.json",
            public=root / f"proofmill_public_{slot}.json",
        )

    async def _run(self, phase: str, slot: int, argv: Sequence[str]) -> None:
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise GenerationError(f"{phase}_spawn_failed", f"failed to start {argv[0]}", str(e)) from e

        _, stderr = await proc.communicate()
        if proc.returncode != 0:
            err = (stderr or b"").decode("utf-8", errors="replace").strip()
            raise GenerationError(
                f"{phase}_failed",
                f"{phase} exited with code {proc.returncode} (slot {slot})",
                err[-2000:] or None,
            )

    async def generate_witness(self, input_bits: Sequence[int], slot: int) -> str:
        paths = self.slot_paths(slot)
        paths.input_file.parent.mkdir(parents=True, exist_ok=True)
        paths.input_file.write_text(json.dumps({"in": [int(b) for b in input_bits]}), encoding="utf-8")

        argv = [*self.cfg.witness_cmd, self.cfg.wasm_path, str(paths.input_file), str(paths.witness)]
        await self._run("witness", slot, argv)
        log_event(log, "witness_generated", slot=slot, level=logging.DEBUG)
        return str(paths.witness)

    async def generate_proof(self, slot: int) -> Tuple[Any, List[Any]]:
        paths = self.slot_paths(slot)
        for p in (paths.proof, paths.public):
            p.unlink(missing_ok=True)

        argv = [*self.cfg.prover_cmd, self.cfg.zkey_path, str(paths.witness), str(paths.proof), str(paths.public)]
        await self._run("proof", slot, argv)

        try:
            proof = _read_clean_json(paths.proof)
            public = _read_clean_json(paths.public)
        except (OSError, ValueError) as e:
            raise GenerationError("proof_output_unreadable", f"failed to read prover output (slot {slot})", str(e)) from e
        if not isinstance(public, list):
            raise GenerationError("proof_output_invalid", f"public values are not a list (slot {slot})")

        log_event(log, "proof_generated", slot=slot, public_signals=len(public), level=logging.DEBUG)
        return proof, public
