from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path

import pytest

from proofmill.prover.inputs import random_input_bits, summarize_input
from proofmill.prover.producer import ProverConfig, SubprocessProducer, prover_config_from_env
from proofmill.runtime.errors import GenerationError

WITNESS_SCRIPT = """
import json, sys, pathlib
data = json.loads(pathlib.Path(sys.argv[2]).read_text())
pathlib.Path(sys.argv[3]).write_text("wtns:" + str(sum(data["in"])))
"""

PROVER_SCRIPT = """
import sys, pathlib
witness = pathlib.Path(sys.argv[2]).read_text()
pathlib.Path(sys.argv[3]).write_text('{"protocol": "groth16", "w": "%s"}' % witness + "\\0" * 16)
pathlib.Path(sys.argv[4]).write_text('["7", "8"]' + "\\0" * 4)
"""


def _producer(tmp_path: Path, prover_script: str = PROVER_SCRIPT) -> SubprocessProducer:
    w = tmp_path / "witness.py"
    p = tmp_path / "prover.py"
    w.write_text(WITNESS_SCRIPT, encoding="utf-8")
    p.write_text(prover_script, encoding="utf-8")
    cfg = ProverConfig(
        witness_cmd=(sys.executable, str(w)),
        prover_cmd=(sys.executable, str(p)),
        wasm_path="circuit.wasm",
        zkey_path="circuit.zkey",
        temp_dir=str(tmp_path / "tmp"),
    )
    return SubprocessProducer(cfg)


def test_witness_and_proof_via_child_processes(tmp_path) -> None:
    producer = _producer(tmp_path)

    async def _run():
        witness = await producer.generate_witness([1, 0, 1, 1], 3)
        proof, public = await producer.generate_proof(3)
        return witness, proof, public

    witness, proof, public = asyncio.run(_run())
    assert witness.endswith("proofmill_witness_3.wtns")
    assert proof == {"protocol": "groth16", "w": "wtns:3"}
    assert public == ["7", "8"]
    assert json.loads(producer.slot_paths(3).input_file.read_text(encoding="utf-8")) == {"in": [1, 0, 1, 1]}


def test_concurrent_slots_do_not_share_files(tmp_path) -> None:
    producer = _producer(tmp_path)

    async def _one(slot: int, bits):
        await producer.generate_witness(bits, slot)
        return await producer.generate_proof(slot)

    async def _run():
        return await asyncio.gather(_one(0, [1] * 5), _one(1, [1] * 9))

    (p0, _), (p1, _) = asyncio.run(_run())
    assert p0["w"] == "wtns:5"
    assert p1["w"] == "wtns:9"


def test_nonzero_exit_is_generation_error(tmp_path) -> None:
    producer = _producer(tmp_path, prover_script="import sys\nsys.stderr.write('zkey mismatch')\nsys.exit(2)\n")

    async def _run():
        await producer.generate_witness([0, 1], 0)
        await producer.generate_proof(0)

    with pytest.raises(GenerationError) as ei:
        asyncio.run(_run())
    assert ei.value.code == "proof_failed"
    assert "zkey mismatch" in str(ei.value.details)


def test_missing_binary_is_generation_error(tmp_path) -> None:
    cfg = ProverConfig(witness_cmd=(str(tmp_path / "no-such-binary"),), temp_dir=str(tmp_path))

    with pytest.raises(GenerationError) as ei:
        asyncio.run(SubprocessProducer(cfg).generate_witness([1], 0))
    assert ei.value.code == "witness_spawn_failed"


def test_non_list_public_values_rejected(tmp_path) -> None:
    script = """
import sys, pathlib
pathlib.Path(sys.argv[3]).write_text('{}')
pathlib.Path(sys.argv[4]).write_text('{"not": "a list"}')
"""
    producer = _producer(tmp_path, prover_script=script)

    async def _run():
        await producer.generate_witness([1], 0)
        await producer.generate_proof(0)

    with pytest.raises(GenerationError) as ei:
        asyncio.run(_run())
    assert ei.value.code == "proof_output_invalid"


def test_prover_config_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PROOFMILL_WITNESS_CMD", "node snarkjs.js wtns calculate")
    monkeypatch.setenv("PROOFMILL_ZKEY_SIZE", "123")
    monkeypatch.setenv("PROOFMILL_ZKEY_PATH", "/data/k.zkey")
    cfg = prover_config_from_env()
    assert cfg.witness_cmd == ("node", "snarkjs.js", "wtns", "calculate")
    assert cfg.prover_cmd == ("./rapidsnark-prover",)
    assert cfg.zkey_size == 123
    assert cfg.zkey_path == "/data/k.zkey"


def test_random_input_and_summary() -> None:
    bits = random_input_bits(256)
    assert len(bits) == 256
    assert set(bits) <= {0, 1}

    s = summarize_input([1, 0, 0, 1, 1])
    assert s == {"total_bits": 5, "ones_count": 3, "zeros_count": 2, "first_bits": "10011"}
