from __future__ import annotations

import json

import pytest

from proofmill.env import credential_fingerprint, load_credential
from proofmill.ledger.loader import load_connector
from proofmill.ledger.memory import InMemoryLedger
from proofmill.prover.assets import CircuitAsset, load_verification_key, verify_assets
from proofmill.runtime.errors import InitializationError


def _clear_seed(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("PROOFMILL_SEED_PHRASE_FILE", "PROOFMILL_SEED_PHRASE", "SEED_PHRASE"):
        monkeypatch.delenv(name, raising=False)


def test_verify_assets_checks_presence_and_size(tmp_path) -> None:
    zkey = tmp_path / "circuit.zkey"
    zkey.write_bytes(b"x" * 10)

    assert verify_assets([CircuitAsset("zkey", str(zkey), 10)])[0].name == "zkey"
    assert verify_assets([CircuitAsset("zkey", str(zkey))])

    with pytest.raises(InitializationError) as ei:
        verify_assets([CircuitAsset("zkey", str(zkey), 11)])
    assert ei.value.code == "asset_size_mismatch"

    with pytest.raises(InitializationError) as ei:
        verify_assets([CircuitAsset("wasm", str(tmp_path / "missing.wasm"))])
    assert ei.value.code == "asset_missing"


def test_load_verification_key(tmp_path) -> None:
    vk = tmp_path / "vkey.json"
    vk.write_text(json.dumps({"protocol": "groth16", "nPublic": 2}), encoding="utf-8")
    assert load_verification_key(str(vk))["nPublic"] == 2

    with pytest.raises(InitializationError) as ei:
        load_verification_key(str(tmp_path / "nope.json"))
    assert ei.value.code == "vkey_missing"

    vk.write_text("[]", encoding="utf-8")
    with pytest.raises(InitializationError) as ei:
        load_verification_key(str(vk))
    assert ei.value.code == "vkey_invalid"


def test_credential_lookup_order(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    _clear_seed(monkeypatch)
    monkeypatch.setenv("SEED_PHRASE", "legacy words")
    assert load_credential() == "legacy words"

    monkeypatch.setenv("PROOFMILL_SEED_PHRASE", "env words")
    assert load_credential() == "env words"

    seed = tmp_path / "seed.txt"
    seed.write_text("file words\n", encoding="utf-8")
    monkeypatch.setenv("PROOFMILL_SEED_PHRASE_FILE", str(seed))
    assert load_credential() == "file words"


def test_missing_credential_is_fatal(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    _clear_seed(monkeypatch)
    with pytest.raises(InitializationError) as ei:
        load_credential()
    assert ei.value.code == "credential_missing"

    with pytest.raises(InitializationError) as ei:
        load_credential(secret_file=str(tmp_path / "absent.txt"))
    assert ei.value.code == "credential_unreadable"


def test_fingerprint_does_not_leak_secret() -> None:
    fp = credential_fingerprint("correct horse battery staple")
    assert len(fp) == 12
    assert "horse" not in fp


def test_load_connector(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("PROOFMILL_LEDGER_CONNECTOR", raising=False)
    with pytest.raises(InitializationError) as ei:
        load_connector()
    assert ei.value.code == "connector_missing"

    assert isinstance(load_connector("memory"), InMemoryLedger)
    assert isinstance(load_connector("proofmill.ledger.memory:InMemoryLedger"), InMemoryLedger)

    monkeypatch.setenv("PROOFMILL_LEDGER_CONNECTOR", "memory")
    assert isinstance(load_connector(), InMemoryLedger)

    for bad in ("no-colon", "proofmill.nope:Thing", "proofmill.ledger.memory:OK"):
        with pytest.raises(InitializationError) as ei:
            load_connector(bad)
        assert ei.value.code == "connector_invalid"
