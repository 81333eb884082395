from __future__ import annotations

import pytest

from proofmill.pipeline.config import PipelineConfig, pipeline_config_from_env

_VARS = (
    "PROOFMILL_ACCOUNT_COUNT",
    "PROOFMILL_TRIPLE_ACCOUNTS",
    "PROOFMILL_MAX_RETRIES",
    "PROOFMILL_SUBMIT_TIMEOUT_MS",
    "PROOFMILL_RETRY_BACKOFF_MS",
    "PROOFMILL_STAGGER_OFFSETS_MS",
    "PROOFMILL_INTERVAL_SECONDS",
    "PROOFMILL_DOMAIN_ID",
    "PROOFMILL_INPUT_BITS",
    "PROOFMILL_DATA_DIR",
)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for name in _VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults(clean_env) -> None:
    cfg = pipeline_config_from_env()
    assert cfg == PipelineConfig()
    assert cfg.submit_timeout_s == 20.0
    assert cfg.retry_backoff_s == 5.0
    # One triple account (3) plus seven singles.
    assert cfg.submissions_per_cycle() == 10


def test_env_overrides(clean_env) -> None:
    clean_env.setenv("PROOFMILL_ACCOUNT_COUNT", "4")
    clean_env.setenv("PROOFMILL_TRIPLE_ACCOUNTS", "3,1,9")
    clean_env.setenv("PROOFMILL_STAGGER_OFFSETS_MS", "5000, 0")
    clean_env.setenv("PROOFMILL_MAX_RETRIES", "5")
    clean_env.setenv("PROOFMILL_DATA_DIR", "/var/lib/proofmill")

    cfg = pipeline_config_from_env()
    assert cfg.account_count == 4
    # Out-of-range indices are dropped.
    assert cfg.triple_accounts == (1, 3)
    assert cfg.stagger_offsets_ms == (0, 5000)
    assert cfg.max_retries == 5
    assert cfg.data_dir == "/var/lib/proofmill"
    assert cfg.submissions_per_cycle() == 2 * 2 + 2


def test_invalid_values_fall_back_or_clamp(clean_env) -> None:
    clean_env.setenv("PROOFMILL_ACCOUNT_COUNT", "zero")
    clean_env.setenv("PROOFMILL_MAX_RETRIES", "0")
    clean_env.setenv("PROOFMILL_SUBMIT_TIMEOUT_MS", "10")
    clean_env.setenv("PROOFMILL_INTERVAL_SECONDS", "0.1")
    clean_env.setenv("PROOFMILL_STAGGER_OFFSETS_MS", "0,x")

    cfg = pipeline_config_from_env()
    assert cfg.account_count == 8
    assert cfg.max_retries == 1
    assert cfg.submit_timeout_ms == 1000
    assert cfg.interval_s == 1.0
    assert cfg.stagger_offsets_ms == (0, 7000, 13000)
