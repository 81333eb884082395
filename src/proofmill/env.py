# src/proofmill/env.py
from __future__ import annotations

import hashlib
import os
from pathlib import Path
from typing import Optional

from proofmill.runtime.errors import InitializationError

_LOADED = False


def load_dotenv_if_present(dotenv_path: Optional[str] = None) -> bool:
    """
    Best-effort .env loader.

    - Deterministic: loads once per process.
    - Never overrides variables already present in the environment.
    - Path rules:
        1) If dotenv_path arg provided, use it.
        2) Else if PROOFMILL_DOTENV_PATH is set, use that.
        3) Else default to ".env" in current working directory.

    Returns True if a dotenv file was found AND loaded, else False.
    """
    global _LOADED
    if _LOADED:
        return False

    path_s = dotenv_path or os.getenv("PROOFMILL_DOTENV_PATH", ".env")
    try:
        path = Path(path_s).expanduser()
    except Exception:
        _LOADED = True
        return False

    if not path.exists() or not path.is_file():
        _LOADED = True
        return False

    from dotenv import load_dotenv

    load_dotenv(dotenv_path=str(path), override=False)
    _LOADED = True
    return True


def _read_secret(path: str) -> str:
    return Path(path).expanduser().read_text(encoding="utf-8").strip()


def load_credential(*, secret_file: str = "") -> str:
    """Return the account credential (seed phrase).

    Lookup order: explicit secret file, PROOFMILL_SEED_PHRASE_FILE,
    PROOFMILL_SEED_PHRASE, SEED_PHRASE. Missing credential is fatal.
    """
    path = (secret_file or os.environ.get("PROOFMILL_SEED_PHRASE_FILE") or "").strip()
    if path:
        try:
            secret = _read_secret(path)
        except OSError as e:
            raise InitializationError("credential_unreadable", f"cannot read seed file {path}", str(e)) from e
        if secret:
            return secret

    for name in ("PROOFMILL_SEED_PHRASE", "SEED_PHRASE"):
        v = (os.environ.get(name) or "").strip()
        if v:
            return v

    raise InitializationError(
        "credential_missing",
        "seed phrase is not set: use PROOFMILL_SEED_PHRASE or PROOFMILL_SEED_PHRASE_FILE",
    )


def credential_fingerprint(credential: str) -> str:
    """Short, non-reversible id for logs."""
    return hashlib.sha256(credential.encode("utf-8")).hexdigest()[:12]
