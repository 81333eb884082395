from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, List

from proofmill.runtime.errors import InitializationError


@dataclass(frozen=True, slots=True)
class CircuitAsset:
    name: str
    path: str
    size: int = 0  # expected byte size; 0 = only check existence


def verify_assets(assets: Iterable[CircuitAsset]) -> List[CircuitAsset]:
    """Check that large static circuit files are present and complete.

    A truncated proving key usually means a partial download or an unsynced
    LFS pointer, so the exact size is checked when known.
    """
    checked: List[CircuitAsset] = []
    for a in assets:
        p = Path(a.path)
        if not p.is_file():
            raise InitializationError("asset_missing", f"missing circuit file {a.name}", a.path)
        if a.size > 0:
            actual = p.stat().st_size
            if actual != a.size:
                raise InitializationError(
                    "asset_size_mismatch",
                    f"incorrect size for {a.name}: {actual} vs expected {a.size}",
                    a.path,
                )
        checked.append(a)
    return checked


def load_verification_key(path: str) -> Any:
    p = Path(path)
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise InitializationError("vkey_missing", f"verification key not found: {path}") from e
    except (OSError, ValueError) as e:
        raise InitializationError("vkey_invalid", f"verification key unreadable: {path}", str(e)) from e
    if not isinstance(data, dict) or not data:
        raise InitializationError("vkey_invalid", f"verification key is not a JSON object: {path}")
    return data
