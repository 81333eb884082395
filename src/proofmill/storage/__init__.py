# src/proofmill/storage/__init__.py
"""
proofmill — storage package

Append-only JSON records of included submissions and aggregation receipts,
plus the latest derived-roster snapshot.
"""

from __future__ import annotations

__all__ = ["records"]
