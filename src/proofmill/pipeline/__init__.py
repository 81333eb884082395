# src/proofmill/pipeline/__init__.py
"""
proofmill — submission pipeline

  - scheduler: fixed-interval cycles and single-shot mode
  - coordinator: per-cycle fan-out over the account roster
  - staggered: triple-artifact strategy with offset submissions
  - retry: bounded retry / reclassification / reconnect per submission
  - monitor: background settlement of a cycle's outcomes
  - stats: per-account and global counters
  - session: versioned ledger session + roster
  - classify: failure message classification table

Modules import each other directly; nothing is re-exported here.
"""

from __future__ import annotations
