"""
proofmill — multi-account proof submission pipeline

Packages:
  - pipeline: cycle scheduler, worker coordinator, retry/stagger submitters,
    background result monitor and statistics
  - prover: artifact producer (witness + proof subprocesses), inputs, assets
  - ledger: submission client interfaces and the in-memory ledger
  - storage: JSON submission / aggregation records
  - api: health + stats HTTP endpoint
  - services: CLI entrypoints
"""

from __future__ import annotations

__version__ = "1.0.0"
