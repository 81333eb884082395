"""In-process doubles for running the pipeline without a prover or a ledger.

Used by --dry-run and by the test suite.
"""

__all__ = ["fakes"]
