"""
Value types shared across the engine.

- MigrationFile / LedgerEntry / ExecutionPlan: immutable migration records
- Checksum engine: SHA-256 over raw file bytes, verify() against the ledger
- LintFinding / Severity: idempotency linter output
"""

from .checksum import (
    ChecksumMatch,
    ChecksumMismatch,
    ChecksumResult,
    compute_checksum,
    verify,
)
from .lint_finding import LintFinding, Severity
from .migration import VERSION_PREFIX, ExecutionPlan, LedgerEntry, MigrationFile

__all__ = [
    "ChecksumMatch",
    "ChecksumMismatch",
    "ChecksumResult",
    "compute_checksum",
    "verify",
    "LintFinding",
    "Severity",
    "VERSION_PREFIX",
    "ExecutionPlan",
    "LedgerEntry",
    "MigrationFile",
]
