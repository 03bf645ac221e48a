"""
Checksum engine (CRITICAL).

This module defines THE checksum function for migration files.
The checksum recorded in the ledger when a migration is applied must match
the file's checksum on every later run; a difference means the file was
edited after it was applied and is never silently accepted.

Checksum format: SHA-256 over the raw file bytes, 64-character lowercase hex.
"""

import hashlib
from dataclasses import dataclass

from .migration import LedgerEntry, MigrationFile


@dataclass(frozen=True)
class ChecksumMatch:
    """The file on disk is identical to what was applied."""

    version: str
    checksum: str


@dataclass(frozen=True)
class ChecksumMismatch:
    """The file on disk differs from what was applied."""

    version: str
    filename: str
    expected: str  # recorded in the ledger
    actual: str  # computed from disk


ChecksumResult = ChecksumMatch | ChecksumMismatch


def compute_checksum(content: bytes | str) -> str:
    """
    Compute SHA-256 of migration content.

    Args:
        content: Raw file bytes (str is encoded as UTF-8)

    Returns:
        64-character lowercase hex string
    """
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.sha256(content).hexdigest()


def verify(migration: MigrationFile, entry: LedgerEntry) -> ChecksumResult:
    """Compare a scanned file against its ledger entry."""
    if migration.version != entry.version:
        raise ValueError(
            f"Cannot verify {migration.filename} against ledger entry V{entry.version}"
        )

    if migration.checksum == entry.checksum:
        return ChecksumMatch(version=migration.version, checksum=migration.checksum)

    return ChecksumMismatch(
        version=migration.version,
        filename=migration.filename,
        expected=entry.checksum,
        actual=migration.checksum,
    )
