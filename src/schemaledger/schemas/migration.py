"""
Migration value types.

MigrationFile, LedgerEntry and ExecutionPlan are immutable. A MigrationFile's
checksum is derived from its bytes when it is scanned and is never supplied
by the author.
"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

# Version prefix used in filenames and human-facing labels
VERSION_PREFIX = "V"


@dataclass(frozen=True)
class MigrationFile:
    """A versioned SQL migration file on disk."""

    version: str  # 14-digit UTC timestamp, YYYYMMDDHHMMSS
    description: str  # snake_case, as authored in the filename
    path: Path
    raw_content: str = field(repr=False)
    checksum: str  # SHA-256 hex of the raw file bytes

    @property
    def filename(self) -> str:
        return self.path.name

    @property
    def label(self) -> str:
        """Version as written in the filename (V-prefixed)."""
        return f"{VERSION_PREFIX}{self.version}"

    @property
    def title(self) -> str:
        """Human-readable description."""
        return self.description.replace("_", " ")


@dataclass(frozen=True)
class LedgerEntry:
    """One successfully applied migration, as recorded in the ledger table."""

    version: str
    checksum: str
    applied_at: datetime
    description: str = ""
    filename: str = ""
    execution_time_ms: int = 0


@dataclass(frozen=True)
class ExecutionPlan:
    """Result of comparing the files on disk against the ledger.

    pending: files whose version is absent from the ledger, ascending
    applied: files whose version is in the ledger (checksums verified)
    orphaned: ledger versions with no matching file on disk
    """

    pending: tuple[MigrationFile, ...] = ()
    applied: tuple[MigrationFile, ...] = ()
    orphaned: tuple[LedgerEntry, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.pending

    @property
    def pending_versions(self) -> list[str]:
        return [migration.version for migration in self.pending]
