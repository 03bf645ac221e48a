"""
State ledger accessor.

The ledger table records one row per successfully applied migration:
- version: 14-digit timestamp (PRIMARY KEY, so a version is applied at most once)
- checksum: SHA-256 of the file as applied
- applied_at: when the row was committed

The ledger is append-only. Nothing in schemaledger updates or deletes rows;
the only way to undo a migration is to author and apply a new one.
"""

import logging
from datetime import datetime, timezone

from ..schemas.migration import LedgerEntry
from .database import Database

logger = logging.getLogger(__name__)

DEFAULT_LEDGER_TABLE = "schema_version"

_APPLIED_AT_TYPE = {
    "sqlite": "TEXT NOT NULL",
    "postgres": "TIMESTAMPTZ NOT NULL DEFAULT NOW()",
}


class LedgerAccessor:
    """
    Reads and appends ledger rows.

    Usage:
        ledger = LedgerAccessor(database)
        ledger.ensure_ledger_table()
        applied = ledger.list_applied()
    """

    def __init__(self, database: Database, table_name: str = DEFAULT_LEDGER_TABLE):
        """
        Initialize ledger accessor.

        Args:
            database: Open database handle
            table_name: Ledger table name (may be schema-qualified on PostgreSQL)
        """
        self.db = database
        self.table_name = table_name

    def _create_table_sql(self) -> str:
        applied_at = _APPLIED_AT_TYPE.get(self.db.dialect, "TIMESTAMP NOT NULL")
        return f"""
            CREATE TABLE IF NOT EXISTS {self.table_name} (
                version TEXT PRIMARY KEY,
                description TEXT NOT NULL,
                checksum TEXT NOT NULL,
                applied_at {applied_at},
                execution_time_ms INTEGER NOT NULL,
                filename TEXT NOT NULL
            )
        """

    def ensure_ledger_table(self) -> bool:
        """
        Create the ledger table if it doesn't exist.

        Safe to race with another first-ever run: if creation fails because
        the table appeared concurrently, that is treated as success.

        Returns:
            True if this call created the table
        """
        if self.db.table_exists(self.table_name):
            return False

        try:
            self.db.execute(self._create_table_sql())
        except Exception:
            if self.db.table_exists(self.table_name):
                logger.debug(f"Ledger table {self.table_name} was created concurrently")
                return False
            raise

        logger.info(f"Created ledger table {self.table_name}")
        return True

    def list_applied(self) -> list[LedgerEntry]:
        """
        Get applied migrations ordered by version.

        Returns an empty list when the ledger table does not exist yet, so
        read-only callers never need to create it.
        """
        if not self.db.table_exists(self.table_name):
            return []

        rows = self.db.query(
            f"""
            SELECT version, checksum, applied_at, description, filename, execution_time_ms
            FROM {self.table_name}
            ORDER BY version
        """
        )
        return [self._entry_from_row(row) for row in rows]

    def applied_versions(self) -> set[str]:
        """Get set of applied migration versions."""
        return {entry.version for entry in self.list_applied()}

    def record_success(
        self,
        version: str,
        checksum: str,
        *,
        description: str = "",
        filename: str = "",
        execution_time_ms: int = 0,
    ) -> LedgerEntry:
        """
        Append the ledger row for a migration.

        Must be called inside the same transaction that executed the
        migration's statements, so both commit or roll back together.
        """
        if not self.db.in_transaction():
            raise RuntimeError(
                f"record_success(V{version}) must run inside the migration's transaction"
            )

        applied_at = datetime.now(timezone.utc)
        p = self.db.placeholder
        self.db.execute(
            f"""
            INSERT INTO {self.table_name}
                (version, description, checksum, applied_at, execution_time_ms, filename)
            VALUES ({p}, {p}, {p}, {p}, {p}, {p})
        """,
            (
                version,
                description,
                checksum,
                self._format_timestamp(applied_at),
                execution_time_ms,
                filename,
            ),
        )
        return LedgerEntry(
            version=version,
            checksum=checksum,
            applied_at=applied_at,
            description=description,
            filename=filename,
            execution_time_ms=execution_time_ms,
        )

    def _format_timestamp(self, moment: datetime) -> datetime | str:
        if self.db.dialect == "sqlite":
            return moment.isoformat().replace("+00:00", "Z")
        return moment

    @staticmethod
    def _entry_from_row(row: dict) -> LedgerEntry:
        applied_at = row["applied_at"]
        if isinstance(applied_at, str):
            applied_at = datetime.fromisoformat(applied_at.replace("Z", "+00:00"))
        return LedgerEntry(
            version=row["version"],
            checksum=row["checksum"],
            applied_at=applied_at,
            description=row["description"],
            filename=row["filename"],
            execution_time_ms=row["execution_time_ms"],
        )
