"""
Database handles.

The engine never reaches for a shared connection: a Database is created once
per run (see connect_database) and passed explicitly to the ledger and the
executor.

Backends:
- SQLiteDatabase: stdlib sqlite3, manual transaction control
- PostgresDatabase: psycopg 3, autocommit connection with explicit transactions

Both provide the same operations: transaction(), execute_script(),
execute(), query(), table_exists(), advisory_lock().
"""

import hashlib
import logging
import os
import socket
import sqlite3
import time
import uuid
from abc import ABC, abstractmethod
from collections.abc import Iterator, Sequence
from contextlib import AbstractContextManager, contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import psycopg
from psycopg.rows import dict_row

from ..config import DatabaseConfig
from ..errors import ConnectivityError, LockContentionError

logger = logging.getLogger(__name__)

# Holder identity written by the SQLite lock; useful when debugging a stuck lock
LOCK_HOLDER = f"{socket.gethostname()}:{os.getpid()}"


class Database(ABC):
    """A connection to the database being migrated."""

    dialect: str = ""
    placeholder: str = "?"

    @abstractmethod
    def transaction(self) -> AbstractContextManager["Database"]:
        """Commit on success; roll back and re-raise on any error."""

    @abstractmethod
    def in_transaction(self) -> bool:
        """Whether a transaction is currently open."""

    @abstractmethod
    def execute_script(self, sql: str) -> None:
        """Execute a migration body (possibly many statements)."""

    @abstractmethod
    def execute(self, sql: str, params: Sequence[Any] = ()) -> None:
        """Execute a single parameterized statement."""

    @abstractmethod
    def query(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        """Execute a single parameterized statement and return its rows."""

    @abstractmethod
    def table_exists(self, table_name: str) -> bool:
        """Check whether a table exists."""

    @abstractmethod
    def close(self) -> None:
        """Close the connection."""

    @abstractmethod
    def _try_acquire_lock(self, name: str) -> bool:
        """Try once to take the named lock."""

    @abstractmethod
    def _release_lock(self, name: str) -> None:
        """Release a lock taken by _try_acquire_lock."""

    @abstractmethod
    def lock_holder(self, name: str) -> str | None:
        """Describe who holds the named lock, or None if it is free."""

    @abstractmethod
    def force_release_lock(self, name: str) -> bool:
        """Drop the named lock whoever holds it. True if a lock was removed."""

    @contextmanager
    def advisory_lock(
        self,
        name: str,
        timeout_seconds: float = 30.0,
        poll_interval_seconds: float = 0.5,
    ) -> Iterator[None]:
        """
        Hold a cross-process mutual-exclusion lock for the duration of the block.

        Blocks for at most timeout_seconds, then raises LockContentionError.
        timeout_seconds=0 fails fast.
        """
        deadline = time.monotonic() + timeout_seconds
        while not self._try_acquire_lock(name):
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise LockContentionError(timeout_seconds, holder=self.lock_holder(name))
            logger.info(f"Migration lock '{name}' is held by another run, waiting...")
            time.sleep(min(poll_interval_seconds, remaining))

        logger.debug(f"Acquired migration lock '{name}'")
        try:
            yield
        finally:
            self._release_lock(name)
            logger.debug(f"Released migration lock '{name}'")

    def __enter__(self) -> "Database":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


def split_sqlite_statements(script: str) -> list[str]:
    """
    Split a script into complete statements.

    Uses sqlite3.complete_statement, so semicolons inside string literals,
    comments and CREATE TRIGGER ... BEGIN ... END bodies do not split.
    Trailing text that is only whitespace or comments is dropped.
    """
    statements: list[str] = []
    buffer = ""
    parts = script.split(";")
    for index, part in enumerate(parts):
        buffer += part
        if index < len(parts) - 1:
            buffer += ";"
        if sqlite3.complete_statement(buffer):
            if _has_sql(buffer):
                statements.append(buffer.strip())
            buffer = ""

    if _has_sql(buffer):
        statements.append(buffer.strip())
    return statements


def _has_sql(text: str) -> bool:
    """True if text holds more than whitespace, line comments and semicolons."""
    for line in text.splitlines():
        stripped = line.strip().strip(";").strip()
        if stripped and not stripped.startswith("--"):
            return True
    return False


class SQLiteDatabase(Database):
    """
    SQLite database handle.

    The connection runs with isolation_level=None so that transaction
    boundaries are exactly the ones opened by transaction(); sqlite3's
    executescript() is avoided because it commits implicitly.
    """

    dialect = "sqlite"
    placeholder = "?"
    LOCK_TABLE = "schemaledger_lock"

    def __init__(self, db_path: Path | str, busy_timeout: float = 5.0):
        """
        Initialize SQLite handle.

        Args:
            db_path: Path to SQLite database file (or ":memory:")
            busy_timeout: Seconds sqlite waits on a locked database file
        """
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self.conn = sqlite3.connect(self.db_path, isolation_level=None, timeout=busy_timeout)
        except sqlite3.Error as e:
            raise ConnectivityError(f"Cannot open SQLite database {self.db_path}: {e}") from e
        self.conn.row_factory = sqlite3.Row
        self._lock_tokens: dict[str, str] = {}

    @contextmanager
    def transaction(self) -> Iterator[Database]:
        self.conn.execute("BEGIN IMMEDIATE")
        try:
            yield self
        except BaseException:
            if self.conn.in_transaction:
                self.conn.execute("ROLLBACK")
            raise
        else:
            self.conn.execute("COMMIT")

    def in_transaction(self) -> bool:
        return self.conn.in_transaction

    def execute_script(self, sql: str) -> None:
        for statement in split_sqlite_statements(sql):
            self.conn.execute(statement)

    def execute(self, sql: str, params: Sequence[Any] = ()) -> None:
        self.conn.execute(sql, tuple(params))

    def query(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        cursor = self.conn.execute(sql, tuple(params))
        return [dict(row) for row in cursor.fetchall()]

    def table_exists(self, table_name: str) -> bool:
        name = table_name.split(".")[-1]
        rows = self.query(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?",
            (name,),
        )
        return bool(rows)

    def close(self) -> None:
        self.conn.close()

    def _try_acquire_lock(self, name: str) -> bool:
        token = f"{LOCK_HOLDER}:{uuid.uuid4().hex[:8]}"
        now = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        try:
            self.conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self.LOCK_TABLE} (
                    name TEXT PRIMARY KEY,
                    holder TEXT NOT NULL,
                    acquired_at TEXT NOT NULL
                )
            """
            )
            self.conn.execute(
                f"INSERT INTO {self.LOCK_TABLE} (name, holder, acquired_at) VALUES (?, ?, ?)",
                (name, token, now),
            )
        except sqlite3.IntegrityError:
            return False
        except sqlite3.OperationalError as e:
            # Another connection is mid-migration and holds the write lock
            if "locked" in str(e):
                return False
            raise
        self._lock_tokens[name] = token
        return True

    def _release_lock(self, name: str) -> None:
        token = self._lock_tokens.pop(name, None)
        if token is None:
            return
        self.conn.execute(
            f"DELETE FROM {self.LOCK_TABLE} WHERE name = ? AND holder = ?",
            (name, token),
        )

    def lock_holder(self, name: str) -> str | None:
        if not self.table_exists(self.LOCK_TABLE):
            return None
        rows = self.query(
            f"SELECT holder, acquired_at FROM {self.LOCK_TABLE} WHERE name = ?",
            (name,),
        )
        if not rows:
            return None
        return f"{rows[0]['holder']} since {rows[0]['acquired_at']}"

    def force_release_lock(self, name: str) -> bool:
        # The row outlives a killed process; nothing else ever removes it
        if not self.table_exists(self.LOCK_TABLE):
            return False
        cursor = self.conn.execute(f"DELETE FROM {self.LOCK_TABLE} WHERE name = ?", (name,))
        self._lock_tokens.pop(name, None)
        return cursor.rowcount > 0


class PostgresDatabase(Database):
    """
    PostgreSQL database handle (psycopg 3).

    Uses a session-level pg_try_advisory_lock, so the lock survives the
    per-migration transactions and is released automatically if the
    process dies.
    """

    dialect = "postgres"
    placeholder = "%s"

    def __init__(self, conninfo: str, connect_timeout: int = 10):
        try:
            self.conn = psycopg.connect(
                conninfo,
                autocommit=True,
                connect_timeout=connect_timeout,
                row_factory=dict_row,
            )
        except psycopg.OperationalError as e:
            raise ConnectivityError(f"Cannot connect to PostgreSQL: {e}") from e

    @contextmanager
    def transaction(self) -> Iterator[Database]:
        try:
            with self.conn.transaction():
                yield self
        except psycopg.OperationalError as e:
            if self.conn.broken:
                raise ConnectivityError(f"Lost connection to PostgreSQL: {e}") from e
            raise

    def in_transaction(self) -> bool:
        return self.conn.info.transaction_status != psycopg.pq.TransactionStatus.IDLE

    @contextmanager
    def _cursor(self) -> Iterator[psycopg.Cursor]:
        """Cursor whose dropped-connection errors surface as ConnectivityError."""
        try:
            with self.conn.cursor() as cursor:
                yield cursor
        except psycopg.OperationalError as e:
            if self.conn.broken:
                raise ConnectivityError(f"Lost connection to PostgreSQL: {e}") from e
            raise

    def execute_script(self, sql: str) -> None:
        # Without parameters the text may hold many statements
        with self._cursor() as cursor:
            cursor.execute(sql)

    def execute(self, sql: str, params: Sequence[Any] = ()) -> None:
        with self._cursor() as cursor:
            cursor.execute(sql, tuple(params))

    def query(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        with self._cursor() as cursor:
            cursor.execute(sql, tuple(params))
            return list(cursor.fetchall())

    def table_exists(self, table_name: str) -> bool:
        rows = self.query("SELECT to_regclass(%s) IS NOT NULL AS present", (table_name,))
        return bool(rows and rows[0]["present"])

    def close(self) -> None:
        self.conn.close()

    @staticmethod
    def lock_key(name: str) -> int:
        """Stable signed 64-bit advisory lock key for a lock name."""
        digest = hashlib.sha256(name.encode("utf-8")).digest()
        return int.from_bytes(digest[:8], "big", signed=True)

    def _try_acquire_lock(self, name: str) -> bool:
        rows = self.query("SELECT pg_try_advisory_lock(%s) AS locked", (self.lock_key(name),))
        return bool(rows[0]["locked"])

    def _release_lock(self, name: str) -> None:
        if self.conn.closed or self.conn.broken:
            return
        self.query("SELECT pg_advisory_unlock(%s) AS unlocked", (self.lock_key(name),))

    def lock_holder(self, name: str) -> str | None:
        # A bigint advisory key is stored as classid (high half) and objid (low half)
        key = self.lock_key(name) & 0xFFFFFFFFFFFFFFFF
        rows = self.query(
            """
            SELECT a.pid, a.client_addr, a.backend_start
            FROM pg_locks l
            JOIN pg_stat_activity a ON a.pid = l.pid
            WHERE l.locktype = 'advisory' AND l.granted
              AND l.classid = %s::bigint::oid AND l.objid = %s::bigint::oid
              AND l.objsubid = 1
            """,
            (key >> 32, key & 0xFFFFFFFF),
        )
        if not rows:
            return None
        row = rows[0]
        return f"pid {row['pid']} ({row['client_addr'] or 'local'}) since {row['backend_start']}"

    def force_release_lock(self, name: str) -> bool:
        holder = self.lock_holder(name)
        if holder:
            logger.warning(
                f"Migration lock is held by {holder}; PostgreSQL releases it when that "
                "session ends (pg_terminate_backend if it is stuck)"
            )
        return False


def connect_database(config: DatabaseConfig) -> Database:
    """Open the database described by config."""
    if config.backend == "postgres":
        logger.debug("Connecting to PostgreSQL")
        return PostgresDatabase(config.conninfo(), connect_timeout=config.connect_timeout)

    logger.debug(f"Opening SQLite database {config.path}")
    return SQLiteDatabase(config.path)
