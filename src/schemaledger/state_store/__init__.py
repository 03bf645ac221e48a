"""
State Store.

Database handles (SQLite / PostgreSQL) and the append-only ledger of
applied migrations.

Enforces uniqueness on version: a migration is recorded at most once.
"""

from .database import (
    Database,
    PostgresDatabase,
    SQLiteDatabase,
    connect_database,
    split_sqlite_statements,
)
from .ledger import DEFAULT_LEDGER_TABLE, LedgerAccessor

__all__ = [
    "Database",
    "PostgresDatabase",
    "SQLiteDatabase",
    "connect_database",
    "split_sqlite_statements",
    "DEFAULT_LEDGER_TABLE",
    "LedgerAccessor",
]
