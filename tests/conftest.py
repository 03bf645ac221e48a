"""Test fixtures and utilities."""

from pathlib import Path

import pytest

from schemaledger.repository import MigrationScanner
from schemaledger.runner.executor import MigrationExecutor
from schemaledger.state_store import LedgerAccessor, SQLiteDatabase

# Two-file scenario: a table, then a column added to it
CREATE_WORDS_SQL = """-- Create the words table
CREATE TABLE IF NOT EXISTS words (
    id INTEGER PRIMARY KEY,
    term TEXT NOT NULL
);
"""

ADD_CATEGORY_SQL = """-- Add a category to words
ALTER TABLE words ADD COLUMN category TEXT;
"""


@pytest.fixture
def temp_db(tmp_path) -> Path:
    """Temporary database path for testing."""
    return tmp_path / "test_migrations.db"


@pytest.fixture
def migrations_dir(tmp_path) -> Path:
    """Empty migrations directory."""
    path = tmp_path / "migrations"
    path.mkdir()
    return path


@pytest.fixture
def write_migration(migrations_dir):
    """Factory writing V<version>__<description>.sql into migrations_dir."""

    def _write(version: str, description: str, sql: str) -> Path:
        path = migrations_dir / f"V{version}__{description}.sql"
        path.write_text(sql, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def database(temp_db):
    """Open SQLite database, closed after the test."""
    db = SQLiteDatabase(temp_db)
    yield db
    db.close()


@pytest.fixture
def ledger(database) -> LedgerAccessor:
    return LedgerAccessor(database)


@pytest.fixture
def scanner(migrations_dir) -> MigrationScanner:
    return MigrationScanner(migrations_dir)


@pytest.fixture
def executor(database, scanner, ledger) -> MigrationExecutor:
    """Executor that fails fast on lock contention."""
    return MigrationExecutor(database, scanner, ledger, lock_timeout_seconds=0)


@pytest.fixture
def two_migrations(write_migration) -> list[Path]:
    """The create-table / add-column pair."""
    return [
        write_migration("20240101000000", "create_words", CREATE_WORDS_SQL),
        write_migration("20240102000000", "add_category", ADD_CATEGORY_SQL),
    ]


# Environment variables read by load_config
CONFIG_ENV_VARS = [
    "SCHEMALEDGER_DB_BACKEND",
    "SCHEMALEDGER_DB_PATH",
    "DATABASE_URL",
    "PGHOST",
    "PGPORT",
    "PGDATABASE",
    "PGUSER",
    "PGPASSWORD",
    "PGSSLMODE",
    "MIGRATIONS_DIR",
    "SCHEMALEDGER_LEDGER_TABLE",
    "SCHEMALEDGER_LOCK_TIMEOUT",
    "SCHEMALEDGER_LINT_ON_MIGRATE",
    "SCHEMALEDGER_MAX_ATTEMPTS",
]


@pytest.fixture
def clean_env(monkeypatch):
    """Isolate a test from the developer's environment."""
    for name in CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
