"""Tests for the transactional executor.

Covers the run contract end to end on SQLite:
- pending files are applied in ascending version order
- a second run is a no-op and leaves the ledger untouched
- an edited, already-applied file aborts the run before anything executes
- a failing migration leaves neither schema changes nor a ledger row
- check() never writes
"""

import pytest

from schemaledger.errors import (
    ChecksumMismatchError,
    LockContentionError,
    MigrationExecutionError,
)
from schemaledger.runner.executor import (
    MigrationExecutor,
    MigrationState,
    TransactionControlError,
)
from schemaledger.state_store import LedgerAccessor, SQLiteDatabase


def table_columns(database, table: str) -> list[str]:
    return [row["name"] for row in database.query(f"PRAGMA table_info({table})")]


def ledger_rows(database) -> list[dict]:
    return database.query("SELECT * FROM schema_version ORDER BY version")


class TestMigrate:
    """Tests for applying pending migrations."""

    def test_applies_pending_in_order(self, executor, database, two_migrations):
        """The two-file scenario: table first, then the column."""
        result = executor.migrate()

        assert [migration.version for migration in result.applied] == [
            "20240101000000",
            "20240102000000",
        ]
        assert table_columns(database, "words") == ["id", "term", "category"]
        assert [row["version"] for row in ledger_rows(database)] == [
            "20240101000000",
            "20240102000000",
        ]
        assert result.exit_code == 0

    def test_ledger_records_checksum_and_metadata(self, executor, database, two_migrations):
        executor.migrate()

        rows = ledger_rows(database)
        migrations = list(executor.scanner.list())
        assert [row["checksum"] for row in rows] == [m.checksum for m in migrations]
        assert rows[0]["filename"] == "V20240101000000__create_words.sql"
        assert rows[0]["description"] == "create words"
        assert rows[0]["applied_at"].endswith("Z")

    def test_order_independent_of_file_creation(self, write_migration, executor, database):
        """A later version written first still runs second."""
        write_migration(
            "20240102000000", "add_category", "ALTER TABLE words ADD COLUMN category TEXT;"
        )
        write_migration("20240101000000", "create_words", "CREATE TABLE words (id INTEGER);")

        executor.migrate()

        assert table_columns(database, "words") == ["id", "category"]

    def test_second_run_is_noop(self, executor, database, two_migrations):
        executor.migrate()
        before = ledger_rows(database)

        result = executor.migrate()

        assert result.applied == []
        assert len(result.already_applied) == 2
        assert ledger_rows(database) == before

    def test_only_new_files_applied(self, executor, database, write_migration, two_migrations):
        executor.migrate()
        write_migration(
            "20240103000000", "add_level", "ALTER TABLE words ADD COLUMN level INTEGER;"
        )

        result = executor.migrate()

        assert [migration.version for migration in result.applied] == ["20240103000000"]
        assert "level" in table_columns(database, "words")

    def test_empty_directory(self, executor, database):
        result = executor.migrate()

        assert result.applied == []
        assert result.pending == []
        assert database.table_exists("schema_version")

    def test_states_tracked(self, executor, two_migrations):
        result = executor.migrate()
        assert set(result.states.values()) == {MigrationState.COMMITTED}


class TestChecksumVerification:
    """Applied files must never change."""

    def test_mismatch_aborts_before_pending(self, executor, database, write_migration, two_migrations):
        executor.migrate()
        two_migrations[0].write_text("CREATE TABLE words (id INTEGER); -- edited\n")
        write_migration("20240103000000", "create_tags", "CREATE TABLE tags (id INTEGER);")

        with pytest.raises(ChecksumMismatchError) as exc_info:
            executor.migrate()

        error = exc_info.value
        assert error.version == "20240101000000"
        assert error.filename == "V20240101000000__create_words.sql"
        assert error.expected != error.actual
        # Nothing after the mismatch ran
        assert not database.table_exists("tags")
        assert len(ledger_rows(database)) == 2

    def test_mismatch_also_fails_check(self, executor, two_migrations):
        executor.migrate()
        two_migrations[1].write_text("ALTER TABLE words ADD COLUMN category INTEGER;\n")

        with pytest.raises(ChecksumMismatchError):
            executor.check()


class TestAtomicity:
    """A failing migration is rolled back as a whole."""

    def test_failure_rolls_back_statements_and_ledger(self, executor, database, write_migration):
        write_migration("20240101000000", "create_words", "CREATE TABLE words (id INTEGER);")
        write_migration(
            "20240102000000",
            "broken",
            "CREATE TABLE tags (id INTEGER);\nINSERT INTO no_such_table VALUES (1);\n",
        )
        write_migration("20240103000000", "after", "CREATE TABLE later (id INTEGER);")

        with pytest.raises(MigrationExecutionError) as exc_info:
            executor.migrate()

        assert exc_info.value.version == "20240102000000"
        assert exc_info.value.cause is not None
        # Earlier migration stays committed
        assert database.table_exists("words")
        # Failed migration left nothing behind
        assert not database.table_exists("tags")
        # Later migration was not attempted
        assert not database.table_exists("later")
        assert [row["version"] for row in ledger_rows(database)] == ["20240101000000"]

    def test_rerun_after_fix_resumes(self, executor, database, write_migration):
        write_migration("20240101000000", "create_words", "CREATE TABLE words (id INTEGER);")
        broken = write_migration("20240102000000", "broken", "INSERT INTO nope VALUES (1);")
        with pytest.raises(MigrationExecutionError):
            executor.migrate()

        # Never applied, so editing it is allowed
        broken.write_text("CREATE TABLE nope (id INTEGER);\n")
        result = executor.migrate()

        assert [migration.version for migration in result.applied] == ["20240102000000"]

    def test_transaction_control_in_body_is_rejected(self, executor, database, write_migration):
        write_migration(
            "20240101000000", "sneaky_commit", "CREATE TABLE words (id INTEGER);\nCOMMIT;\n"
        )

        with pytest.raises(MigrationExecutionError) as exc_info:
            executor.migrate()

        assert isinstance(exc_info.value.cause, TransactionControlError)
        assert "line 2" in str(exc_info.value)
        # Nothing before the COMMIT may have been executed
        assert not database.table_exists("words")
        assert ledger_rows(database) == []

    def test_transaction_control_stops_the_run(self, executor, database, write_migration):
        write_migration("20240101000000", "create_words", "CREATE TABLE words (id INTEGER);")
        write_migration("20240102000000", "with_begin", "BEGIN;\nCREATE TABLE tags (id INTEGER);")
        write_migration("20240103000000", "create_notes", "CREATE TABLE notes (id INTEGER);")

        with pytest.raises(MigrationExecutionError):
            executor.migrate()

        assert [row["version"] for row in ledger_rows(database)] == ["20240101000000"]
        assert not database.table_exists("tags")
        assert not database.table_exists("notes")

    def test_trigger_begin_is_not_transaction_control(self, executor, database, write_migration):
        """BEGIN inside a trigger body starts a block, not a transaction."""
        write_migration(
            "20240101000000",
            "words_trigger",
            "CREATE TABLE IF NOT EXISTS words (id INTEGER PRIMARY KEY, term TEXT);\n"
            "CREATE TABLE IF NOT EXISTS audit (term TEXT);\n"
            "CREATE TRIGGER IF NOT EXISTS words_audit AFTER INSERT ON words\n"
            "BEGIN\n"
            "  INSERT INTO audit (term) VALUES (NEW.term);\n"
            "END;\n",
        )

        result = executor.migrate()

        assert len(result.applied) == 1
        assert database.table_exists("audit")


class TestCheck:
    """Dry runs never write."""

    def test_check_reports_pending_without_writing(self, executor, database, two_migrations):
        result = executor.check()

        assert result.dry_run is True
        assert [migration.version for migration in result.pending] == [
            "20240101000000",
            "20240102000000",
        ]
        assert result.exit_code == 1
        # No ledger table, no schema changes, no lock table
        assert not database.table_exists("schema_version")
        assert not database.table_exists("words")
        assert not database.table_exists("schemaledger_lock")

    def test_check_after_migrate_is_clean(self, executor, two_migrations):
        executor.migrate()

        result = executor.check()

        assert result.pending == []
        assert result.exit_code == 0

    def test_check_leaves_ledger_unchanged(self, executor, database, write_migration, two_migrations):
        executor.migrate()
        before = ledger_rows(database)
        write_migration("20240103000000", "create_tags", "CREATE TABLE tags (id INTEGER);")

        result = executor.check()

        assert [migration.version for migration in result.pending] == ["20240103000000"]
        assert ledger_rows(database) == before
        assert not database.table_exists("tags")


class TestPlan:
    """Tests for plan edge cases."""

    def test_orphaned_entries_reported(self, executor, two_migrations):
        executor.migrate()
        two_migrations[1].unlink()

        plan = executor.plan()

        assert [entry.version for entry in plan.orphaned] == ["20240102000000"]
        assert plan.is_empty

    def test_out_of_order_pending_still_applied(self, executor, database, write_migration):
        write_migration("20240105000000", "create_words", "CREATE TABLE words (id INTEGER);")
        executor.migrate()
        write_migration("20240101000000", "create_tags", "CREATE TABLE tags (id INTEGER);")

        result = executor.migrate()

        assert [migration.version for migration in result.applied] == ["20240101000000"]
        assert database.table_exists("tags")


class TestBootstrap:
    """Tests for recording without executing."""

    def test_bootstrap_records_without_executing(self, executor, database, two_migrations):
        recorded = executor.bootstrap()

        assert [migration.version for migration in recorded] == [
            "20240101000000",
            "20240102000000",
        ]
        assert not database.table_exists("words")
        assert executor.check().pending == []

    def test_bootstrap_is_idempotent(self, executor, two_migrations):
        executor.bootstrap()
        assert executor.bootstrap() == []


class TestConcurrency:
    """Only one run may hold the migration lock."""

    def test_second_runner_fails_fast(self, temp_db, scanner, two_migrations):
        holder = SQLiteDatabase(temp_db)
        contender = SQLiteDatabase(temp_db)
        try:
            holder_executor = MigrationExecutor(
                holder, scanner, LedgerAccessor(holder), lock_timeout_seconds=0
            )
            contender_executor = MigrationExecutor(
                contender, scanner, LedgerAccessor(contender), lock_timeout_seconds=0
            )

            with holder.advisory_lock(holder_executor.lock_name, timeout_seconds=0):
                with pytest.raises(LockContentionError):
                    contender_executor.migrate()

            # Nothing applied by the contender
            assert not contender.table_exists("words")
            assert contender_executor.migrate().applied
        finally:
            holder.close()
            contender.close()

    def test_unlock_after_killed_run(self, temp_db, executor, two_migrations):
        killed = SQLiteDatabase(temp_db)
        killed._try_acquire_lock(executor.lock_name)
        killed.close()

        with pytest.raises(LockContentionError) as exc_info:
            executor.migrate()

        holder = executor.unlock()
        assert holder is not None
        assert holder == exc_info.value.holder
        assert len(executor.migrate().applied) == 2
        assert executor.unlock() is None
