"""Tests for migration scaffolding."""

from datetime import datetime, timezone

import pytest

from schemaledger.errors import MigrationNotFoundError, ScaffoldError
from schemaledger.repository import parse_filename
from schemaledger.scaffold import create_migration, create_revert, revert_hints

NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


class TestCreateMigration:
    """Tests for create_migration."""

    def test_creates_named_file_with_header(self, migrations_dir):
        path = create_migration("Add user preferences", migrations_dir, now=NOW)

        assert path.name == "V20250601120000__add_user_preferences.sql"
        content = path.read_text()
        assert content.startswith("-- Migration: Add user preferences\n")
        assert "-- Generated at 2025-06-01T12:00:00 UTC" in content

    def test_empty_slug_rejected(self, migrations_dir):
        with pytest.raises(ScaffoldError):
            create_migration("!!!", migrations_dir, now=NOW)
        assert list(migrations_dir.iterdir()) == []

    def test_creates_missing_directory(self, tmp_path):
        target = tmp_path / "db" / "migrations"
        path = create_migration("init", target, now=NOW)
        assert path.parent == target
        assert path.exists()

    def test_never_overwrites_and_stays_ordered(self, migrations_dir):
        """A second file in the same second gets the next version."""
        first = create_migration("one", migrations_dir, now=NOW)
        second = create_migration("two", migrations_dir, now=NOW)

        assert parse_filename(first.name)[0] == "20250601120000"
        assert parse_filename(second.name)[0] == "20250601120001"

    def test_version_after_newest_existing(self, write_migration, migrations_dir):
        write_migration("20300101000000", "future", "SELECT 1;")

        path = create_migration("next", migrations_dir, now=NOW)

        assert parse_filename(path.name)[0] == "20300101000001"

    def test_naive_now_is_read_as_utc(self, migrations_dir):
        naive = datetime(2025, 6, 1, 12, 0, 0)

        path = create_migration("naive", migrations_dir, now=naive)

        assert parse_filename(path.name)[0] == "20250601120000"


class TestRevertHints:
    """Tests for inverse-operation hints."""

    def test_reverse_statement_order(self):
        sql = (
            "CREATE TABLE IF NOT EXISTS words (id INT);\n"
            "ALTER TABLE words ADD COLUMN IF NOT EXISTS category TEXT;\n"
        )
        assert revert_hints(sql) == [
            "ALTER TABLE words DROP COLUMN IF EXISTS category;",
            "DROP TABLE IF EXISTS words CASCADE;",
        ]

    def test_rename_column_reversed(self):
        hints = revert_hints("ALTER TABLE words RENAME COLUMN term TO word;")
        assert hints == ["ALTER TABLE words RENAME COLUMN word TO term;"]

    def test_index_and_policy(self):
        hints = revert_hints(
            "CREATE INDEX IF NOT EXISTS idx_words_term ON words (term);\n"
            'CREATE POLICY "read_own" ON words USING (true);\n'
        )
        assert hints == [
            'DROP POLICY IF EXISTS "read_own" ON words;',
            "DROP INDEX IF EXISTS idx_words_term;",
        ]

    def test_data_changes_flagged(self):
        hints = revert_hints(
            "INSERT INTO words (term) VALUES ('a') ON CONFLICT DO NOTHING;\n"
            "UPDATE words SET term = lower(term);\n"
            "DELETE FROM words WHERE term = '';\n"
        )
        assert hints[0].startswith("Irreversible: DELETE FROM words")
        assert hints[1].startswith("Irreversible: UPDATE on words")
        assert hints[2].startswith("DELETE FROM words WHERE")

    def test_unknown_statement(self):
        hints = revert_hints("VACUUM;")
        assert hints == ["No automatic hint for line 1: VACUUM"]


class TestCreateRevert:
    """Tests for create_revert."""

    def test_creates_revert_file(self, write_migration, scanner):
        write_migration(
            "20250101120000",
            "add_category",
            "-- Add a category column\nALTER TABLE words ADD COLUMN category TEXT;\n",
        )

        path = create_revert("V20250101120000", scanner, now=NOW)

        assert path.name == "V20250601120000__revert_add_category.sql"
        content = path.read_text()
        assert content.startswith("-- ROLLBACK for V20250101120000__add_category.sql\n")
        assert "-- Add a category column" in content
        assert "-- ALTER TABLE words DROP COLUMN IF EXISTS category;" in content

    def test_revert_body_is_inert(self, write_migration, scanner):
        """Every line of the scaffold is a comment; nothing runs until edited."""
        write_migration("20250101120000", "create_words", "CREATE TABLE words (id INT);\n")

        path = create_revert("20250101120000", scanner, now=NOW)

        lines = [line for line in path.read_text().splitlines() if line.strip()]
        assert all(line.startswith("--") for line in lines)

    def test_no_description_available(self, write_migration, scanner):
        write_migration("20250101120000", "create_words", "CREATE TABLE words (id INT);\n")

        content = create_revert("20250101120000", scanner, now=NOW).read_text()

        assert "-- No description available" in content

    def test_version_after_newest(self, write_migration, scanner):
        write_migration("20250101120000", "create_words", "CREATE TABLE words (id INT);\n")
        write_migration("20260101000000", "later", "SELECT 1;\n")

        path = create_revert("20250101120000", scanner, now=NOW)

        assert parse_filename(path.name)[0] == "20260101000001"

    def test_unknown_version(self, scanner):
        with pytest.raises(MigrationNotFoundError):
            create_revert("V20250101120000", scanner, now=NOW)

    def test_malformed_version(self, scanner):
        with pytest.raises(ValueError):
            create_revert("yesterday", scanner, now=NOW)
