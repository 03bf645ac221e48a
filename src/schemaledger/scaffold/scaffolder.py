"""
Migration scaffolding.

- create_migration: new empty V<timestamp>__<slug>.sql file
- create_revert: new V<timestamp>__revert_<original>.sql file whose body is
  commented inverse-operation hints for a prior migration

Nothing here touches the database. A scaffolded revert is an ordinary
pending migration once the author has completed and reviewed it.
"""

import logging
import re
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path

from ..errors import ScaffoldError
from ..lint.sql_text import Statement, leading_comments, split_statements
from ..repository.scanner import (
    VERSION_FORMAT,
    MigrationScanner,
    build_filename,
    format_version,
    slugify,
)

logger = logging.getLogger(__name__)

_NAME = r'([\w."]+)'
_I = re.IGNORECASE
_NOT_COLUMNS = {"CONSTRAINT", "PRIMARY", "FOREIGN", "UNIQUE", "CHECK", "EXCLUDE"}

MIGRATION_TEMPLATE = """-- Migration: {description}
-- Generated at {generated_at} UTC
-- Write idempotent SQL statements below.
-- Do not add BEGIN/COMMIT/ROLLBACK: each migration runs in its own transaction.

"""

REVERT_TEMPLATE = """-- ROLLBACK for {original_filename}
-- This migration reverts the changes made in the referenced migration
--
-- INSTRUCTIONS:
-- 1. Review the original migration file ({original_filename})
-- 2. Write SQL that reverses each operation
-- 3. Test on a staging database first
-- 4. Document why rollback was necessary
--
-- ORIGINAL MIGRATION SUMMARY:
-- {summary}
--
-- SUGGESTED INVERSE OPERATIONS (derived from the original, last statement first):
{hints}
--
-- IMPORTANT:
-- - Use IF EXISTS / IF NOT EXISTS for idempotent operations
-- - For data migrations, consider if rollback is even possible
-- - Nothing in this file runs until you uncomment or write the SQL yourself

"""


def _alter_table_hints(match: re.Match) -> list[str]:
    table, actions = match.group(1), match.group(2)
    hints = []
    for action in re.finditer(r"ADD (?:COLUMN )?(?:IF NOT EXISTS )?(\w+)", actions, _I):
        if action.group(1).upper() in _NOT_COLUMNS:
            continue
        hints.append(f"ALTER TABLE {table} DROP COLUMN IF EXISTS {action.group(1)};")
    for action in re.finditer(r"ADD CONSTRAINT (?:IF NOT EXISTS )?(\w+)", actions, _I):
        hints.append(f"ALTER TABLE {table} DROP CONSTRAINT IF EXISTS {action.group(1)};")
    for action in re.finditer(r"DROP COLUMN (?:IF EXISTS )?(\w+)", actions, _I):
        hints.append(
            f"ALTER TABLE {table} ADD COLUMN IF NOT EXISTS {action.group(1)} <type>; "
            "(data must be restored from a backup)"
        )
    for action in re.finditer(r"RENAME COLUMN (\w+) TO (\w+)", actions, _I):
        hints.append(
            f"ALTER TABLE {table} RENAME COLUMN {action.group(2)} TO {action.group(1)};"
        )
    rename = re.match(r"RENAME TO (\S+)", actions, _I)
    if rename:
        hints.append(f"ALTER TABLE {rename.group(1)} RENAME TO {table};")
    if re.search(r"ENABLE ROW LEVEL SECURITY", actions, _I):
        hints.append(f"ALTER TABLE {table} DISABLE ROW LEVEL SECURITY;")
    if re.search(r"ALTER COLUMN (\w+) (?:SET DATA )?TYPE", actions, _I):
        hints.append(f"ALTER TABLE {table} ALTER COLUMN ... TYPE <previous type>;")
    return hints


# (pattern over the compact statement text, hint builder), first match wins
_REVERT_PATTERNS: list[tuple[re.Pattern, Callable[[re.Match], list[str]]]] = [
    (
        re.compile(rf"^ALTER TABLE (?:IF EXISTS )?(?:ONLY )?{_NAME} (.*)$", _I),
        _alter_table_hints,
    ),
    (
        re.compile(
            rf"^CREATE (?:(?:GLOBAL|LOCAL) )?(?:TEMP |TEMPORARY |UNLOGGED )?TABLE "
            rf"(?:IF NOT EXISTS )?{_NAME}",
            _I,
        ),
        lambda m: [f"DROP TABLE IF EXISTS {m.group(1)} CASCADE;"],
    ),
    (
        re.compile(
            rf"^CREATE (?:UNIQUE )?INDEX (?:CONCURRENTLY )?(?:IF NOT EXISTS )?{_NAME}", _I
        ),
        lambda m: [f"DROP INDEX IF EXISTS {m.group(1)};"],
    ),
    (
        re.compile(rf"^CREATE (?:OR REPLACE )?MATERIALIZED VIEW (?:IF NOT EXISTS )?{_NAME}", _I),
        lambda m: [f"DROP MATERIALIZED VIEW IF EXISTS {m.group(1)};"],
    ),
    (
        re.compile(
            rf"^CREATE (?:OR REPLACE )?(?:TEMP |TEMPORARY )?VIEW (?:IF NOT EXISTS )?{_NAME}", _I
        ),
        lambda m: [
            f"DROP VIEW IF EXISTS {m.group(1)}; "
            "(if the view was replaced, restore its previous definition)"
        ],
    ),
    (
        re.compile(rf"^CREATE (?:OR REPLACE )?(FUNCTION|PROCEDURE) {_NAME}\s*\(", _I),
        lambda m: [f"DROP {m.group(1).upper()} IF EXISTS {m.group(2)}(<argument types>);"],
    ),
    (
        re.compile(
            rf"^CREATE (?:OR REPLACE )?(?:CONSTRAINT )?TRIGGER (?:IF NOT EXISTS )?{_NAME}"
            rf".*?\bON {_NAME}",
            _I,
        ),
        lambda m: [f"DROP TRIGGER IF EXISTS {m.group(1)} ON {m.group(2)};"],
    ),
    (
        re.compile(rf"^CREATE POLICY {_NAME} ON {_NAME}", _I),
        lambda m: [f"DROP POLICY IF EXISTS {m.group(1)} ON {m.group(2)};"],
    ),
    (
        re.compile(rf"^CREATE (TYPE|SEQUENCE|DOMAIN|SCHEMA) (?:IF NOT EXISTS )?{_NAME}", _I),
        lambda m: [f"DROP {m.group(1).upper()} IF EXISTS {m.group(2)};"],
    ),
    (
        re.compile(rf"^CREATE EXTENSION (?:IF NOT EXISTS )?{_NAME}", _I),
        lambda m: [f"DROP EXTENSION IF EXISTS {m.group(1)};"],
    ),
    (
        re.compile(rf"^DROP (TABLE|VIEW|INDEX|FUNCTION|TRIGGER|POLICY|TYPE) (?:IF EXISTS )?{_NAME}", _I),
        lambda m: [
            f"Recreate {m.group(1).upper()} {m.group(2)} from its previous definition "
            "(and restore data from a backup)"
        ],
    ),
    (
        re.compile(rf"^(?:WITH\b.*?\b)?INSERT (?:OR \w+ )?INTO {_NAME}", _I),
        lambda m: [f"DELETE FROM {m.group(1)} WHERE <rows inserted by the original>;"],
    ),
    (
        re.compile(rf"^UPDATE {_NAME}", _I),
        lambda m: [f"Irreversible: UPDATE on {m.group(1)} needs a backup of the previous values"],
    ),
    (
        re.compile(rf"^DELETE FROM {_NAME}", _I),
        lambda m: [f"Irreversible: DELETE FROM {m.group(1)} needs a backup of the deleted rows"],
    ),
    (
        re.compile(rf"^TRUNCATE (?:TABLE )?{_NAME}", _I),
        lambda m: [f"Irreversible: TRUNCATE {m.group(1)} needs a backup of the deleted rows"],
    ),
]


def hints_for_statement(statement: Statement) -> list[str]:
    """Inverse-operation hints for one statement."""
    text = statement.compact
    for pattern, build in _REVERT_PATTERNS:
        match = pattern.match(text)
        if match:
            hints = build(match)
            if hints:
                return hints
    preview = text if len(text) <= 60 else text[:57] + "..."
    return [f"No automatic hint for line {statement.line}: {preview}"]


def revert_hints(sql: str) -> list[str]:
    """Hints for a whole migration body, last statement first."""
    hints: list[str] = []
    for statement in reversed(split_statements(sql)):
        hints.extend(hints_for_statement(statement))
    return hints


def _fresh_version(scanner: MigrationScanner, now: datetime | None) -> str:
    """A version for 'now' that sorts after every version already on disk.

    A naive 'now' is taken to be UTC already, as format_version does.
    """
    moment = now or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc).replace(microsecond=0)
    existing = scanner.versions()
    if existing:
        newest = datetime.strptime(existing[-1], VERSION_FORMAT).replace(tzinfo=timezone.utc)
        if moment <= newest:
            moment = newest + timedelta(seconds=1)
    return format_version(moment)


def _write_new(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        with open(path, "x", encoding="utf-8") as f:
            f.write(content)
    except FileExistsError:
        raise ScaffoldError(f"Refusing to overwrite existing migration {path.name}") from None


def create_migration(
    description: str,
    migrations_dir: Path | str,
    now: datetime | None = None,
) -> Path:
    """
    Scaffold a new, empty migration file.

    Args:
        description: Free text; slugified into the filename
        migrations_dir: Target directory (created if missing)
        now: Override for the version timestamp (UTC)

    Returns:
        Path of the created file
    """
    slug = slugify(description)
    if not slug:
        raise ScaffoldError("Description must include at least one alphanumeric character.")

    scanner = MigrationScanner(migrations_dir)
    version = _fresh_version(scanner, now)
    path = Path(migrations_dir) / build_filename(version, slug)

    generated_at = datetime.strptime(version, VERSION_FORMAT).isoformat()
    _write_new(path, MIGRATION_TEMPLATE.format(description=description.strip(), generated_at=generated_at))
    logger.info(f"Created migration {path.name}")
    return path


def create_revert(
    version: str,
    scanner: MigrationScanner,
    now: datetime | None = None,
) -> Path:
    """
    Scaffold a revert migration for an existing one.

    Args:
        version: Version to revert (V-prefixed or bare 14 digits)
        scanner: Scanner over the migrations directory
        now: Override for the new version timestamp (UTC)

    Returns:
        Path of the created file

    Raises:
        MigrationNotFoundError: No file for version
    """
    original = scanner.find(version)

    summary = leading_comments(original.raw_content) or ["No description available"]
    hints = revert_hints(original.raw_content) or ["The original migration has no statements"]

    new_version = _fresh_version(scanner, now)
    path = scanner.migrations_dir / build_filename(new_version, f"revert_{original.description}")

    content = REVERT_TEMPLATE.format(
        original_filename=original.filename,
        summary="\n-- ".join(line for line in summary if line) or "No description available",
        hints="\n".join(f"-- {hint}" for hint in hints),
    )
    _write_new(path, content)
    logger.info(f"Created revert migration {path.name} for {original.filename}")
    return path
