"""
Idempotency lint rules.

Each rule is a (name, check, severity) tuple. check() receives the raw SQL
text of one migration file and returns the hits it found. Rules run in list
order; add a heuristic by appending a LintRule to DEFAULT_RULES (or passing
a custom list to MigrationLinter).

These are heuristics over masked statement text (see sql_text), not a SQL
parser: false positives and false negatives are expected.
"""

import re
from collections.abc import Callable
from typing import NamedTuple

from ..schemas.lint_finding import Severity
from .sql_text import split_statements


class RuleHit(NamedTuple):
    """One match of a rule."""

    line: int | None
    message: str
    suggestion: str | None = None


class LintRule(NamedTuple):
    """A named heuristic over raw SQL text."""

    name: str
    check: Callable[[str], list[RuleHit]]
    severity: Severity


_TRANSACTION_CONTROL = re.compile(
    r"^(BEGIN|START TRANSACTION|COMMIT|ROLLBACK|END TRANSACTION|ABORT)\b"
)
_CREATE_TABLE = re.compile(
    r"^CREATE (?:(?:GLOBAL|LOCAL) )?(?:TEMP |TEMPORARY |UNLOGGED )?TABLE\b"
)
_CREATE_INDEX = re.compile(r"^CREATE (?:UNIQUE )?INDEX\b")
_ADD_COLUMN = re.compile(r"\bADD COLUMN\b")
_DROP_OBJECT = re.compile(
    r"\bDROP (MATERIALIZED VIEW|TABLE|INDEX|VIEW|COLUMN|CONSTRAINT|FUNCTION|PROCEDURE|"
    r"TRIGGER|POLICY|SCHEMA|SEQUENCE|TYPE|EXTENSION|DOMAIN)\b"
)
_INSERT = re.compile(r"^(?:WITH\b.*?\b)?INSERT\b")
_INSERT_GUARDS = ("ON CONFLICT", "INSERT OR IGNORE", "INSERT OR REPLACE", "WHERE NOT EXISTS")
_POLICY_NAME = r'(?:"([^"]+)"|(\w+))'
_CREATE_POLICY = re.compile(rf"^CREATE POLICY {_POLICY_NAME}", re.IGNORECASE)
_DROP_POLICY_IF_EXISTS = re.compile(rf"^DROP POLICY IF EXISTS {_POLICY_NAME}", re.IGNORECASE)


def check_transaction_statements(sql: str) -> list[RuleHit]:
    """Transaction control inside a migration breaks the executor's atomicity."""
    hits = []
    for statement in split_statements(sql):
        match = _TRANSACTION_CONTROL.match(statement.normalized)
        if match:
            hits.append(
                RuleHit(
                    statement.line,
                    f"Found {match.group(1)} statement - migrations are automatically "
                    "wrapped in transactions",
                    "Remove BEGIN, COMMIT, and ROLLBACK statements from your migration",
                )
            )
    return hits


def check_create_if_not_exists(sql: str) -> list[RuleHit]:
    hits = []
    for statement in split_statements(sql):
        text = statement.normalized
        if (_CREATE_TABLE.match(text) or _CREATE_INDEX.match(text)) and (
            "IF NOT EXISTS" not in text
        ):
            kind = "CREATE TABLE" if _CREATE_TABLE.match(text) else "CREATE INDEX"
            hits.append(
                RuleHit(
                    statement.line,
                    f"{kind} without IF NOT EXISTS - may fail on re-run",
                    "Use IF NOT EXISTS for idempotent migrations",
                )
            )
    return hits


def check_add_column_if_not_exists(sql: str) -> list[RuleHit]:
    hits = []
    for statement in split_statements(sql):
        text = statement.normalized
        if not text.startswith("ALTER TABLE"):
            continue
        for match in _ADD_COLUMN.finditer(text):
            if not text[match.end():].lstrip().startswith("IF NOT EXISTS"):
                hits.append(
                    RuleHit(
                        statement.line,
                        "ADD COLUMN without IF NOT EXISTS - may fail if column already exists",
                        "Use ADD COLUMN IF NOT EXISTS for idempotent migrations",
                    )
                )
    return hits


def check_drop_if_exists(sql: str) -> list[RuleHit]:
    hits = []
    for statement in split_statements(sql):
        text = statement.normalized
        for match in _DROP_OBJECT.finditer(text):
            rest = text[match.end():].lstrip()
            if rest.startswith("CONCURRENTLY"):
                rest = rest[len("CONCURRENTLY"):].lstrip()
            if not rest.startswith("IF EXISTS"):
                kind = match.group(1)
                hits.append(
                    RuleHit(
                        statement.line,
                        f"DROP {kind} without IF EXISTS - may fail if it does not exist",
                        f"Use DROP {kind} IF EXISTS for idempotent migrations",
                    )
                )
    return hits


def check_insert_on_conflict(sql: str) -> list[RuleHit]:
    hits = []
    for statement in split_statements(sql):
        text = statement.normalized
        if _INSERT.match(text) and not any(guard in text for guard in _INSERT_GUARDS):
            hits.append(
                RuleHit(
                    statement.line,
                    "INSERT without ON CONFLICT - may duplicate rows or fail on re-run",
                    "Add ON CONFLICT DO NOTHING (or DO UPDATE) to make the insert idempotent",
                )
            )
    return hits


def check_truncate(sql: str) -> list[RuleHit]:
    return [
        RuleHit(
            statement.line,
            "TRUNCATE statement found - this deletes all data",
            "Ensure this is intentional and documented",
        )
        for statement in split_statements(sql)
        if statement.normalized.startswith("TRUNCATE")
    ]


def check_policy_dropped_first(sql: str) -> list[RuleHit]:
    """CREATE POLICY fails on re-run unless the policy is dropped first."""
    hits = []
    dropped: set[str] = set()
    for statement in split_statements(sql):
        text = statement.compact
        drop = _DROP_POLICY_IF_EXISTS.match(text)
        if drop:
            dropped.add((drop.group(1) or drop.group(2)).lower())
            continue
        create = _CREATE_POLICY.match(text)
        if create:
            name = create.group(1) or create.group(2)
            if name.lower() not in dropped:
                hits.append(
                    RuleHit(
                        statement.line,
                        f'CREATE POLICY "{name}" without preceding DROP POLICY IF EXISTS',
                        "Add DROP POLICY IF EXISTS before CREATE POLICY for idempotent migrations",
                    )
                )
    return hits


def check_has_comments(sql: str) -> list[RuleHit]:
    for line in sql.splitlines():
        stripped = line.strip()
        if (stripped.startswith("--") and len(stripped) > 3) or stripped.startswith("/*"):
            return []
    return [
        RuleHit(
            None,
            "Migration lacks comments explaining the purpose and intent",
            "Add comments describing what the migration does and why",
        )
    ]


DEFAULT_RULES: list[LintRule] = [
    LintRule("no-transaction-statements", check_transaction_statements, Severity.ERROR),
    LintRule("create-without-if-not-exists", check_create_if_not_exists, Severity.WARNING),
    LintRule(
        "add-column-without-if-not-exists", check_add_column_if_not_exists, Severity.WARNING
    ),
    LintRule("drop-without-if-exists", check_drop_if_exists, Severity.WARNING),
    LintRule("insert-without-on-conflict", check_insert_on_conflict, Severity.WARNING),
    LintRule("truncate-statement", check_truncate, Severity.WARNING),
    LintRule("create-policy-without-drop", check_policy_dropped_first, Severity.WARNING),
    LintRule("missing-comments", check_has_comments, Severity.INFO),
]
