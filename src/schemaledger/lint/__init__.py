"""
Idempotency linter.

Heuristic text checks that flag migrations which would fail or duplicate
effects if re-run (missing IF [NOT] EXISTS guards, bare INSERTs, transaction
control statements, ...).
"""

from ..schemas.lint_finding import LintFinding, Severity
from .linter import LintReport, MigrationLinter
from .rules import DEFAULT_RULES, LintRule, RuleHit
from .sql_text import Statement, leading_comments, split_statements

__all__ = [
    "LintFinding",
    "Severity",
    "LintReport",
    "MigrationLinter",
    "DEFAULT_RULES",
    "LintRule",
    "RuleHit",
    "Statement",
    "leading_comments",
    "split_statements",
]
