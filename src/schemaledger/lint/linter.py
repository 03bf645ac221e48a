"""
Idempotency linter.

Runs the ordered rule list over each migration file and collects findings.
Findings are advisory; LintReport.exit_code() decides what blocks:
- default: any error-severity finding fails
- strict: warnings fail too
"""

import logging
from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from ..schemas.lint_finding import LintFinding, Severity
from ..schemas.migration import MigrationFile
from .rules import DEFAULT_RULES, LintRule

logger = logging.getLogger(__name__)


@dataclass
class LintReport:
    """Findings for a set of files."""

    files: list[str] = field(default_factory=list)
    findings: list[LintFinding] = field(default_factory=list)

    def counts(self) -> dict[Severity, int]:
        counter = Counter(finding.severity for finding in self.findings)
        return {severity: counter.get(severity, 0) for severity in Severity}

    def for_file(self, filename: str) -> list[LintFinding]:
        return [finding for finding in self.findings if finding.file == filename]

    @property
    def has_errors(self) -> bool:
        return any(finding.severity == Severity.ERROR for finding in self.findings)

    @property
    def has_warnings(self) -> bool:
        return any(finding.severity == Severity.WARNING for finding in self.findings)

    def exit_code(self, strict: bool = False) -> int:
        if self.has_errors or (strict and self.has_warnings):
            return 1
        return 0


class MigrationLinter:
    """
    Static text checks for non-idempotent SQL.

    Usage:
        linter = MigrationLinter()
        findings = linter.lint(migration)
    """

    def __init__(self, rules: Sequence[LintRule] = DEFAULT_RULES):
        self.rules = list(rules)

    def lint(self, migration: MigrationFile) -> list[LintFinding]:
        """Run every rule over one file, in rule order."""
        findings: list[LintFinding] = []
        for rule in self.rules:
            for hit in rule.check(migration.raw_content):
                findings.append(
                    LintFinding(
                        file=migration.filename,
                        rule=rule.name,
                        severity=rule.severity,
                        message=hit.message,
                        line=hit.line,
                        suggestion=hit.suggestion,
                    )
                )
        logger.debug(f"Linted {migration.filename}: {len(findings)} finding(s)")
        return findings

    def lint_all(self, migrations: Iterable[MigrationFile]) -> LintReport:
        """Lint many files into one report."""
        report = LintReport()
        for migration in migrations:
            report.files.append(migration.filename)
            report.findings.extend(self.lint(migration))
        return report
