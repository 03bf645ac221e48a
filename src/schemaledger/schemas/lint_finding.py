"""Lint finding value types."""

from dataclasses import dataclass
from enum import Enum


class Severity(str, Enum):
    """Severity of a lint finding."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class LintFinding:
    """One heuristic finding in one migration file."""

    file: str
    rule: str
    severity: Severity
    message: str
    line: int | None = None
    suggestion: str | None = None

    @property
    def location(self) -> str:
        if self.line is None:
            return self.file
        return f"{self.file}:{self.line}"
