"""
SQL text helpers for the linter and the revert scaffolder.

This is not a parser. It only knows enough lexical structure to split a file
into statements and to hide text that must not be matched:
- line (--) and block (/* */) comments are removed
- 'string literals' are blanked to ''
- $tag$ dollar-quoted bodies $tag$ are blanked to $$
Double-quoted identifiers are kept, since rules match on them.
"""

import re
from dataclasses import dataclass

_DOLLAR_TAG = re.compile(r"\$[A-Za-z_][A-Za-z0-9_]*\$|\$\$")
_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class Statement:
    """One SQL statement with the line it starts on (1-based)."""

    line: int
    text: str
    masked: str

    @property
    def compact(self) -> str:
        """Masked text with whitespace collapsed, without the trailing semicolon."""
        return _WHITESPACE.sub(" ", self.masked).strip().rstrip(";").strip()

    @property
    def normalized(self) -> str:
        """compact, uppercased."""
        return self.compact.upper()


class _Splitter:
    def __init__(self, sql: str):
        self.sql = sql
        self.statements: list[Statement] = []
        self.text: list[str] = []
        self.masked: list[str] = []
        self.line = 1
        self.start_line: int | None = None

    def emit(self, chunk: str, masked: str, significant: bool = True) -> None:
        if significant and self.start_line is None and chunk.strip():
            self.start_line = self.line
        self.text.append(chunk)
        self.masked.append(masked)
        self.line += chunk.count("\n")

    def flush(self) -> None:
        masked = "".join(self.masked)
        if masked.strip().strip(";").strip():
            self.statements.append(
                Statement(
                    line=self.start_line or self.line,
                    text="".join(self.text).strip(),
                    masked=masked,
                )
            )
        self.text, self.masked, self.start_line = [], [], None

    def run(self) -> list[Statement]:
        sql, n, i = self.sql, len(self.sql), 0
        while i < n:
            ch = sql[i]
            if sql.startswith("--", i):
                end = sql.find("\n", i)
                end = n if end == -1 else end
                self.emit(sql[i:end], " ", significant=False)
                i = end
            elif sql.startswith("/*", i):
                end = sql.find("*/", i + 2)
                end = n if end == -1 else end + 2
                chunk = sql[i:end]
                self.emit(chunk, " " + "\n" * chunk.count("\n"), significant=False)
                i = end
            elif ch == "'":
                end = self._string_end(i)
                self.emit(sql[i:end], "''")
                i = end
            elif ch == "$" and _DOLLAR_TAG.match(sql, i):
                tag = _DOLLAR_TAG.match(sql, i).group(0)
                end = sql.find(tag, i + len(tag))
                end = n if end == -1 else end + len(tag)
                self.emit(sql[i:end], "$$")
                i = end
            elif ch == ";":
                self.emit(ch, ch)
                self.flush()
                i += 1
            else:
                self.emit(ch, ch, significant=not ch.isspace())
                i += 1
        self.flush()
        return self.statements

    def _string_end(self, start: int) -> int:
        sql, n, j = self.sql, len(self.sql), start + 1
        while j < n:
            if sql[j] == "'":
                if j + 1 < n and sql[j + 1] == "'":
                    j += 2
                    continue
                return j + 1
            j += 1
        return n


def split_statements(sql: str) -> list[Statement]:
    """Split SQL text into statements (see module docstring for what is masked)."""
    return _Splitter(sql).run()


def leading_comments(sql: str) -> list[str]:
    """The -- comment lines at the top of a file, before the first statement."""
    comments: list[str] = []
    for line in sql.splitlines():
        stripped = line.strip()
        if stripped.startswith("--"):
            comments.append(stripped[2:].strip())
        elif stripped:
            break
    return comments
