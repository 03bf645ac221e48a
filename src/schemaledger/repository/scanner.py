"""
Migration repository scanner.

Migrations are named with format: V{YYYYMMDDHHMMSS}__{description}.sql
E.g., V20240101000000__create_words.sql, V20240102000000__add_category.sql

- version: 14-digit UTC timestamp; sorting by version is chronological order
- description: lowercase snake_case

The scanner only reads the filesystem. Every call to list() starts a fresh
pass, so the sequence it returns is restartable and never cached across runs.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Iterator
from datetime import datetime, timezone
from pathlib import Path

from ..errors import (
    DuplicateVersionError,
    InvalidFilenameError,
    InvalidMigrationContentError,
    MigrationNotFoundError,
)
from ..schemas.checksum import compute_checksum
from ..schemas.migration import VERSION_PREFIX, MigrationFile

logger = logging.getLogger(__name__)

MIGRATION_FILE_REGEX = re.compile(r"^V(\d{14})__([a-z0-9_]+)\.sql$")
VERSION_REGEX = re.compile(r"^V?(\d{14})$")
VERSION_FORMAT = "%Y%m%d%H%M%S"
MIGRATION_SUFFIX = ".sql"


def parse_filename(filename: str) -> tuple[str, str]:
    """
    Split a migration filename into (version, description).

    Raises:
        InvalidFilenameError: If the name does not follow the naming scheme
    """
    match = MIGRATION_FILE_REGEX.match(filename)
    if not match:
        raise InvalidFilenameError(
            filename, "expected V<YYYYMMDDHHMMSS>__<lowercase_snake_case>.sql"
        )

    version, description = match.groups()
    try:
        datetime.strptime(version, VERSION_FORMAT)
    except ValueError:
        raise InvalidFilenameError(filename, f"{version} is not a valid UTC timestamp") from None
    return version, description


def normalize_version(version: str) -> str:
    """Accept 'V20240101000000' or '20240101000000' and return the bare 14 digits."""
    match = VERSION_REGEX.match(version.strip())
    if not match:
        raise ValueError(
            f"Invalid version format: {version} "
            f"(expected {VERSION_PREFIX}<YYYYMMDDHHMMSS>, e.g. {VERSION_PREFIX}20250101120000)"
        )
    return match.group(1)


def format_version(moment: datetime | None = None) -> str:
    """Format a moment (default: now) as a UTC version timestamp."""
    moment = moment or datetime.now(timezone.utc)
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime(VERSION_FORMAT)


def build_filename(version: str, description: str) -> str:
    """Build a migration filename, validating the result."""
    filename = f"{VERSION_PREFIX}{version}__{description}{MIGRATION_SUFFIX}"
    parse_filename(filename)
    return filename


def slugify(text: str) -> str:
    """Turn free text into a lowercase snake_case description."""
    slug = re.sub(r"[^a-z0-9]+", "_", text.strip().lower())
    return re.sub(r"_+", "_", slug).strip("_")


class MigrationScanner:
    """
    Discovers migration files in a directory.

    Usage:
        scanner = MigrationScanner(Path("db/migrations"))
        for migration in scanner.list():
            ...
    """

    def __init__(self, migrations_dir: Path | str):
        self.migrations_dir = Path(migrations_dir)

    def list(self) -> Iterable[MigrationFile]:
        """
        Return the migration files, ascending by version.

        Filenames are validated (and duplicates rejected) before the first
        file is produced; contents are read lazily as the sequence is consumed.

        Raises:
            InvalidFilenameError: A .sql file does not follow the naming scheme
            DuplicateVersionError: Two files share a version
        """
        return _MigrationSequence(self)

    def __iter__(self) -> Iterator[MigrationFile]:
        return iter(self.list())

    def find(self, version: str) -> MigrationFile:
        """Return the migration for a version (V-prefixed or bare)."""
        version = normalize_version(version)
        for migration in self.list():
            if migration.version == version:
                return migration
        raise MigrationNotFoundError(version)

    def versions(self) -> list[str]:
        """Ascending versions on disk, without reading file contents."""
        return [version for version, _ in self._index()]

    def _index(self) -> list[tuple[str, Path]]:
        """Validate filenames and return (version, path) pairs sorted by version."""
        if not self.migrations_dir.exists():
            logger.warning(f"Migrations directory not found: {self.migrations_dir}")
            return []

        by_version: dict[str, list[Path]] = {}
        for path in self.migrations_dir.iterdir():
            if not path.is_file() or path.suffix != MIGRATION_SUFFIX:
                continue
            version, _ = parse_filename(path.name)
            by_version.setdefault(version, []).append(path)

        for version, paths in by_version.items():
            if len(paths) > 1:
                raise DuplicateVersionError(version, sorted(p.name for p in paths))

        return sorted((version, paths[0]) for version, paths in by_version.items())

    @staticmethod
    def load(path: Path) -> MigrationFile:
        """Read one migration file and derive its checksum."""
        version, description = parse_filename(path.name)
        raw = path.read_bytes()
        try:
            content = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise InvalidMigrationContentError(
                path.name, f"not valid UTF-8 (byte {e.start})"
            ) from e
        return MigrationFile(
            version=version,
            description=description,
            path=path,
            raw_content=content,
            checksum=compute_checksum(raw),
        )


class _MigrationSequence:
    """Restartable view over a scanner; each iteration rescans the directory."""

    def __init__(self, scanner: MigrationScanner):
        self._scanner = scanner

    def __iter__(self) -> Iterator[MigrationFile]:
        for _, path in self._scanner._index():
            yield self._scanner.load(path)

    def __repr__(self) -> str:
        return f"<MigrationSequence {self._scanner.migrations_dir}>"
