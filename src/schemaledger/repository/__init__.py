"""
Migration repository.

Discovers and orders V<timestamp>__<description>.sql files on disk.
"""

from .scanner import (
    MIGRATION_FILE_REGEX,
    MigrationScanner,
    build_filename,
    format_version,
    normalize_version,
    parse_filename,
    slugify,
)

__all__ = [
    "MIGRATION_FILE_REGEX",
    "MigrationScanner",
    "build_filename",
    "format_version",
    "normalize_version",
    "parse_filename",
    "slugify",
]
