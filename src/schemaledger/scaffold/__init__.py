"""Scaffolding for new and revert migration files."""

from .scaffolder import create_migration, create_revert, revert_hints

__all__ = ["create_migration", "create_revert", "revert_hints"]
