"""
CLI runner module.

Provides commands:
- migrate: Apply pending migrations (--check for a dry run)
- migrate:lint: Idempotency lint
- create:migration / migrate:create-revert: Scaffolding
- migrate:status / migrate:bootstrap: Ledger inspection and adoption
"""

from .executor import MigrationExecutor, MigrationRunResult, MigrationState, TransactionControlError
from .main import create_cli, main

__all__ = [
    "MigrationExecutor",
    "MigrationRunResult",
    "MigrationState",
    "TransactionControlError",
    "create_cli",
    "main",
]
