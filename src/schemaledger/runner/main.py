"""
CLI main entry point.
"""

import argparse
import logging
import sys
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

from ..config import Config, create_default_config, load_config, load_env_files
from ..errors import MigrationError, MigrationExecutionError, MigrationNotFoundError
from ..lint import LintReport, MigrationLinter, Severity
from ..repository import MigrationScanner, normalize_version
from ..retry import RetryPolicy
from ..scaffold import create_migration, create_revert
from ..state_store import LedgerAccessor, connect_database
from .executor import MigrationExecutor, MigrationRunResult

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Commands that open a database connection; only these need valid database settings
DATABASE_COMMANDS = {"migrate", "migrate:status", "migrate:bootstrap", "migrate:unlock"}

SEVERITY_ICONS = {
    Severity.ERROR: "❌",
    Severity.WARNING: "⚠",
    Severity.INFO: "ℹ️ ",
}


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="schemaledger",
        description="Apply versioned SQL migrations exactly once, in order, with a checksum ledger",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("schemaledger.yaml"),
        help="Path to config file (default: schemaledger.yaml, optional)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--dir",
        type=Path,
        default=None,
        help="Migrations directory (overrides config and MIGRATIONS_DIR)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # migrate command
    migrate_parser = subparsers.add_parser("migrate", help="Apply all pending migrations")
    migrate_parser.add_argument(
        "--check",
        "--dry-run",
        dest="check",
        action="store_true",
        help="List pending migrations without applying them (exit 1 if any)",
    )
    migrate_parser.add_argument(
        "--verbose",
        dest="show_sql",
        action="store_true",
        help="With --check, print the SQL of each pending migration",
    )
    migrate_parser.add_argument(
        "--attempts",
        type=_positive_int,
        default=None,
        help="Total attempts on connection loss or lock contention (default: retry.max_attempts)",
    )

    # migrate:lint command
    lint_parser = subparsers.add_parser(
        "migrate:lint", help="Check migration files for non-idempotent SQL"
    )
    lint_parser.add_argument(
        "--strict",
        action="store_true",
        help="Fail on warnings too, not just errors",
    )

    # create:migration command
    create_parser = subparsers.add_parser("create:migration", help="Scaffold a new migration file")
    create_parser.add_argument(
        "description",
        nargs="+",
        help="What the migration does, e.g. add user preferences",
    )

    # migrate:create-revert command
    revert_parser = subparsers.add_parser(
        "migrate:create-revert", help="Scaffold a revert migration for an existing one"
    )
    revert_parser.add_argument(
        "version",
        help="Version to revert, e.g. V20250101120000",
    )

    # migrate:status command
    subparsers.add_parser("migrate:status", help="Show applied, pending and orphaned migrations")

    # migrate:bootstrap command
    subparsers.add_parser(
        "migrate:bootstrap",
        help="Record existing migration files as applied without executing them",
    )

    # migrate:unlock command
    subparsers.add_parser(
        "migrate:unlock",
        help="Remove a migration lock left behind by a run that was killed",
    )

    # init command
    subparsers.add_parser("init", help="Write a default config file")

    return parser


def _with_executor(config: Config, action: Callable[[MigrationExecutor], T]) -> T:
    """Open the database, run action against a fresh executor, close the database."""
    with connect_database(config.database) as database:
        ledger = LedgerAccessor(database, config.migrations.ledger_table)
        executor = MigrationExecutor(
            database,
            MigrationScanner(config.migrations.directory),
            ledger,
            lock_timeout_seconds=config.lock.timeout_seconds,
            lock_poll_interval_seconds=config.lock.poll_interval_seconds,
        )
        return action(executor)


def _lint_pending(executor: MigrationExecutor) -> None:
    """Advisory lint of the files about to be applied; never blocks."""
    pending = executor.check().pending
    report = MigrationLinter().lint_all(pending)
    for finding in report.findings:
        if finding.severity == Severity.INFO:
            continue
        logger.warning(f"{finding.location} [{finding.rule}] {finding.message}")


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {value}")
    return number


def _print_findings(report: LintReport) -> None:
    for finding in report.findings:
        icon = SEVERITY_ICONS[finding.severity]
        print(f"  {icon} {finding.location} [{finding.rule}] {finding.message}")
        if finding.suggestion:
            print(f"     → {finding.suggestion}")


def _print_error(error: MigrationError) -> None:
    print(f"❌ {error}", file=sys.stderr)
    cause = error.cause if isinstance(error, MigrationExecutionError) else error.__cause__
    if cause is not None:
        print(f"   {type(cause).__name__}: {cause}", file=sys.stderr)


def _print_check(result: MigrationRunResult, show_sql: bool) -> None:
    if not result.pending:
        print("✓ No pending migrations")
        return

    print(f"📋 Pending migrations ({len(result.pending)}):")
    for migration in result.pending:
        print(f"  • {migration.filename}")
        if show_sql:
            print(f"    Version:     {migration.label}")
            print(f"    Description: {migration.title}")
            print(f"    Checksum:    {migration.checksum[:16]}...")
            print("    SQL:")
            for number, line in enumerate(migration.raw_content.splitlines(), start=1):
                print(f"    {number:4d} | {line}")
            print()

    print(f"\nFound {len(result.pending)} pending migration(s).")
    if not show_sql:
        print("Use --verbose to see SQL content.")


def cmd_migrate(config: Config, check: bool, show_sql: bool, attempts: int | None) -> int:
    """Apply (or with check=True, list) pending migrations."""
    policy = RetryPolicy(
        max_attempts=attempts or config.retry.max_attempts,
        backoff_seconds=config.retry.backoff_seconds,
    )

    if check:
        print("🔍 Checking for pending migrations (dry run)...")
        result = policy.call(lambda: _with_executor(config, lambda executor: executor.check()))
        _print_check(result, show_sql)
        return result.exit_code

    print(f"🚀 Applying migrations from {config.migrations.directory}...")

    def apply(executor: MigrationExecutor) -> MigrationRunResult:
        if config.lint.on_migrate:
            _lint_pending(executor)
        return executor.migrate()

    result = policy.call(lambda: _with_executor(config, apply))

    for migration in result.applied:
        print(f"  ✔ {migration.filename}")
    for entry in result.orphaned:
        print(f"  ⚠ V{entry.version} is recorded in the ledger but has no file")

    if result.applied:
        print(f"\n✓ Applied {len(result.applied)} migration(s) in {result.duration_ms}ms")
    else:
        print("\n✓ Database is up to date")
    return 0


def cmd_lint(config: Config, strict: bool) -> int:
    """Lint every migration file."""
    scanner = MigrationScanner(config.migrations.directory)
    print(f"🔎 Linting migrations in {config.migrations.directory}...")

    report = MigrationLinter().lint_all(scanner.list())
    if not report.files:
        print("No migration files found")
        return 0

    _print_findings(report)

    counts = report.counts()
    print(
        f"\n✓ Checked {len(report.files)} file(s): "
        f"{counts[Severity.ERROR]} error(s), {counts[Severity.WARNING]} warning(s), "
        f"{counts[Severity.INFO]} info"
    )
    exit_code = report.exit_code(strict=strict or config.lint.strict)
    if exit_code and not report.has_errors:
        print("Failing on warnings (strict mode)")
    return exit_code


def cmd_create_migration(config: Config, description: list[str]) -> int:
    """Scaffold a new migration file."""
    path = create_migration(" ".join(description), config.migrations.directory)
    print(f"✓ Created {path}")
    return 0


def cmd_create_revert(config: Config, version: str) -> int:
    """Scaffold a revert migration."""
    try:
        version = normalize_version(version)
    except ValueError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 2

    scanner = MigrationScanner(config.migrations.directory)
    try:
        path = create_revert(version, scanner)
    except MigrationNotFoundError as e:
        print(f"❌ {e}", file=sys.stderr)
        available = scanner.versions()
        if available:
            print("   Available versions:", file=sys.stderr)
            for available_version in available:
                print(f"     V{available_version}", file=sys.stderr)
        return 1

    print(f"✓ Created {path}")
    print("  Review the suggested inverse operations before running migrate.")
    return 0


def cmd_status(config: Config) -> int:
    """Show applied, pending and orphaned migrations."""
    print("📊 Migration status")

    result = _with_executor(config, lambda executor: executor.check())

    print(f"\nApplied: {len(result.already_applied)}")
    for migration in result.already_applied:
        print(f"  ✔ {migration.filename}")

    print(f"\nPending: {len(result.pending)}")
    for migration in result.pending:
        print(f"  • {migration.filename}")

    if result.orphaned:
        print(f"\nOrphaned ledger entries: {len(result.orphaned)}")
        for entry in result.orphaned:
            print(f"  ⚠ V{entry.version} {entry.filename or ''}".rstrip())

    return 0


def cmd_bootstrap(config: Config) -> int:
    """Record every unrecorded migration file without executing it."""
    print(f"📥 Bootstrapping ledger from {config.migrations.directory}...")

    recorded = _with_executor(config, lambda executor: executor.bootstrap())
    for migration in recorded:
        print(f"  ✔ Recorded {migration.filename}")

    print(f"\n✓ Bootstrap complete: {len(recorded)} migration(s) recorded")
    return 0


def cmd_unlock(config: Config) -> int:
    """Remove a stale migration lock."""
    holder = _with_executor(config, lambda executor: executor.unlock())
    if holder is None:
        print("✓ No stale migration lock to remove")
    else:
        print(f"✓ Removed migration lock held by {holder}")
    return 0


def cmd_init(config_path: Path) -> int:
    """Write a default config file."""
    if config_path.exists():
        print(f"❌ {config_path} already exists", file=sys.stderr)
        return 1
    create_default_config(config_path)
    print(f"✓ Wrote {config_path}")
    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 2

    if parsed.command == "init":
        return cmd_init(parsed.config)

    # Load config
    load_env_files()
    try:
        config = load_config(parsed.config)
    except Exception as e:
        print(f"❌ Failed to load config: {e}", file=sys.stderr)
        return 2

    if parsed.dir is not None:
        config.migrations.directory = parsed.dir

    if parsed.command in DATABASE_COMMANDS:
        errors = config.validate()
        if errors:
            print("❌ Invalid configuration:", file=sys.stderr)
            for error in errors:
                print(f"   - {error}", file=sys.stderr)
            return 2

    # Route to command
    try:
        if parsed.command == "migrate":
            return cmd_migrate(config, parsed.check, parsed.show_sql, parsed.attempts)
        elif parsed.command == "migrate:lint":
            return cmd_lint(config, parsed.strict)
        elif parsed.command == "create:migration":
            return cmd_create_migration(config, parsed.description)
        elif parsed.command == "migrate:create-revert":
            return cmd_create_revert(config, parsed.version)
        elif parsed.command == "migrate:status":
            return cmd_status(config)
        elif parsed.command == "migrate:bootstrap":
            return cmd_bootstrap(config)
        elif parsed.command == "migrate:unlock":
            return cmd_unlock(config)
        else:
            parser.print_help()
            return 2
    except MigrationError as e:
        _print_error(e)
        return 1


def run() -> None:
    """Console script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    run()
