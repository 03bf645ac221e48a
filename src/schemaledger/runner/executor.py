"""
Transactional executor.

Control loop for one run:
1. plan = files on disk - versions in the ledger, ascending
2. Re-verify the checksum of every file already in the ledger; any mismatch
   aborts the run before a pending migration is touched
3. For each pending file, in order: BEGIN -> execute SQL -> insert ledger row
   -> COMMIT. On error: ROLLBACK, stop, raise MigrationExecutionError.
   A body containing its own BEGIN/COMMIT/ROLLBACK is rejected before
   anything executes.

Migrations are applied strictly sequentially: a migration may rely on the
schema left by the previous one. A whole migrate() run holds the advisory
lock, so concurrent invocations cannot interleave.

Re-running after a partial failure resumes at the first unapplied version,
since committed migrations are skipped via the ledger.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum

from ..errors import ChecksumMismatchError, ConnectivityError, MigrationExecutionError
from ..lint.rules import check_transaction_statements
from ..repository.scanner import MigrationScanner
from ..schemas.checksum import ChecksumMismatch, verify
from ..schemas.migration import ExecutionPlan, LedgerEntry, MigrationFile
from ..state_store.database import Database
from ..state_store.ledger import LedgerAccessor

logger = logging.getLogger(__name__)


class MigrationState(str, Enum):
    """Lifecycle of one migration within a run."""

    PENDING = "PENDING"
    VERIFYING = "VERIFYING"
    EXECUTING = "EXECUTING"
    COMMITTED = "COMMITTED"
    ROLLED_BACK = "ROLLED_BACK"


class TransactionControlError(RuntimeError):
    """A migration body ended the transaction the executor opened for it."""

    pass


@dataclass
class MigrationRunResult:
    """Outcome of a migrate() or check() run."""

    applied: list[MigrationFile] = field(default_factory=list)
    pending: list[MigrationFile] = field(default_factory=list)
    already_applied: list[MigrationFile] = field(default_factory=list)
    orphaned: list[LedgerEntry] = field(default_factory=list)
    states: dict[str, MigrationState] = field(default_factory=dict)
    dry_run: bool = False
    duration_ms: int = 0

    @property
    def exit_code(self) -> int:
        """CI contract: a dry run fails while anything is pending."""
        if self.dry_run and self.pending:
            return 1
        return 0


class MigrationExecutor:
    """
    Applies pending migrations.

    Usage:
        executor = MigrationExecutor(database, scanner, ledger)
        executor.check()    # dry run, never writes
        executor.migrate()  # apply everything pending
    """

    LOCK_NAME = "schemaledger:migrate"

    def __init__(
        self,
        database: Database,
        scanner: MigrationScanner,
        ledger: LedgerAccessor,
        lock_timeout_seconds: float = 30.0,
        lock_poll_interval_seconds: float = 0.5,
    ):
        """
        Initialize executor.

        Args:
            database: Open database handle (shared with the ledger)
            scanner: Migration file scanner
            ledger: Ledger accessor
            lock_timeout_seconds: How long to wait for a concurrent run (0 = fail fast)
            lock_poll_interval_seconds: Lock polling interval
        """
        self.db = database
        self.scanner = scanner
        self.ledger = ledger
        self.lock_timeout_seconds = lock_timeout_seconds
        self.lock_poll_interval_seconds = lock_poll_interval_seconds

    @property
    def lock_name(self) -> str:
        return f"{self.LOCK_NAME}:{self.ledger.table_name}"

    def plan(self, states: dict[str, MigrationState] | None = None) -> ExecutionPlan:
        """
        Compute the execution plan (steps 1-2). Never writes.

        Raises:
            ChecksumMismatchError: An applied file was modified
        """
        states = states if states is not None else {}
        files = list(self.scanner.list())
        entries = {entry.version: entry for entry in self.ledger.list_applied()}

        applied: list[MigrationFile] = []
        pending: list[MigrationFile] = []
        for migration in files:
            entry = entries.get(migration.version)
            if entry is None:
                states[migration.version] = MigrationState.PENDING
                pending.append(migration)
                continue

            states[migration.version] = MigrationState.VERIFYING
            result = verify(migration, entry)
            if isinstance(result, ChecksumMismatch):
                logger.error(f"Checksum mismatch for {migration.filename}")
                raise ChecksumMismatchError(
                    version=result.version,
                    filename=result.filename,
                    expected=result.expected,
                    actual=result.actual,
                )
            states[migration.version] = MigrationState.COMMITTED
            applied.append(migration)

        on_disk = {migration.version for migration in files}
        orphaned = [entry for version, entry in entries.items() if version not in on_disk]
        for entry in orphaned:
            logger.warning(
                f"Applied migration V{entry.version} ({entry.filename or 'unknown file'}) "
                "is missing from the migrations directory"
            )

        if applied and pending:
            newest_applied = max(migration.version for migration in applied)
            for migration in pending:
                if migration.version < newest_applied:
                    logger.warning(
                        f"Out-of-order migration {migration.filename}: older than "
                        f"applied V{newest_applied}"
                    )

        return ExecutionPlan(
            pending=tuple(pending),
            applied=tuple(applied),
            orphaned=tuple(orphaned),
        )

    def check(self) -> MigrationRunResult:
        """
        Dry run: report pending migrations without applying them.

        Takes no lock, opens no transaction and creates nothing; a missing
        ledger table counts as an empty ledger.
        """
        started = time.monotonic()
        result = MigrationRunResult(dry_run=True)
        plan = self.plan(result.states)

        result.pending = list(plan.pending)
        result.already_applied = list(plan.applied)
        result.orphaned = list(plan.orphaned)
        for migration in plan.pending:
            logger.info(f"Would apply {migration.filename}")
        if not plan.pending:
            logger.info("No pending migrations")

        result.duration_ms = int((time.monotonic() - started) * 1000)
        return result

    def migrate(self) -> MigrationRunResult:
        """
        Apply all pending migrations in ascending version order.

        Returns:
            Run result; result.applied lists what this run committed

        Raises:
            ChecksumMismatchError: An applied file was modified (nothing applied)
            MigrationExecutionError: A migration failed (it was rolled back;
                earlier ones stay committed, later ones are not attempted)
            LockContentionError: Another run holds the lock
        """
        started = time.monotonic()
        result = MigrationRunResult()

        with self.db.advisory_lock(
            self.lock_name,
            timeout_seconds=self.lock_timeout_seconds,
            poll_interval_seconds=self.lock_poll_interval_seconds,
        ):
            self.ledger.ensure_ledger_table()
            plan = self.plan(result.states)
            result.pending = list(plan.pending)
            result.already_applied = list(plan.applied)
            result.orphaned = list(plan.orphaned)

            if not plan.pending:
                logger.info("No pending migrations")

            for migration in plan.pending:
                try:
                    self._apply(migration, result.states)
                except Exception:
                    if result.applied:
                        logger.error(
                            f"Stopped after applying {len(result.applied)} migration(s); "
                            f"{len(plan.pending) - len(result.applied)} not applied"
                        )
                    raise
                result.applied.append(migration)

        result.duration_ms = int((time.monotonic() - started) * 1000)
        if result.applied:
            logger.info(
                f"Applied {len(result.applied)} migrations: "
                f"{[migration.label for migration in result.applied]}"
            )
        return result

    def bootstrap(self) -> list[MigrationFile]:
        """
        Record every unrecorded migration without executing it.

        For databases whose schema was migrated by hand before adopting the
        ledger. Checksums of already-recorded files are still verified.
        """
        recorded: list[MigrationFile] = []
        with self.db.advisory_lock(
            self.lock_name,
            timeout_seconds=self.lock_timeout_seconds,
            poll_interval_seconds=self.lock_poll_interval_seconds,
        ):
            self.ledger.ensure_ledger_table()
            plan = self.plan()
            for migration in plan.pending:
                with self.db.transaction():
                    self.ledger.record_success(
                        migration.version,
                        migration.checksum,
                        description=migration.title,
                        filename=migration.filename,
                        execution_time_ms=0,
                    )
                logger.info(f"Recorded {migration.filename} without executing it")
                recorded.append(migration)
        return recorded

    def unlock(self) -> str | None:
        """
        Remove a migration lock left behind by a run that died.

        Returns:
            Description of the removed holder, or None if nothing was removed
        """
        holder = self.db.lock_holder(self.lock_name)
        if holder is None or not self.db.force_release_lock(self.lock_name):
            return None
        logger.warning(f"Removed migration lock held by {holder}")
        return holder

    def _apply(self, migration: MigrationFile, states: dict[str, MigrationState]) -> None:
        """Execute one migration and record it, atomically."""
        logger.info(f"Applying migration {migration.filename}")
        # A COMMIT in the body would make everything before it permanent
        hits = check_transaction_statements(migration.raw_content)
        if hits:
            states[migration.version] = MigrationState.ROLLED_BACK
            cause = TransactionControlError(
                f"line {hits[0].line}: {hits[0].message}; remove "
                "BEGIN/COMMIT/ROLLBACK statements from the file"
            )
            logger.error(f"Migration {migration.label} rejected before execution: {cause}")
            raise MigrationExecutionError(migration.version, migration.filename, cause)

        states[migration.version] = MigrationState.EXECUTING
        start = time.perf_counter()

        try:
            with self.db.transaction():
                self.db.execute_script(migration.raw_content)
                if not self.db.in_transaction():
                    raise TransactionControlError(
                        "the migration ended its own transaction; remove "
                        "BEGIN/COMMIT/ROLLBACK statements from the file"
                    )
                self.ledger.record_success(
                    migration.version,
                    migration.checksum,
                    description=migration.title,
                    filename=migration.filename,
                    execution_time_ms=round((time.perf_counter() - start) * 1000),
                )
        except ConnectivityError:
            states[migration.version] = MigrationState.ROLLED_BACK
            logger.error(f"Lost database connection while applying {migration.filename}")
            raise
        except Exception as e:
            states[migration.version] = MigrationState.ROLLED_BACK
            logger.error(f"Migration {migration.label} failed: {e}")
            raise MigrationExecutionError(migration.version, migration.filename, e) from e

        states[migration.version] = MigrationState.COMMITTED
        logger.info(f"✔ Applied {migration.filename}")
