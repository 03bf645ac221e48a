"""
Error taxonomy.

Every fatal condition raised by the engine derives from MigrationError and
names the offending version or file in its message. RetryableError marks the
conditions a caller may retry (see schemaledger.retry).
"""


class MigrationError(Exception):
    """Base exception for migration errors."""

    pass


class RetryableError(MigrationError):
    """A transient condition; safe to retry the whole run."""

    pass


class InvalidFilenameError(MigrationError):
    """A .sql file in the migrations directory does not follow the naming scheme."""

    def __init__(self, filename: str, reason: str | None = None):
        self.filename = filename
        message = f"Invalid migration filename: {filename}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class InvalidMigrationContentError(MigrationError):
    """A migration file cannot be read as UTF-8 SQL text."""

    def __init__(self, filename: str, reason: str):
        self.filename = filename
        super().__init__(f"Cannot read migration {filename}: {reason}")


class DuplicateVersionError(MigrationError):
    """Two migration files share the same version."""

    def __init__(self, version: str, filenames: list[str]):
        self.version = version
        self.filenames = filenames
        super().__init__(
            f"Duplicate migration version detected: V{version} ({', '.join(filenames)})"
        )


class MigrationNotFoundError(MigrationError):
    """No migration file exists for the requested version."""

    def __init__(self, version: str):
        self.version = version
        super().__init__(f"Migration V{version} not found")


class ChecksumMismatchError(MigrationError):
    """An already-applied migration file was modified after it was applied."""

    def __init__(self, version: str, filename: str, expected: str, actual: str):
        self.version = version
        self.filename = filename
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Checksum mismatch for {filename}. Expected {expected} but found {actual}. "
            "Applied migrations must never be edited; write a new corrective migration instead."
        )


class MigrationExecutionError(MigrationError):
    """A migration's SQL failed; its transaction was rolled back."""

    def __init__(self, version: str, filename: str, cause: BaseException):
        self.version = version
        self.filename = filename
        self.cause = cause
        super().__init__(f"Failed to apply migration {filename} (V{version}): {cause}")


class LockContentionError(RetryableError):
    """Another run holds the migration lock."""

    def __init__(self, timeout_seconds: float, holder: str | None = None):
        self.timeout_seconds = timeout_seconds
        self.holder = holder
        message = (
            f"Could not acquire the migration lock within {timeout_seconds:g}s; "
            "another migration run is in progress"
        )
        if holder:
            message = f"{message} (held by {holder})"
        super().__init__(message)


class ConnectivityError(RetryableError):
    """The database could not be reached."""

    pass


class ScaffoldError(MigrationError):
    """A migration file could not be generated."""

    pass
