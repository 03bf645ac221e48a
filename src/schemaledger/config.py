"""
Configuration management (SSOT).

This module defines ALL configuration for schemaledger.
All config keys are defined here; no other module should invent config keys.

Key invariants:
- Database credentials come from the environment (or an untracked YAML file),
  never from migration files
- Environment variables always win over YAML values
- A missing config file is not an error; defaults plus environment apply
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml
from dotenv import load_dotenv

SUPPORTED_BACKENDS = ("sqlite", "postgres")

# Loaded in order; values already present in the environment are never overridden
ENV_FILES = (".env.local", ".env")


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__("; ".join(errors))


@dataclass
class DatabaseConfig:
    """Database connection settings.

    SSOT for connection handling:
    - backend: "sqlite" (file path) or "postgres" (conninfo / discrete params)
    - url: full PostgreSQL conninfo; wins over the discrete host/port/... fields
    """

    backend: str = "sqlite"
    # SQLite database file
    path: Path = field(default_factory=lambda: Path("data/app.db"))
    # PostgreSQL settings
    url: str | None = None
    host: str | None = None
    port: int = 5432
    name: str | None = None
    user: str | None = None
    password: str | None = None
    sslmode: str | None = None
    connect_timeout: int = 10

    def conninfo(self) -> str:
        """Build a libpq connection string for the PostgreSQL backend."""
        if self.url:
            return self.url

        parts = {
            "host": self.host,
            "port": self.port,
            "dbname": self.name,
            "user": self.user,
            "password": self.password,
            "sslmode": self.sslmode,
            "connect_timeout": self.connect_timeout,
        }
        return " ".join(
            f"{key}={_quote_conninfo_value(str(value))}"
            for key, value in parts.items()
            if value not in (None, "")
        )


@dataclass
class MigrationsConfig:
    """Migration repository settings."""

    directory: Path = field(default_factory=lambda: Path("db/migrations"))
    # Name of the append-only ledger table
    ledger_table: str = "schema_version"


@dataclass
class LockConfig:
    """Advisory lock settings.

    A run blocks for at most timeout_seconds waiting for another run to
    finish, then fails with LockContentionError. 0 means fail fast.
    """

    timeout_seconds: float = 30.0
    poll_interval_seconds: float = 0.5


@dataclass
class LintConfig:
    """Idempotency linter settings."""

    # Lint pending files during `migrate` (advisory, never blocks)
    on_migrate: bool = True
    # `migrate:lint` also fails on warnings
    strict: bool = False


@dataclass
class RetryConfig:
    """Caller-side retry policy for `migrate` (1 = no retry)."""

    max_attempts: int = 1
    backoff_seconds: float = 2.0


@dataclass
class Config:
    """Application configuration (SSOT)."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    migrations: MigrationsConfig = field(default_factory=MigrationsConfig)
    lock: LockConfig = field(default_factory=LockConfig)
    lint: LintConfig = field(default_factory=LintConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        if self.database.backend not in SUPPORTED_BACKENDS:
            errors.append(
                f"database.backend must be one of {', '.join(SUPPORTED_BACKENDS)}, "
                f"got {self.database.backend!r}"
            )
        elif self.database.backend == "postgres" and not self.database.url:
            missing = [
                env_name
                for env_name, value in (
                    ("PGHOST", self.database.host),
                    ("PGDATABASE", self.database.name),
                    ("PGUSER", self.database.user),
                )
                if not value
            ]
            if missing:
                errors.append(
                    "Missing required database settings (set DATABASE_URL or "
                    f"{', '.join(missing)})"
                )

        if not self.migrations.ledger_table.replace("_", "").replace(".", "").isalnum():
            errors.append("migrations.ledger_table must be a plain identifier")

        if self.lock.timeout_seconds < 0:
            errors.append("lock.timeout_seconds must be >= 0")
        if self.lock.poll_interval_seconds <= 0:
            errors.append("lock.poll_interval_seconds must be > 0")

        if self.retry.max_attempts < 1:
            errors.append("retry.max_attempts must be >= 1")
        if self.retry.backoff_seconds < 0:
            errors.append("retry.backoff_seconds must be >= 0")

        return errors


def _quote_conninfo_value(value: str) -> str:
    """Quote a libpq keyword value if it contains spaces or quotes."""
    if value and not any(ch in value for ch in " '\\"):
        return value
    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def _parse_bool(value: str | None, fallback: bool) -> bool:
    """Parse a boolean-ish environment value."""
    if value is None:
        return fallback
    normalized = value.strip().lower()
    if normalized in ("1", "true", "yes", "on"):
        return True
    if normalized in ("0", "false", "no", "off"):
        return False
    return fallback


def load_env_files(base_dir: Path | None = None) -> None:
    """Load .env files from base_dir (default: cwd) without overriding the environment."""
    base = base_dir or Path.cwd()
    for name in ENV_FILES:
        env_path = base / name
        if env_path.exists():
            load_dotenv(env_path, override=False)


def load_config(config_path: Path | None = None) -> Config:
    """
    Load configuration from YAML file.

    Environment variables can override config values:
    - SCHEMALEDGER_DB_BACKEND (sqlite/postgres)
    - SCHEMALEDGER_DB_PATH (sqlite database file)
    - DATABASE_URL (postgres conninfo or URI)
    - PGHOST, PGPORT, PGDATABASE, PGUSER, PGPASSWORD, PGSSLMODE
    - MIGRATIONS_DIR
    - SCHEMALEDGER_LEDGER_TABLE
    - SCHEMALEDGER_LOCK_TIMEOUT (seconds)
    - SCHEMALEDGER_LINT_ON_MIGRATE (true/false)
    - SCHEMALEDGER_MAX_ATTEMPTS
    """
    if config_path is not None and config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    # Database config
    db_data = data.get("database", {})
    database = DatabaseConfig(
        backend=os.environ.get("SCHEMALEDGER_DB_BACKEND", db_data.get("backend", "sqlite")),
        path=Path(os.environ.get("SCHEMALEDGER_DB_PATH", db_data.get("path", "data/app.db"))),
        url=os.environ.get("DATABASE_URL", db_data.get("url")),
        host=os.environ.get("PGHOST", db_data.get("host")),
        port=int(os.environ.get("PGPORT", db_data.get("port", 5432))),
        name=os.environ.get("PGDATABASE", db_data.get("name")),
        user=os.environ.get("PGUSER", db_data.get("user")),
        password=os.environ.get("PGPASSWORD", db_data.get("password")),
        sslmode=os.environ.get("PGSSLMODE", db_data.get("sslmode")),
        connect_timeout=int(db_data.get("connect_timeout", 10)),
    )

    # Migrations config
    migrations_data = data.get("migrations", {})
    migrations = MigrationsConfig(
        directory=Path(
            os.environ.get("MIGRATIONS_DIR", migrations_data.get("directory", "db/migrations"))
        ),
        ledger_table=os.environ.get(
            "SCHEMALEDGER_LEDGER_TABLE", migrations_data.get("ledger_table", "schema_version")
        ),
    )

    # Lock config
    lock_data = data.get("lock", {})
    lock = LockConfig(
        timeout_seconds=float(
            os.environ.get("SCHEMALEDGER_LOCK_TIMEOUT", lock_data.get("timeout_seconds", 30.0))
        ),
        poll_interval_seconds=float(lock_data.get("poll_interval_seconds", 0.5)),
    )

    # Lint config
    lint_data = data.get("lint", {})
    lint = LintConfig(
        on_migrate=_parse_bool(
            os.environ.get("SCHEMALEDGER_LINT_ON_MIGRATE"), lint_data.get("on_migrate", True)
        ),
        strict=lint_data.get("strict", False),
    )

    # Retry config
    retry_data = data.get("retry", {})
    retry = RetryConfig(
        max_attempts=int(
            os.environ.get("SCHEMALEDGER_MAX_ATTEMPTS", retry_data.get("max_attempts", 1))
        ),
        backoff_seconds=float(retry_data.get("backoff_seconds", 2.0)),
    )

    return Config(
        database=database,
        migrations=migrations,
        lock=lock,
        lint=lint,
        retry=retry,
    )


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# schemaledger configuration
#
# Credentials belong in the environment (or .env / .env.local), not here.
# Environment variables always override the values below.

database:
  backend: "sqlite"              # sqlite | postgres
  path: "data/app.db"            # sqlite database file
  url: null                      # postgres conninfo (DATABASE_URL)
  connect_timeout: 10

migrations:
  directory: "db/migrations"     # V<YYYYMMDDHHMMSS>__<description>.sql files
  ledger_table: "schema_version"

# Single-writer lock: wait up to timeout_seconds, then fail (0 = fail fast)
lock:
  timeout_seconds: 30
  poll_interval_seconds: 0.5

lint:
  on_migrate: true               # Report findings for pending files during migrate
  strict: false                  # migrate:lint fails on warnings too

# Caller-side retry for transient connectivity / lock contention
retry:
  max_attempts: 1
  backoff_seconds: 2.0
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
