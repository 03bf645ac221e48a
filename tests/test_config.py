"""Tests for configuration loading."""

from pathlib import Path

import pytest

from schemaledger.config import (
    Config,
    DatabaseConfig,
    create_default_config,
    load_config,
    load_env_files,
)


@pytest.fixture(autouse=True)
def isolated_env(clean_env):
    """Every config test runs without SCHEMALEDGER_/PG* variables."""


class TestLoadConfig:
    """Tests for YAML + environment loading."""

    def test_defaults_without_file(self, tmp_path):
        config = load_config(tmp_path / "missing.yaml")

        assert config.database.backend == "sqlite"
        assert config.migrations.directory == Path("db/migrations")
        assert config.migrations.ledger_table == "schema_version"
        assert config.lock.timeout_seconds == 30.0
        assert config.retry.max_attempts == 1
        assert config.validate() == []

    def test_yaml_values(self, tmp_path):
        config_path = tmp_path / "schemaledger.yaml"
        config_path.write_text(
            "database:\n"
            "  backend: postgres\n"
            "  url: postgresql://app@localhost/app\n"
            "migrations:\n"
            "  directory: sql\n"
            "lock:\n"
            "  timeout_seconds: 5\n"
            "lint:\n"
            "  on_migrate: false\n"
        )

        config = load_config(config_path)

        assert config.database.backend == "postgres"
        assert config.database.conninfo() == "postgresql://app@localhost/app"
        assert config.migrations.directory == Path("sql")
        assert config.lock.timeout_seconds == 5.0
        assert config.lint.on_migrate is False

    def test_environment_overrides_yaml(self, tmp_path, monkeypatch):
        config_path = tmp_path / "schemaledger.yaml"
        config_path.write_text("migrations:\n  directory: sql\n")
        monkeypatch.setenv("MIGRATIONS_DIR", "db/other")
        monkeypatch.setenv("SCHEMALEDGER_LOCK_TIMEOUT", "0")
        monkeypatch.setenv("SCHEMALEDGER_LINT_ON_MIGRATE", "no")
        monkeypatch.setenv("SCHEMALEDGER_MAX_ATTEMPTS", "3")

        config = load_config(config_path)

        assert config.migrations.directory == Path("db/other")
        assert config.lock.timeout_seconds == 0.0
        assert config.lint.on_migrate is False
        assert config.retry.max_attempts == 3

    def test_pg_environment(self, monkeypatch):
        monkeypatch.setenv("SCHEMALEDGER_DB_BACKEND", "postgres")
        monkeypatch.setenv("PGHOST", "db.internal")
        monkeypatch.setenv("PGDATABASE", "app")
        monkeypatch.setenv("PGUSER", "migrator")
        monkeypatch.setenv("PGPASSWORD", "s3cret pass")

        config = load_config(None)

        assert config.validate() == []
        conninfo = config.database.conninfo()
        assert "host=db.internal" in conninfo
        assert "dbname=app" in conninfo
        assert "password='s3cret pass'" in conninfo

    def test_load_env_files_does_not_override(self, tmp_path, monkeypatch):
        (tmp_path / ".env").write_text("MIGRATIONS_DIR=from_dotenv\nPGHOST=dotenv-host\n")
        monkeypatch.setenv("PGHOST", "real-host")
        # Registered so teardown removes the value load_dotenv writes
        monkeypatch.setenv("MIGRATIONS_DIR", "unset")
        monkeypatch.delenv("MIGRATIONS_DIR")

        load_env_files(tmp_path)
        config = load_config(None)

        assert config.migrations.directory == Path("from_dotenv")
        assert config.database.host == "real-host"


class TestValidate:
    """Tests for Config.validate()."""

    def test_unknown_backend(self):
        config = Config(database=DatabaseConfig(backend="mysql"))
        errors = config.validate()
        assert len(errors) == 1
        assert "database.backend" in errors[0]

    def test_postgres_requires_connection_settings(self):
        config = Config(database=DatabaseConfig(backend="postgres"))
        errors = config.validate()
        assert len(errors) == 1
        assert "PGHOST" in errors[0]
        assert "DATABASE_URL" in errors[0]

    def test_bad_ledger_table_name(self):
        config = Config()
        config.migrations.ledger_table = "schema_version; DROP TABLE users"
        assert any("ledger_table" in error for error in config.validate())

    def test_negative_lock_timeout(self):
        config = Config()
        config.lock.timeout_seconds = -1
        assert any("lock.timeout_seconds" in error for error in config.validate())


class TestCreateDefaultConfig:
    """Tests for the default config template."""

    def test_default_config_loads(self, tmp_path):
        config_path = tmp_path / "schemaledger.yaml"
        create_default_config(config_path)

        config = load_config(config_path)

        assert config.validate() == []
        assert config.migrations.directory == Path("db/migrations")
        assert config.retry.backoff_seconds == 2.0
