"""
Tests for the startup migration runner.
"""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from app.db import migration_runner


class TestSyncDatabaseUrl:
    """Tests for sync_database_url."""

    def test_rewrites_asyncpg_driver(self):
        url = "postgresql+asyncpg://elverra:pw@db:5432/elverra"
        assert migration_runner.sync_database_url(url) == "postgresql+psycopg2://elverra:pw@db:5432/elverra"

    def test_leaves_sync_url_alone(self):
        url = "postgresql+psycopg2://elverra:pw@db/elverra"
        assert migration_runner.sync_database_url(url) == url


class TestRunMigrations:
    """Tests for run_migrations."""

    def test_missing_config_is_skipped(self, monkeypatch):
        monkeypatch.setattr(migration_runner, "ALEMBIC_INI_PATH", Path("/nonexistent/alembic.ini"))
        create_engine = MagicMock()
        monkeypatch.setattr(migration_runner, "create_engine", create_engine)

        migration_runner.run_migrations()

        create_engine.assert_not_called()

    def test_current_schema_does_not_upgrade(self, monkeypatch):
        engine = MagicMock()
        upgrade = MagicMock()
        monkeypatch.setattr(migration_runner, "create_engine", MagicMock(return_value=engine))
        monkeypatch.setattr(migration_runner, "_current_revision", lambda e: "2026_10_19_0000")
        monkeypatch.setattr(migration_runner, "_head_revision", lambda c: "2026_10_19_0000")
        monkeypatch.setattr(migration_runner.command, "upgrade", upgrade)

        migration_runner.run_migrations()

        upgrade.assert_not_called()
        engine.dispose.assert_called_once()

    def test_behind_schema_upgrades_to_head(self, monkeypatch):
        upgrade = MagicMock()
        monkeypatch.setattr(migration_runner, "create_engine", MagicMock(return_value=MagicMock()))
        monkeypatch.setattr(migration_runner, "_current_revision", lambda e: None)
        monkeypatch.setattr(migration_runner, "_head_revision", lambda c: "2026_10_19_0000")
        monkeypatch.setattr(migration_runner.command, "upgrade", upgrade)

        migration_runner.run_migrations()

        upgrade.assert_called_once()
        assert upgrade.call_args.args[1] == "head"

    def test_failure_raises_runtime_error(self, monkeypatch):
        engine = MagicMock()
        monkeypatch.setattr(migration_runner, "create_engine", MagicMock(return_value=engine))
        monkeypatch.setattr(migration_runner, "_current_revision", lambda e: None)
        monkeypatch.setattr(migration_runner, "_head_revision", lambda c: "2026_10_19_0000")
        monkeypatch.setattr(
            migration_runner.command, "upgrade", MagicMock(side_effect=ValueError("boom"))
        )

        with pytest.raises(RuntimeError, match="Database migration failed: boom"):
            migration_runner.run_migrations()
        engine.dispose.assert_called_once()
