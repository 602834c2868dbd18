"""
Migration Runner - Applies pending Alembic migrations at application startup.

Enabled with RUN_MIGRATIONS_ON_STARTUP. Alembic's command API is
synchronous, so the asyncpg URL is rewritten for psycopg2.
"""

from pathlib import Path
from sqlalchemy import Engine, create_engine
from structlog import get_logger

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from app.config import settings

logger = get_logger(__name__)

# Path to alembic.ini relative to project root
ALEMBIC_INI_PATH = Path(__file__).parent.parent.parent / "alembic.ini"


def sync_database_url(url: str | None = None) -> str:
    """The configured database URL with the psycopg2 driver."""
    return (url or settings.database_url).replace("+asyncpg", "+psycopg2")


def _alembic_config() -> Config:
    alembic_cfg = Config(str(ALEMBIC_INI_PATH))
    alembic_cfg.set_main_option("sqlalchemy.url", sync_database_url().replace("%", "%%"))
    return alembic_cfg


def _current_revision(engine: Engine) -> str | None:
    with engine.connect() as conn:
        return MigrationContext.configure(conn).get_current_revision()


def _head_revision(alembic_cfg: Config) -> str | None:
    return ScriptDirectory.from_config(alembic_cfg).get_current_head()


def run_migrations() -> None:
    """
    Upgrade the schema to head if it is behind.

    Raises:
        RuntimeError: If a migration fails
    """
    if not ALEMBIC_INI_PATH.exists():
        logger.warning("alembic_config_missing", path=str(ALEMBIC_INI_PATH))
        return

    alembic_cfg = _alembic_config()
    engine = create_engine(sync_database_url())
    try:
        current = _current_revision(engine)
        head = _head_revision(alembic_cfg)
        if current == head:
            logger.info("database_schema_current", revision=current)
            return

        logger.info("database_migration_started", from_revision=current, to_revision=head)
        command.upgrade(alembic_cfg, "head")
        logger.info("database_migration_completed", revision=_current_revision(engine))
    except Exception as exc:
        logger.error("database_migration_failed", error=str(exc))
        raise RuntimeError(f"Database migration failed: {exc}") from exc
    finally:
        engine.dispose()

