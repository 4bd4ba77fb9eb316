"""Database engine and session management.

Environment variables:
  JOBTRACK_DB_PATH  Local SQLite path (default: /tmp/jobtrack.db)
  CONFIG_PATH       YAML config (database.path / database.echo)
"""
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Optional, Generator

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from common.config import get_config
from .models import Base

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"


def get_db_path() -> Path:
    """Local SQLite file path."""
    return Path(get_config().database.path)


def get_engine(db_path: Optional[Path] = None, echo: Optional[bool] = None):
    """Create SQLAlchemy engine for a local SQLite file.

    Pass ":memory:" as db_path for a throwaway in-memory database.
    """
    path = db_path or get_db_path()
    if echo is None:
        echo = get_config().database.echo
    url = f"sqlite:///{path}"
    engine = create_engine(url, echo=echo)

    # Ledger cascades and template delete restrictions rely on FK enforcement
    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        if str(path) != ":memory:":
            cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


def get_session_factory(engine=None) -> sessionmaker:
    """Create a session factory."""
    if engine is None:
        engine = get_engine()
    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def get_session(engine=None) -> Generator[Session, None, None]:
    """Context manager for database sessions with auto-commit/rollback.

    Everything done inside one block commits or rolls back together, which
    is what keeps a ledger append and its current-stage update atomic.
    """
    factory = get_session_factory(engine)
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db(engine=None) -> None:
    """Create all tables (for initial setup or testing)."""
    if engine is None:
        engine = get_engine()
    Base.metadata.create_all(engine)
    logger.info("Database tables created.")


def migrate_db(db_path: Optional[Path] = None, revision: str = "head") -> None:
    """Run Alembic migrations up to `revision` against a SQLite file."""
    from alembic import command
    from alembic.config import Config

    path = db_path or get_db_path()
    cfg = Config()
    cfg.set_main_option("script_location", str(MIGRATIONS_DIR))
    cfg.set_main_option("sqlalchemy.url", f"sqlite:///{path}")
    command.upgrade(cfg, revision)
    logger.info(f"Database {path} migrated to {revision}.")
