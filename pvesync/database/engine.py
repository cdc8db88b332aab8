"""
Database engine configuration for the SQLite state store.
"""
import logging
import os
import os.path

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from .models import Base

logger = logging.getLogger(__name__)


def init_db(db_path: str) -> Engine:
    """Create the engine for the state database at ``db_path``."""
    directory = os.path.dirname(os.path.abspath(db_path))
    os.makedirs(directory, exist_ok=True)
    logger.info("Initializing state database at %s", db_path)

    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False, "timeout": 30.0},
        pool_pre_ping=True,
    )

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragmas(dbapi_conn, _record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode = WAL")
        cursor.close()

    return engine


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


def ensure_schema(engine: Engine) -> None:
    """Create database tables if they do not exist yet.

    Safe to run repeatedly.
    """
    Base.metadata.create_all(engine)
    logger.debug("Database schema ensured (create_all executed)")
