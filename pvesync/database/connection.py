"""
Async session scope over the synchronous SQLAlchemy session factory.
"""
from contextlib import asynccontextmanager
import logging
from typing import AsyncIterator

import anyio
from sqlalchemy.orm import Session, sessionmaker

logger = logging.getLogger(__name__)


@asynccontextmanager
async def session_scope(session_factory: sessionmaker) -> AsyncIterator[Session]:
    """
    One unit of work against the state database.

    Blocking session calls are pushed to a worker thread. The transaction
    commits when the block exits cleanly and rolls back otherwise.
    """
    session = session_factory()
    try:
        yield session
        await anyio.to_thread.run_sync(session.commit)
    except Exception:
        await anyio.to_thread.run_sync(session.rollback)
        logger.exception("State database transaction rolled back")
        raise
    finally:
        await anyio.to_thread.run_sync(session.close)
