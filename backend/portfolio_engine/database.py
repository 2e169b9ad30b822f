# backend/portfolio_engine/database.py
"""
SQLAlchemy engine and sessions for the ledger database.

SQLite (tests, local runs) shares one connection through StaticPool so an
in-memory ledger survives across sessions and threads. Anything else gets a
QueuePool sized by the DB_POOL_* settings.

Writers and readers open their own session:

    with session_scope() as db:
        writer.add_transaction(db, ...)
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool, QueuePool

from .config import settings
from .models import Base

logger = logging.getLogger(__name__)

POOL_TIMEOUT_SECONDS = 30


def _pool_options(url: str) -> dict:
    if url.lower().startswith("sqlite://"):
        return {
            "poolclass": StaticPool,
            # Snapshot builds may run on worker threads
            "connect_args": {"check_same_thread": False},
        }
    return {
        "poolclass": QueuePool,
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_pool_max_overflow,
        "pool_recycle": settings.db_pool_recycle,
        "pool_pre_ping": settings.db_pool_pre_ping,
        "pool_timeout": POOL_TIMEOUT_SECONDS,
    }


def create_db_engine(database_url: str | None = None) -> Engine:
    """
    Build an engine for the ledger database.

    Args:
        database_url: Connection string (default: settings.database_url)
    """
    url = database_url or settings.database_url
    options = _pool_options(url)

    logger.info(
        f"Ledger database engine: pool={options['poolclass'].__name__}, "
        f"size={options.get('pool_size', 1)}, echo={settings.debug}"
    )
    return create_engine(url, echo=settings.debug, **options)


engine = create_db_engine()
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind: Engine | None = None) -> None:
    """Create missing ledger tables on `bind` (default: module engine)."""
    Base.metadata.create_all(bind or engine)
    logger.info("Ledger schema initialized")


@contextmanager
def session_scope(factory: sessionmaker = SessionLocal) -> Iterator[Session]:
    """
    Session that commits when the block exits cleanly.

    Any exception rolls the session back and propagates.
    """
    db = factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
