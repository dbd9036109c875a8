"""Database configuration and session management.

Job state is the only thing this service persists. Both the worker and
the API use a synchronous SQLAlchemy engine; the API offloads blocking
queries to a thread. The connection string comes from ``DATABASE_URL``
and is normalised to the psycopg v3 driver for Postgres. When no URL is
provided a local SQLite file is used, which is convenient for
development and tests.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import declarative_base, sessionmaker

from tally.core.config import settings

logger = logging.getLogger(__name__)

Base = declarative_base()


def normalise_database_url(db_url: Optional[str]) -> str:
    """Return a sync SQLAlchemy URL, preferring psycopg v3 for Postgres."""
    if not db_url:
        logger.warning("DATABASE_URL not set; falling back to local SQLite tally.db")
        return "sqlite:///tally.db"
    url = db_url.replace("+asyncpg", "")
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql+psycopg://", 1)
    elif url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+psycopg://", 1)
    elif url.startswith("postgresql+psycopg2://"):
        url = url.replace("postgresql+psycopg2://", "postgresql+psycopg://", 1)
    return url


def build_engine(db_url: Optional[str] = None) -> Engine:
    """Create an engine with pooling suited to the worker processes."""
    url = normalise_database_url(db_url if db_url is not None else settings.DATABASE_URL)
    if url.startswith("sqlite"):
        engine = create_engine(url, connect_args={"check_same_thread": False})
    else:
        engine = create_engine(
            url,
            pool_pre_ping=True,  # Test connections before using them
            pool_size=5,
            max_overflow=10,
            pool_recycle=3600,
        )
    try:
        logger.info("Database URL: %s", make_url(url).set(password=None))
    except Exception:
        logger.info("Database URL: <unparseable>")
    return engine


_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def get_session_factory() -> sessionmaker:
    """Return the process-wide session factory, creating tables on first use."""
    global _engine, _session_factory
    if _session_factory is None:
        _engine = build_engine()
        init_db(_engine)
        _session_factory = sessionmaker(autocommit=False, autoflush=False, bind=_engine)
    return _session_factory


def init_db(engine: Engine) -> None:
    """Create all tables (idempotent)."""
    from tally.models import tables  # noqa: F401  (register models on Base)

    Base.metadata.create_all(bind=engine)
