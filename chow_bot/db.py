"""
Database connection management.

The SQL storage backend is built on the engine and session factory
configured here. Nothing connects at import time; ``configure_database`` is
called once by storage selection at startup (or by tests with their own
in-memory SQLite URL).

Environment variables:
    - DATABASE_URL: SQLAlchemy connection URL (PostgreSQL in production)
"""

import logging
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from .models import Base

logger = logging.getLogger(__name__)

engine: Optional[Engine] = None
SessionLocal: Optional[sessionmaker] = None


def create_db_engine(database_url: str, **kwargs) -> Engine:
    """Create an engine; SQLite connections are shared across threads."""
    if database_url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    return create_engine(
        database_url,
        pool_pre_ping=True,
        echo=False,
        **kwargs,
    )


def configure_database(database_url: str, bind: Optional[Engine] = None) -> sessionmaker:
    """
    Point the module-level engine/session factory at ``database_url``.

    Creates any missing tables. Raises SQLAlchemyError if the database
    cannot be reached.
    """
    global engine, SessionLocal

    if not database_url and bind is None:
        raise ValueError("DATABASE_URL environment variable is required")

    engine = bind or create_db_engine(database_url)
    SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine,
    )

    Base.metadata.create_all(bind=engine)
    logger.info("Database configured (%s)", engine.url.get_backend_name())
    return SessionLocal
