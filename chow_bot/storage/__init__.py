"""
Storage backend selection.

One backend is chosen at startup and shared by every request:

    from chow_bot.storage import init_storage, get_storage
    init_storage()              # reads STORAGE_BACKEND / DATABASE_URL
    storage = get_storage()

``get_storage`` doubles as a FastAPI dependency; tests swap the backend
with ``set_storage`` or ``app.dependency_overrides``.
"""

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from .. import config
from ..db import configure_database
from .base import StorageBackend
from .memory import MemoryStorage
from .sql import SqlStorage

logger = logging.getLogger(__name__)

_storage: Optional[StorageBackend] = None


def init_storage(backend: Optional[str] = None, database_url: Optional[str] = None) -> StorageBackend:
    """
    Select and install the process-wide storage backend.

    Args:
        backend: "auto", "sql" or "memory". Defaults to STORAGE_BACKEND.
        database_url: Defaults to DATABASE_URL.

    In "auto" mode an unreachable database falls back to memory storage.
    In "sql" mode the connection error propagates.
    """
    global _storage

    backend = (backend or config.STORAGE_BACKEND).lower()
    database_url = database_url if database_url is not None else config.DATABASE_URL

    if backend not in ("auto", "sql", "memory"):
        raise ValueError(f"Unknown STORAGE_BACKEND: {backend}")

    if backend == "memory" or (backend == "auto" and not database_url):
        logger.info("Using in-memory storage")
        _storage = MemoryStorage()
        return _storage

    try:
        session_factory = configure_database(database_url)
    except SQLAlchemyError:
        if backend == "sql":
            raise
        logger.error("Database unreachable, falling back to in-memory storage", exc_info=True)
        _storage = MemoryStorage()
        return _storage

    _storage = SqlStorage(session_factory)
    logger.info("Using SQL storage")
    return _storage


def get_storage() -> StorageBackend:
    """Return the active backend, selecting one on first use."""
    if _storage is None:
        return init_storage()
    return _storage


def set_storage(storage: Optional[StorageBackend]) -> None:
    global _storage
    _storage = storage


__all__ = [
    "StorageBackend",
    "MemoryStorage",
    "SqlStorage",
    "init_storage",
    "get_storage",
    "set_storage",
]
