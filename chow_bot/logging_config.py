"""
Logging configuration for Chow Bot.

Usage:
    from chow_bot.logging_config import setup_logging
    setup_logging()  # once, at process start

Every line carries the id of the HTTP request that produced it (``-``
outside a request). RequestIDMiddleware sets the id through
``request_id_var``.

Environment variables:
    LOG_LEVEL: DEBUG, INFO, WARNING, ERROR or CRITICAL (default: INFO)
"""
import logging
import os
import sys
from contextvars import ContextVar
from typing import Optional, TextIO

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s"
VALID_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# Chatty libraries that are only interesting when debugging
NOISY_LOGGERS = ("httpx", "urllib3", "sqlalchemy.engine", "tenacity")

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")


class RequestIDFilter(logging.Filter):
    """Stamp each record with the current request id."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get()
        return True


def resolve_level(level: Optional[str] = None) -> str:
    """Normalize ``level`` (or LOG_LEVEL); unknown names fall back to INFO."""
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO")
    level = level.strip().upper()
    return level if level in VALID_LEVELS else "INFO"


def setup_logging(level: Optional[str] = None, stream: Optional[TextIO] = None) -> None:
    level = resolve_level(level)
    numeric_level = getattr(logging, level)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.addFilter(RequestIDFilter())
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    # No-op when the root logger is already configured (uvicorn, pytest)
    logging.basicConfig(level=numeric_level, handlers=[handler])

    logging.getLogger("chow_bot").setLevel(numeric_level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if level == "DEBUG" else logging.WARNING)

    logging.getLogger(__name__).debug("Logging configured at %s level", level)
