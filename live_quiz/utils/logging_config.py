"""Logging configuration helpers for the live quiz service."""

from __future__ import annotations

import logging
from logging import Logger

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# Libraries that log every request at INFO.
_CHATTY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def configure_logging(level: str = "INFO") -> Logger:
    """Configure root logging at ``level`` and return the ``live_quiz`` logger.

    Unknown level names fall back to INFO. Per-request library chatter is
    held at WARNING unless DEBUG is requested, since pollers hit the server
    every couple of seconds.
    """
    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        resolved = logging.INFO
    logging.basicConfig(level=resolved, format=LOG_FORMAT)
    if resolved > logging.DEBUG:
        for name in _CHATTY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
    return logging.getLogger("live_quiz")
