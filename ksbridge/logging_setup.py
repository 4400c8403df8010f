"""Logging configuration helpers for ksbridge."""

from __future__ import annotations

import logging
import os
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# uvicorn installs its own handlers unless told otherwise; these are routed
# through the root handler instead so the bridge has a single log stream.
UVICORN_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


def resolve_level(default_level: str = "WARNING") -> tuple[int, str | None]:
    """Return ``(level, invalid_name)`` for the ``LOG_LEVEL`` environment value."""
    level_name = os.environ.get("LOG_LEVEL", default_level).upper()
    level = getattr(logging, level_name, None)
    if isinstance(level, int):
        return level, None
    return getattr(logging, default_level.upper(), logging.WARNING), level_name


def configure_logging(default_level: str = "WARNING") -> int:
    """Configure process-wide logging and return the resolved log level.

    The level is read from ``LOG_LEVEL``. If unset, ``default_level`` is used.
    """
    level, invalid_level = resolve_level(default_level)

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
        stream=sys.stdout,
        force=True,
    )

    for name in UVICORN_LOGGERS:
        uv_logger = logging.getLogger(name)
        uv_logger.handlers.clear()
        uv_logger.propagate = True
    # One line per HTTP request is noise next to the MIDI traffic.
    logging.getLogger("uvicorn.access").setLevel(max(level, logging.WARNING))

    if invalid_level is not None:
        logging.getLogger(__name__).warning(
            "Invalid LOG_LEVEL '%s'; using %s", invalid_level, logging.getLevelName(level)
        )

    return level
