"""
Logging helpers.

Components take an optional ``logging.Logger`` and fall back to their module
logger, so callers can route one search run to its own logger without touching
global state.
"""

from __future__ import annotations

import logging
import sys

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: str | int = "INFO") -> logging.Logger:
    """
    Attach a single stdout handler to the package logger.

    Safe to call more than once; the level is updated and no duplicate handler
    is added.
    """
    package_logger = logging.getLogger("trendsignals")
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    package_logger.setLevel(level)

    if not any(getattr(handler, "_trendsignals", False) for handler in package_logger.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        handler._trendsignals = True  # type: ignore[attr-defined]
        package_logger.addHandler(handler)

    return package_logger


def resolve_logger(logger: logging.Logger | None, module_name: str) -> logging.Logger:
    return logger if logger is not None else logging.getLogger(module_name)
