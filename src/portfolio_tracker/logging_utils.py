"""Logging configuration helpers for the portfolio tracker."""
from __future__ import annotations

import logging
import os

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _coerce_level(level: str | int) -> int:
    """Translate a user provided level into a numeric log level."""

    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level}")
    return resolved


def configure_logging(level: str | int | None = None, *, force: bool = False) -> None:
    """Configure the root logger for console output.

    The level defaults to ``PORTFOLIO_TRACKER_LOG_LEVEL`` and falls back to INFO
    when that is unset or not a recognised level name. ``force`` replaces any
    handlers already installed on the root logger.
    """

    if level is None:
        level = os.getenv("PORTFOLIO_TRACKER_LOG_LEVEL", "INFO")
    try:
        resolved_level = _coerce_level(level)
    except ValueError:
        resolved_level = logging.INFO

    root_logger = logging.getLogger()
    if root_logger.handlers and not force:
        root_logger.setLevel(resolved_level)
        return

    logging.basicConfig(level=resolved_level, format=LOG_FORMAT, force=force)


__all__ = ["configure_logging", "LOG_FORMAT"]
