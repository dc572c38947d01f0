"""Logging configuration for the spend_assistant package.

Entrypoints call ``configure_logging()`` once at startup. Library modules only
call ``get_logger(__name__)`` and never attach handlers themselves.
"""

import logging
import os
import sys
from typing import IO

_PKG_LOGGER_NAME = "spend_assistant"
_LEVEL_ENV = "SPEND_ASSISTANT_LOG_LEVEL"
_CONFIGURED = False


def _level_from_name(name: str) -> int | None:
    name = name.strip().upper()
    if name.isdigit():
        return int(name)
    numeric = getattr(logging, name, None)
    return numeric if isinstance(numeric, int) else None


def _parse_level(level: int | str | None) -> int:
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        parsed = _level_from_name(level)
        if parsed is not None:
            return parsed
    env_val = os.getenv(_LEVEL_ENV)
    if env_val:
        parsed = _level_from_name(env_val)
        if parsed is not None:
            return parsed
    return logging.INFO


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] = sys.stderr,
) -> None:
    """Attach a single stream handler to the package logger.

    Args:
        level: Level as int or name ("DEBUG", "INFO"). Falls back to the
            SPEND_ASSISTANT_LOG_LEVEL environment variable, then INFO.
        fmt: Optional format string.
        stream: Output stream. Defaults to stderr, since stdout carries the
            MCP stdio transport.
    """
    global _CONFIGURED
    if _CONFIGURED:
        return

    logger = logging.getLogger(_PKG_LOGGER_NAME)
    for h in list(logger.handlers):
        if isinstance(h, logging.NullHandler):
            logger.removeHandler(h)

    resolved = _parse_level(level)
    handler = logging.StreamHandler(stream)
    handler.setLevel(resolved)
    handler.setFormatter(logging.Formatter(fmt or "%(asctime)s %(name)s %(levelname)s %(message)s"))

    logger.setLevel(resolved)
    logger.addHandler(handler)
    logger.propagate = False

    _CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    """Return a logger, keeping the package silent until configured."""
    pkg_logger = logging.getLogger(_PKG_LOGGER_NAME)
    if not _CONFIGURED and not pkg_logger.handlers:
        pkg_logger.addHandler(logging.NullHandler())
    return logging.getLogger(name)
