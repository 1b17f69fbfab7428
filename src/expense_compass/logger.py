"""Logging setup for expense-compass (single entry point).

Modules obtain their logger with ``logging.getLogger(__name__)``; only the
process entry point calls :func:`setup_logger`.
"""

import logging
import sys
from logging import Logger, StreamHandler
from typing import Final


LOG_FORMAT: Final[str] = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

LOG_LEVELS: Final[dict[str, int]] = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def setup_logger(name: str = "expense_compass", level: str = "INFO") -> Logger:
    """Configure root logging and return a named logger.

    Args:
        name: Logger name, usually the package or ``__name__``.
        level: Level name ("DEBUG", "info", ...). Unknown names fall back to INFO.

    Returns:
        Configured logger.
    """
    log_level = LOG_LEVELS.get(level.upper(), logging.INFO)

    # stdout is reserved for the MCP stdio transport, so log to stderr.
    logging.basicConfig(
        level=log_level,
        format=LOG_FORMAT,
        handlers=[StreamHandler(sys.stderr)],
        force=True,
    )

    return logging.getLogger(name)
