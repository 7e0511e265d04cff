"""Logging setup for Pocker."""

import logging
import sys
from typing import IO, Optional

from pythonjsonlogger import jsonlogger

# Chatty at DEBUG while polling hosts and registries
QUIET_LOGGERS = ("httpx", "httpcore", "urllib3", "docker")

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
JSON_FORMAT = "%(levelname)s %(name)s %(message)s"


def _level(name: str) -> int:
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    stream: Optional[IO[str]] = None,
) -> None:
    """
    Configure the root logger with a single handler.

    Args:
        log_level: Logging level name; unknown names fall back to INFO
        log_format: Format type (json or text)
        stream: Output stream, stdout by default. Under the stdio transport
            stdout carries MCP messages, so callers pass stderr there.
    """
    level = _level(log_level)
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(level)

    if log_format.lower() == "json":
        formatter: logging.Formatter = jsonlogger.JsonFormatter(
            JSON_FORMAT,
            rename_fields={"levelname": "level"},
            timestamp=True,
        )
    else:
        formatter = logging.Formatter(TEXT_FORMAT)

    handler.setFormatter(formatter)
    root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for the given name.

    Args:
        name: Name for the logger (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)
