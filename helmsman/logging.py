"""Logging configuration for Helmsman."""

import logging
import sys
from pathlib import Path
from typing import TextIO

import structlog

from helmsman.config import get_config

_log_file: TextIO | None = None


def _open_log_file(path: str) -> TextIO:
    """Open (append) the log file, replacing a previously opened one."""
    global _log_file
    close_log_file()
    log_path = Path(path).expanduser()
    log_path.parent.mkdir(parents=True, exist_ok=True)
    _log_file = open(log_path, "a", encoding="utf-8", buffering=1)
    return _log_file


def close_log_file() -> None:
    global _log_file
    if _log_file is not None:
        _log_file.close()
        _log_file = None


def configure_logging(level: str | None = None, log_file: str | None = None) -> None:
    """Configure structured logging for Helmsman.

    Log lines go to stderr unless a log file is configured, which keeps them
    out of the streamed assistant output in interactive sessions.
    """
    config = get_config()

    level_name = (level or config.logging.level).upper()
    log_level = getattr(logging, level_name, logging.WARNING)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    target = log_file if log_file is not None else config.logging.file
    if target:
        output: TextIO = _open_log_file(target)
    else:
        close_log_file()
        output = sys.stderr

    if config.logging.format == "console":
        processors.append(structlog.dev.ConsoleRenderer(colors=output.isatty()))
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=output),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """Get a logger instance.

    Args:
        name: Optional logger name (usually __name__)

    Returns:
        Configured structlog logger
    """
    if name:
        return structlog.get_logger(name)
    return structlog.get_logger()
