"""
Runtime logging for Tabulary.

Two sinks share the ``tabulary`` logger tree:

- ``<log_dir>/tabulary.log``: JSON Lines, one object per record, with the
  component tag and any structured context attached via ``log_with_context``
- console: short human-readable lines for whoever is running the server

Module-level loggers (``logging.getLogger(__name__)``) propagate into the same
handlers because every module lives under the ``tabulary`` package.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

ROOT_LOGGER = "tabulary"
LOG_FILE_NAME = "tabulary.log"

_PLAIN = bool(os.environ.get("NO_COLOR")) or not sys.stdout.isatty()


def _ansi(code: str) -> str:
    return "" if _PLAIN else f"\033[{code}m"


_RESET = _ansi("0")
_DIM = _ansi("2")
_COMPONENT = _ansi("34")
_LEVEL_COLORS = {
    logging.DEBUG: _ansi("36"),
    logging.WARNING: _ansi("33"),
    logging.ERROR: _ansi("31"),
    logging.CRITICAL: _ansi("35"),
}


class JSONLFormatter(logging.Formatter):
    """
    Render a record as a single JSON object.

    Keys: ``timestamp`` (UTC ISO-8601), ``level``, ``component``, ``logger``,
    ``message``; plus ``context`` when structured data was attached,
    ``source`` for warnings and above, and ``exception`` when exc_info is set.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "component": getattr(record, "component", "core"),
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = getattr(record, "context", None)
        if context:
            entry["context"] = context

        if record.levelno >= logging.WARNING:
            entry["source"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        if record.exc_info and record.exc_info[0]:
            entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
            }

        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Short colourised lines: ``HH:MM:SS [component] LEVEL: message``."""

    def format(self, record: logging.LogRecord) -> str:
        component = getattr(record, "component", "core")
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = f"{_DIM}{stamp}{_RESET} {_COMPONENT}[{component}]{_RESET}"
        if record.levelno != logging.INFO:
            color = _LEVEL_COLORS.get(record.levelno, "")
            line = f"{line} {color}{record.levelname}{_RESET}:"
        line = f"{line} {record.getMessage()}"
        if record.exc_info and record.levelno >= logging.ERROR:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


class _ComponentFilter(logging.Filter):
    def __init__(self, component: str):
        super().__init__()
        self.component = component

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "component"):
            record.component = self.component
        return True


_log_dir: Path | None = None
_component_loggers: dict[str, logging.Logger] = {}


def setup_logging(
    log_dir: Path | str | None = ".tabulary/logs",
    level: int | str = logging.INFO,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
    console: bool = True,
) -> Path | None:
    """
    Attach the console and JSONL handlers to the ``tabulary`` logger.

    Calling this again replaces the handlers, so it is safe to call once per
    application build.

    Args:
        log_dir: Directory for ``tabulary.log``. ``None`` disables the file sink.
        level: Minimum level, as an int or a level name like ``"DEBUG"``
        max_bytes: Rotation threshold for the log file
        backup_count: Rotated files to keep
        console: Also log to stdout

    Returns:
        The log directory, or None when file logging is disabled
    """
    global _log_dir

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    if console:
        stream = logging.StreamHandler(sys.stdout)
        stream.setFormatter(ConsoleFormatter())
        stream.setLevel(level)
        root.addHandler(stream)

    _log_dir = None
    if log_dir is not None:
        _log_dir = Path(log_dir)
        _log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            _log_dir / LOG_FILE_NAME,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(JSONLFormatter())
        file_handler.setLevel(level)
        root.addHandler(file_handler)

    return _log_dir


def get_logger(component: str) -> logging.Logger:
    """Logger under ``tabulary.<component>`` whose records carry the component tag."""
    if component in _component_loggers:
        return _component_loggers[component]

    logger = logging.getLogger(f"{ROOT_LOGGER}.{component.lower().replace(' ', '_')}")
    logger.addFilter(_ComponentFilter(component))
    _component_loggers[component] = logger
    return logger


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    context: dict[str, Any] | None = None,
    exc_info: bool | BaseException = False,
    **kwargs: Any,
) -> None:
    """
    Log ``message`` with structured context.

    ``context`` and keyword arguments are merged into the ``context`` key of
    the JSONL entry.
    """
    merged = {**(context or {}), **kwargs}
    extra = {"context": merged} if merged else {}
    logger.log(level, message, extra=extra, exc_info=exc_info)


def get_log_file() -> Path | None:
    """Path of the active JSONL log file, if file logging is on."""
    if _log_dir is None:
        return None
    return _log_dir / LOG_FILE_NAME
