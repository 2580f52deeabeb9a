"""Logging level and output format configuration."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from enum import Enum

LOGGER_NAME = "kanibuild"
DEFAULT_LEVEL = "info"
DEFAULT_LOG_TIMESTAMP = False

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

_LEVELS = {
    "panic": logging.CRITICAL,
    "fatal": logging.CRITICAL,
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
    "trace": TRACE,
}

_COLORS = {
    TRACE: "\x1b[37m",
    logging.DEBUG: "\x1b[37m",
    logging.INFO: "\x1b[36m",
    logging.WARNING: "\x1b[33m",
    logging.ERROR: "\x1b[31m",
    logging.CRITICAL: "\x1b[31m",
}
_RESET = "\x1b[0m"


class LogFormat(str, Enum):
    """Supported log output formats."""

    TEXT = "text"
    COLOR = "color"
    JSON = "json"


def _level_name(record: logging.LogRecord) -> str:
    name = record.levelname.lower()
    return "warning" if name == "warn" else name


def _timestamp(record: logging.LogRecord) -> str:
    return datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat()


class _TextFormatter(logging.Formatter):
    def __init__(self, colors: bool, full_timestamp: bool) -> None:
        super().__init__()
        self.colors = colors
        self.full_timestamp = full_timestamp

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        if self.colors:
            color = _COLORS.get(record.levelno, "")
            level = f"{color}{record.levelname[:4].upper()}{_RESET}"
            if self.full_timestamp:
                return f"{level}[{_timestamp(record)}] {message}"
            return f"{level} {message}"
        parts = []
        if self.full_timestamp:
            parts.append(f"time={json.dumps(_timestamp(record))}")
        parts.append(f"level={_level_name(record)}")
        parts.append(f"msg={json.dumps(message)}")
        return " ".join(parts)


class _JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        return json.dumps(
            {
                "level": _level_name(record),
                "msg": record.getMessage(),
                "time": _timestamp(record),
            }
        )


class _ConfiguredHandler(logging.StreamHandler):
    """Handler installed by :func:`configure`; replaced on reconfiguration."""


def parse_level(level: str) -> int:
    """Map a level name such as ``info`` or ``debug`` to a logging level."""
    try:
        return _LEVELS[level.lower()]
    except KeyError:
        raise ValueError(f"parsing log level: not a valid level: {level!r}") from None


def configure(level: str, log_format: str, log_timestamp: bool = DEFAULT_LOG_TIMESTAMP) -> logging.Logger:
    """Set the package logger's level and output format and return the logger."""
    numeric_level = parse_level(level)
    try:
        fmt = LogFormat(log_format)
    except ValueError:
        raise ValueError(
            f'not a valid log format: "{log_format}". Please specify one of (text, color, json)'
        ) from None

    if fmt is LogFormat.TEXT:
        formatter: logging.Formatter = _TextFormatter(colors=False, full_timestamp=log_timestamp)
    elif fmt is LogFormat.COLOR:
        formatter = _TextFormatter(colors=True, full_timestamp=log_timestamp)
    else:
        formatter = _JSONFormatter()

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(numeric_level)
    for handler in [h for h in logger.handlers if isinstance(h, _ConfiguredHandler)]:
        logger.removeHandler(handler)
    handler = _ConfiguredHandler(sys.stderr)
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.propagate = False
    return logger