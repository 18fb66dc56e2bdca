"""
Logging configuration for qbit-client.

Records go to stderr as colored text or JSON lines, and optionally to a
rotating file. Request fields (method, path, status, ...) passed with
``extra=`` and per-command fields set through LogContext end up on every
record.
"""

import json
import logging
import logging.handlers
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Fields copied from records into formatted output, in this order
CONTEXT_FIELDS = (
    "operation",
    "torrent_hash",
    "method",
    "path",
    "status",
    "rid",
    "duration_ms",
)

_context: ContextVar[Dict[str, Any]] = ContextVar("qbit_log_context", default={})


def _record_fields(record: logging.LogRecord, fields=CONTEXT_FIELDS) -> Dict[str, Any]:
    values = {}
    for name in fields:
        value = getattr(record, name, None)
        if value is not None and value != "":
            values[name] = value
    return values


class ContextFilter(logging.Filter):
    """
    Copy the current log context onto records.

    The context lives in a ContextVar, so each asyncio task sees the fields
    of the command that started it. Attributes already on the record
    (from ``extra=``) are left alone.
    """

    @staticmethod
    def set_context(**kwargs) -> None:
        _context.set({**_context.get(), **kwargs})

    @staticmethod
    def clear_context(*keys) -> None:
        """Drop the given fields, or all of them."""
        if not keys:
            _context.set({})
            return
        _context.set({k: v for k, v in _context.get().items() if k not in keys})

    @staticmethod
    def get_context() -> Dict[str, Any]:
        return dict(_context.get())

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _context.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(_record_fields(record))

        if record.exc_info:
            exc_type = record.exc_info[0]
            entry["exception_type"] = exc_type.__name__ if exc_type else None
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class ColoredFormatter(logging.Formatter):
    """Console formatter; the level name is colored only on a terminal."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    # Request fields are already in the dispatcher's messages
    SUFFIX_FIELDS = ("operation", "torrent_hash", "rid")

    def __init__(self, use_colors: bool = True):
        super().__init__(fmt=TEXT_FORMAT, datefmt=DATE_FORMAT)
        self.use_colors = use_colors and sys.stdout.isatty()

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)

        color = self.COLORS.get(record.levelname) if self.use_colors else None
        if color:
            line = line.replace(record.levelname, f"{color}{record.levelname}{self.RESET}", 1)

        suffix = _record_fields(record, self.SUFFIX_FIELDS)
        if suffix:
            line += " [" + ", ".join(f"{k}={v}" for k, v in suffix.items()) + "]"
        return line


# Third-party loggers only; qbit_client loggers follow the root level
COMPONENT_LOG_LEVELS = {
    "aiohttp": "WARNING",
    "aiohttp.client": "WARNING",
    "aiohttp.internal": "WARNING",
    "asyncio": "WARNING",
}


def _make_formatter(log_format: str, console: bool, use_colors: bool) -> logging.Formatter:
    if log_format == "json":
        return JSONFormatter()
    if console:
        return ColoredFormatter(use_colors=use_colors)
    return logging.Formatter(TEXT_FORMAT, datefmt=DATE_FORMAT)


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    log_format: str = "text",
    max_file_size_mb: int = 10,
    backup_count: int = 5,
    use_colors: bool = True,
) -> None:
    """
    Configure the root logger, replacing any handlers it already has.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL (any case)
        log_file: Also write to this file, rotated by size
        log_format: "text" or "json"
        max_file_size_mb: Rotate the file once it reaches this size
        backup_count: Rotated files to keep
        use_colors: Color console level names when stdout is a terminal
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {log_level}")

    root = logging.getLogger()
    root.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    context_filter = ContextFilter()
    handlers = [logging.StreamHandler(sys.stderr)]
    handlers[0].setFormatter(_make_formatter(log_format, console=True, use_colors=use_colors))

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_file_size_mb * 1024 * 1024,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(_make_formatter(log_format, console=False, use_colors=False))
        handlers.append(file_handler)

    for handler in handlers:
        handler.addFilter(context_filter)
        root.addHandler(handler)

    for name, component_level in COMPONENT_LOG_LEVELS.items():
        logging.getLogger(name).setLevel(component_level)

    logging.getLogger(__name__).debug(
        f"Logging configured: level={log_level.upper()}, format={log_format}, "
        f"file={log_file or 'none'}"
    )


class LogContext:
    """
    Set log context fields for the duration of a block.

    Usage:
        with LogContext(operation="delete", torrent_hash=infohash):
            await client.torrents_delete(infohash)
    """

    def __init__(self, **fields):
        self.fields = fields
        self._token = None

    def __enter__(self):
        self._token = _context.set({**_context.get(), **self.fields})
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        _context.reset(self._token)
        return False
