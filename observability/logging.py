from __future__ import annotations
import functools
import logging
import sys
import json
import time
from typing import Any, Dict, Optional
from datetime import datetime, timezone
from pathlib import Path

CONTEXT_PREFIX = "ctx_"

# Attributes present on every LogRecord; anything else came in via ``extra``.
_RESERVED_ATTRS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname',
    'filename', 'module', 'lineno', 'funcName', 'created',
    'msecs', 'relativeCreated', 'thread', 'threadName',
    'processName', 'process', 'getMessage', 'exc_info',
    'exc_text', 'stack_info', 'taskName', 'message', 'asctime',
}

# pypdf warns at INFO about malformed cross-reference tables
QUIET_LOGGERS = ("pypdf",)


def split_extras(record: logging.LogRecord) -> tuple[Dict[str, Any], Dict[str, Any]]:
    """Split ``extra`` fields into bound context (``ctx_*``) and plain fields."""
    context: Dict[str, Any] = {}
    fields: Dict[str, Any] = {}
    for key, value in record.__dict__.items():
        if key in _RESERVED_ATTRS:
            continue
        if key.startswith(CONTEXT_PREFIX):
            context[key[len(CONTEXT_PREFIX):]] = value
        else:
            fields[key] = value
    return context, fields


class JSONFormatter(logging.Formatter):
    """One JSON object per line; bound context is nested under ``context``."""

    def __init__(self, service_name: str = "autogather"):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        context, fields = split_extras(record)

        log_entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        log_entry.update(fields)
        if context:
            log_entry["context"] = context
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class ColoredFormatter(logging.Formatter):
    """Single-line console output with bound context appended as ``key=value``."""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
    }
    RESET = '\033[0m'

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime('%H:%M:%S')
        level = record.levelname
        if self.use_colors and level in self.COLORS:
            level = f"{self.COLORS[level]}{level:8}{self.RESET}"
        else:
            level = f"{level:8}"

        line = f"{timestamp} {level} {record.name}: {record.getMessage()}"

        context, _ = split_extras(record)
        if context:
            line += " [" + " ".join(f"{k}={v}" for k, v in context.items()) + "]"

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(
    level: str = "INFO",
    service_name: str = "autogather",
    log_file: Optional[str] = None,
    use_json: bool = False,
    use_colors: bool = True
) -> None:
    """Configure the root logger for an autogather process.

    Console output goes to stderr so commands can print results on stdout.
    A ``log_file`` always receives JSON lines regardless of ``use_json``.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(numeric_level)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(
        JSONFormatter(service_name) if use_json else ColoredFormatter(use_colors)
    )
    root_logger.addHandler(console_handler)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(JSONFormatter(service_name))
        root_logger.addHandler(file_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name."""
    return logging.getLogger(name)


class StructuredLogger:
    """Logger wrapper carrying bound context such as the source being crawled.

    Context is attached to each record as ``ctx_<key>`` attributes, which the
    formatters above render as a nested object or trailing ``key=value`` pairs.
    """

    def __init__(self, name: str, **default_context):
        self.logger = logging.getLogger(name)
        self.default_context = default_context

    def bind(self, **context) -> 'StructuredLogger':
        """Return a logger carrying extra default context."""
        bound = StructuredLogger(self.logger.name, **self.default_context)
        bound.default_context.update(context)
        return bound

    def _extra(self, context: Dict[str, Any]) -> Dict[str, Any]:
        full_context = {**self.default_context, **context}
        return {f"{CONTEXT_PREFIX}{k}": v for k, v in full_context.items()}

    def debug(self, message: str, **context) -> None:
        self.logger.debug(message, extra=self._extra(context))

    def info(self, message: str, **context) -> None:
        self.logger.info(message, extra=self._extra(context))

    def warning(self, message: str, **context) -> None:
        self.logger.warning(message, extra=self._extra(context))

    def error(self, message: str, **context) -> None:
        self.logger.error(message, extra=self._extra(context))

    def exception(self, message: str, **context) -> None:
        self.logger.exception(message, extra=self._extra(context))


def get_structured_logger(name: str, **default_context) -> StructuredLogger:
    """Get a structured logger instance."""
    return StructuredLogger(name, **default_context)


def log_performance(logger_name: Optional[str] = None, threshold_ms: float = 1000.0):
    """Warn when the wrapped call takes longer than ``threshold_ms``.

    Failures are logged with their duration and re-raised.
    """
    def decorator(func):
        logger = get_logger(logger_name or func.__module__)

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            start_time = time.time()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                logger.error(
                    f"{func.__qualname__} failed after {(time.time() - start_time) * 1000:.0f}ms",
                    extra={"function": func.__qualname__, "error_type": type(e).__name__},
                    exc_info=True,
                )
                raise

            duration_ms = (time.time() - start_time) * 1000
            if duration_ms > threshold_ms:
                logger.warning(
                    f"Slow call: {func.__qualname__} took {duration_ms:.0f}ms",
                    extra={
                        "function": func.__qualname__,
                        "duration_ms": duration_ms,
                        "threshold_ms": threshold_ms,
                    },
                )
            return result

        return wrapper
    return decorator
