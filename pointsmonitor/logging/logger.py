"""
Structured logging for the Twitch Channel Points Monitor.

Provides JSON and console logging formats with configurable levels,
file rotation, and redaction of tokens and secrets. Components log through
plain ``logging.getLogger(__name__)`` loggers; ``configure_logging`` installs
the formatters on the ``pointsmonitor`` namespace so that any ``extra``
context attached to a record is rendered by both formats.
"""

import json
import logging
import logging.handlers
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

ROOT_LOGGER_NAME = "pointsmonitor"

# Context keys are redacted when their last word names a secret
# (access_token, client_secret, api_key, password, ...)
SENSITIVE_WORDS = frozenset({
    'token', 'password', 'secret', 'key', 'authorization',
})

# Attributes every LogRecord carries; anything else came in through ``extra``
_RESERVED_ATTRS = frozenset(vars(logging.makeLogRecord({})).keys()) | {'message', 'asctime'}


def is_sensitive_key(key: str) -> bool:
    words = key.lower().replace('-', '_').split('_')
    return words[-1] in SENSITIVE_WORDS


def redact_value(key: str, value: Any) -> Any:
    """Mask a value whose key looks sensitive, keeping a short prefix/suffix for tokens."""
    if not is_sensitive_key(key):
        return value
    if isinstance(value, str) and len(value) > 8:
        return f"{value[:4]}...{value[-4:]}"
    return "[REDACTED]"


def record_context(record: logging.LogRecord) -> Dict[str, Any]:
    """Collect and redact the ``extra`` context attached to a record."""
    context = {}
    for key, value in vars(record).items():
        if key in _RESERVED_ATTRS or key.startswith('_'):
            continue
        context[key] = redact_value(key, value)
    return context


class JsonFormatter(logging.Formatter):
    """Formatter for JSON log output, one object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        log_data.update(record_context(record))

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


class ConsoleFormatter(logging.Formatter):
    """Formatter for console output with colors and ``key=value`` context."""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
        'RESET': '\033[0m',
    }

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, '') if self.use_colors else ''
        reset = self.COLORS['RESET'] if self.use_colors else ''
        timestamp = datetime.fromtimestamp(record.created).strftime('%Y-%m-%d %H:%M:%S')

        message = f"{timestamp} {color}{record.levelname:<8}{reset} [{record.name}] {record.getMessage()}"

        context = record_context(record)
        if context:
            message += " | " + ", ".join(f"{key}={value}" for key, value in context.items())

        if record.exc_info:
            message += f"\n{self.formatException(record.exc_info)}"

        return message


def configure_logging(level: str = "INFO", format_type: str = "console",
                      log_file: Optional[str] = None, max_file_size: int = 10 * 1024 * 1024,
                      backup_count: int = 5) -> logging.Logger:
    """
    Install handlers on the ``pointsmonitor`` logger namespace.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_type: Output format ('json' or 'console')
        log_file: Path to a rotating log file (always JSON)
        max_file_size: Maximum file size before rotation (bytes)
        backup_count: Number of rotated files to keep

    Returns:
        logging.Logger: The configured namespace logger
    """
    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()
    root.propagate = False

    console_handler = logging.StreamHandler()
    if format_type == "json":
        console_handler.setFormatter(JsonFormatter())
    else:
        console_handler.setFormatter(ConsoleFormatter())
    root.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            filename=log_file,
            maxBytes=max_file_size,
            backupCount=backup_count,
            encoding='utf-8'
        )
        file_handler.setFormatter(JsonFormatter())
        root.addHandler(file_handler)

    return root


class StructuredLogger:
    """
    Thin wrapper that accepts context as keyword arguments.

    ``logger.info("Subscribed", subscription_id=sub.id)`` is equivalent to
    ``logging.getLogger(name).info("Subscribed", extra={...})``.
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def _log(self, level: int, message: str, exc_info: bool = False, **context):
        self.logger.log(level, message, extra=context or None, exc_info=exc_info)

    def debug(self, message: str, **context):
        self._log(logging.DEBUG, message, **context)

    def info(self, message: str, **context):
        self._log(logging.INFO, message, **context)

    def warning(self, message: str, **context):
        self._log(logging.WARNING, message, **context)

    def error(self, message: str, **context):
        self._log(logging.ERROR, message, **context)

    def critical(self, message: str, **context):
        self._log(logging.CRITICAL, message, **context)

    def exception(self, message: str, **context):
        self._log(logging.ERROR, message, exc_info=True, **context)


_loggers: Dict[str, StructuredLogger] = {}


def get_logger(name: str, level: Optional[str] = None, format_type: Optional[str] = None,
               log_file: Optional[str] = None) -> StructuredLogger:
    """
    Get or create a structured logger.

    The first call that passes ``level``/``format_type``/``log_file`` (or finds
    the namespace unconfigured) configures the namespace from the arguments,
    falling back to LOG_LEVEL, LOG_FORMAT and LOG_FILE.
    """
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if not root.handlers or any(arg is not None for arg in (level, format_type, log_file)):
        configure_logging(
            level=level or os.getenv('LOG_LEVEL', 'INFO'),
            format_type=format_type or os.getenv('LOG_FORMAT', 'console'),
            log_file=log_file if log_file is not None else os.getenv('LOG_FILE'),
        )

    if not name.startswith(ROOT_LOGGER_NAME):
        name = f"{ROOT_LOGGER_NAME}.{name}"

    if name not in _loggers:
        _loggers[name] = StructuredLogger(name)
    return _loggers[name]
