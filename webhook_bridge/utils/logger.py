"""
Logging for the bridge.

Records from the ``webhook_bridge`` namespace carry structured fields plus the
context bound for the current task (request id, job id, debounce key), so one
inbound webhook can be followed through classification, debounce and enqueue,
including into the debounced dispatch that fires after the request returned.

Console lines are ``<time> - <logger> - <level> - <message> key=value ...``;
``LOG_FILE`` receives one JSON object per record. Job lifecycle decisions go to
the ``webhook_bridge.audit`` logger through ``audit_event``.
"""
import contextvars
import json
import logging
import logging.config
import sys
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

ROOT_LOGGER_NAME = "webhook_bridge"
AUDIT_LOGGER_NAME = f"{ROOT_LOGGER_NAME}.audit"

# Copied into timer callbacks and tasks, so a debounced dispatch keeps the
# request id of the event that armed it.
_log_context: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar("webhook_bridge_log_context", default={})


def bind_log_context(**fields: Any) -> contextvars.Token:
    """Add fields to every record logged from the current context. Returns a reset token."""
    merged = dict(_log_context.get())
    merged.update({k: v for k, v in fields.items() if v is not None})
    return _log_context.set(merged)


def reset_log_context(token: contextvars.Token) -> None:
    _log_context.reset(token)


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    token = bind_log_context(**fields)
    try:
        yield
    finally:
        reset_log_context(token)


def current_log_context() -> Dict[str, Any]:
    return dict(_log_context.get())


class JSONFormatter(logging.Formatter):
    """One JSON object per record: standard attributes, bound context and call fields."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        entry.update(getattr(record, "fields", None) or {})
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class KeyValueFormatter(logging.Formatter):
    """Standard console prefix followed by the record's fields as key=value pairs."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = getattr(record, "fields", None)
        if fields:
            line = f"{line} " + " ".join(f"{key}={value}" for key, value in fields.items())
        return line


class StructuredLogger:
    """
    Wrapper around a stdlib logger taking structured keyword fields.
    ``None`` values are dropped; ``exc_info`` is passed through.
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def _log(self, level: int, message: str, **kwargs: Any) -> None:
        if not self.logger.isEnabledFor(level):
            return
        exc_info = kwargs.pop("exc_info", None)
        fields = current_log_context()
        fields.update({k: v for k, v in kwargs.items() if v is not None})
        self.logger.log(level, message, exc_info=exc_info, extra={"fields": fields}, stacklevel=3)

    def debug(self, message: str, **kwargs: Any) -> None:
        self._log(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self._log(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self._log(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self._log(logging.ERROR, message, **kwargs)


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    enable_console: bool = True
) -> None:
    """
    Configure the bridge and uvicorn loggers.

    Args:
        log_level: Level for the bridge loggers (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional path for rotating JSON output
        enable_console: Whether to write key=value lines to stdout
    """
    handlers: Dict[str, Dict[str, Any]] = {}
    if enable_console:
        handlers["console"] = {
            "class": "logging.StreamHandler",
            "stream": sys.stdout,
            "formatter": "console",
        }
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "filename": log_file,
            "maxBytes": 10 * 1024 * 1024,  # 10MB
            "backupCount": 5,
            "formatter": "json",
        }

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {"()": JSONFormatter},
            "console": {
                "()": KeyValueFormatter,
                "fmt": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": handlers,
        "loggers": {
            ROOT_LOGGER_NAME: {"level": log_level, "handlers": list(handlers), "propagate": False},
            # Request logging comes from the bridge middleware.
            "uvicorn.access": {"level": "WARNING", "handlers": list(handlers), "propagate": False},
            "uvicorn": {"level": "INFO", "handlers": list(handlers), "propagate": False},
        },
    })


def get_logger(name: str) -> StructuredLogger:
    """Structured logger under the ``webhook_bridge`` namespace."""
    if name == ROOT_LOGGER_NAME or name.startswith(ROOT_LOGGER_NAME + "."):
        return StructuredLogger(name)
    return StructuredLogger(f"{ROOT_LOGGER_NAME}.{name}")


_audit_logger = StructuredLogger(AUDIT_LOGGER_NAME)


def audit_event(event: str, **fields: Any) -> None:
    """
    Record a job lifecycle decision (enqueued, debounce dropped, ...).

    Args:
        event: Event name, e.g. 'job_enqueued'
        **fields: Event fields; bound request / job context is added automatically
    """
    _audit_logger.info(f"Audit: {event}", event=event, **fields)
