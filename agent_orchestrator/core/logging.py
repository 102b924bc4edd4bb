"""Logging for the agent orchestrator.

Records carry correlation fields (request, workflow, execution, node and
agent ids). Request fields come from the ambient request context set by the
HTTP middleware; run fields are passed per call through ``log_with_context``
because node workers run outside the request's context.
"""

import json
import logging
import sys
import traceback
from contextvars import ContextVar
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

# Fields rendered in a fixed order in text output and as top-level JSON keys
CORRELATION_FIELDS = ("request_id", "workflow_id", "execution_id", "node_id", "agent_id")

DEFAULT_TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s%(correlation)s"

_request_context: ContextVar[Dict[str, Any]] = ContextVar("request_context", default={})


def _record_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return getattr(record, "context_fields", {})


class CorrelationFilter(logging.Filter):
    """Merges the request context into ``record.context_fields``.

    Also sets ``record.correlation``, a ``" [key=value ...]"`` suffix of the
    correlation fields present, so plain format strings can show them.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        fields = dict(_request_context.get())
        fields.update(_record_fields(record))
        record.context_fields = fields

        present = [f"{name}={fields[name]}" for name in CORRELATION_FIELDS if fields.get(name)]
        record.correlation = f" [{' '.join(present)}]" if present else ""
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per record; correlation ids are top-level keys."""

    def format(self, record: logging.LogRecord) -> str:
        fields = _record_fields(record)
        entry: Dict[str, Any] = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in CORRELATION_FIELDS:
            if fields.get(name):
                entry[name] = fields[name]

        extra = {key: value for key, value in fields.items() if key not in CORRELATION_FIELDS}
        if extra:
            entry["context"] = extra

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": traceback.format_exception(*record.exc_info),
            }

        return json.dumps(entry, default=str)


def _build_handler(handler: logging.Handler, formatter: logging.Formatter) -> logging.Handler:
    handler.setFormatter(formatter)
    handler.addFilter(CorrelationFilter())
    return handler


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    log_format: Optional[str] = None,
    structured: bool = False,
    max_size: int = 10 * 1024 * 1024,
    backup_count: int = 5
) -> logging.Logger:
    """
    Configure the root logger.

    Args:
        level: Logging level name
        log_file: Optional path of a rotating log file
        log_format: Text format; ``%(correlation)s`` expands to the correlation ids
        structured: Emit JSON records instead of text
        max_size: Log file size in bytes before rotation
        backup_count: Number of rotated files to keep

    Returns:
        The root logger
    """
    if structured:
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(fmt=log_format or DEFAULT_TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    root_logger.addHandler(_build_handler(logging.StreamHandler(sys.stdout), formatter))

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        root_logger.addHandler(_build_handler(
            RotatingFileHandler(log_file, maxBytes=max_size, backupCount=backup_count),
            formatter
        ))

    # Third-party loggers are noisy at INFO
    for name in ("sqlalchemy.engine", "sqlalchemy.pool", "httpx", "httpcore", "uvicorn.access"):
        logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for the given name."""
    return logging.getLogger(name)


def set_logging_context(**fields) -> None:
    """Attach fields to every record logged from the current request."""
    _request_context.set({**_request_context.get(), **fields})


def clear_logging_context() -> None:
    _request_context.set({})


def log_with_context(logger: logging.Logger, level: int, message: str, exc_info=None, **fields):
    """Log a message with correlation fields; fields that are None are dropped."""
    context_fields = {key: value for key, value in fields.items() if value is not None}
    logger.log(level, message, extra={"context_fields": context_fields}, exc_info=exc_info)
