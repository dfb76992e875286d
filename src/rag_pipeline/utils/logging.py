"""Logging configuration for the pipeline."""

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Iterator, Optional

from rag_pipeline.config import get_settings

# Document key of the ingestion run or query being processed
document_key_var: ContextVar[Optional[str]] = ContextVar("document_key", default=None)

_logger: Optional[logging.Logger] = None

_RESERVED_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "message",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "thread",
        "threadName",
        "taskName",
        "exc_info",
        "exc_text",
        "stack_info",
        "extra_fields",
        "document_key",
    }
)


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging in production."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        document_key = document_key_var.get()
        if document_key:
            log_data["document_key"] = document_key

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = value

        return json.dumps(log_data, default=str)


class StandardFormatter(logging.Formatter):
    """Human-readable formatter for development."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s - %(name)s - %(levelname)s - [%(document_key)s] - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, "document_key"):
            record.document_key = document_key_var.get() or "-"
        return super().format(record)


def setup_logging() -> logging.Logger:
    """Set up logging configuration based on environment."""
    global _logger

    if _logger is not None:
        return _logger

    settings = get_settings()

    logger = logging.getLogger("rag_pipeline")
    logger.setLevel(getattr(logging, settings.log_level))
    logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, settings.log_level))
    console_handler.setFormatter(JSONFormatter() if settings.is_production else StandardFormatter())
    logger.addHandler(console_handler)

    for noisy in ("httpx", "openai", "qdrant_client", "aio_pika", "aiormq", "pdfminer", "azure"):
        logging.getLogger(noisy).setLevel(logging.INFO if settings.debug else logging.WARNING)

    logger.propagate = False

    _logger = logger
    logger.info(
        f"Logging configured: level={settings.log_level}, "
        f"environment={settings.environment.value}, "
        f"format={'JSON' if settings.is_production else 'Standard'}"
    )
    return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Get a logger instance."""
    if name:
        return logging.getLogger(f"rag_pipeline.{name}")
    return logging.getLogger("rag_pipeline")


@contextmanager
def run_context(document_key: str) -> Iterator[None]:
    """Tag every log record emitted inside the block with ``document_key``."""
    token = document_key_var.set(document_key)
    try:
        yield
    finally:
        document_key_var.reset(token)


def log_error(
    error: Exception,
    context: Optional[Dict[str, Any]] = None,
    **kwargs: Any,
) -> None:
    """Log an error with context."""
    logger = get_logger("error")
    extra_fields = {
        "error_type": type(error).__name__,
        "error_message": str(error),
        "context": context or {},
        **kwargs,
    }
    logger.error(
        f"Error: {type(error).__name__}: {str(error)}",
        exc_info=error,
        extra={"extra_fields": extra_fields},
    )
