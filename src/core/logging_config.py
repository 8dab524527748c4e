"""Centralized logging configuration with JSON structured logging support."""
from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional


TEXT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Record attributes promoted to top-level keys in JSON output
CONTEXT_FIELDS = ("request_id", "worker_id", "event_id", "lead_id", "appointment_id", "quote_id")

# Third-party loggers that are too chatty at INFO
NOISY_LOGGERS = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "urllib3": logging.WARNING,
    "twilio.http_client": logging.WARNING,
    "openai": logging.WARNING,
    "anthropic": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "apscheduler": logging.INFO,
}


class JSONFormatter(logging.Formatter):
    """
    Custom JSON formatter for structured logging.

    Emits one JSON object per line so worker and API output can be shipped
    to a log aggregator without parsing.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as JSON."""
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_data"):
            log_data["extra"] = record.extra_data

        for field_name in CONTEXT_FIELDS:
            if hasattr(record, field_name):
                log_data[field_name] = getattr(record, field_name)

        return json.dumps(log_data, default=str)


class ContextLogger(logging.LoggerAdapter):
    """
    Logger adapter that allows adding context to log messages.

    Usage:
        logger = get_context_logger(__name__, worker_id="outbox-1")
        logger.info("Claimed batch")  # Will include worker_id in output
    """

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple[str, Dict[str, Any]]:
        """Add context to log record."""
        extra = kwargs.get("extra", {})
        extra.update(self.extra)
        kwargs["extra"] = extra
        return msg, kwargs


def _build_formatter(json_format: bool) -> logging.Formatter:
    if json_format:
        return JSONFormatter()
    return logging.Formatter(TEXT_LOG_FORMAT, DATE_FORMAT)


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    json_format: bool = False,
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Optional path to a log file.
        json_format: If True, use JSON structured logging.
    """
    handlers: list[logging.Handler] = []

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(_build_formatter(json_format))
    handlers.append(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(_build_formatter(json_format))
        handlers.append(file_handler)

    logging.basicConfig(
        level=level,
        handlers=handlers,
        force=True,
    )

    for name, noisy_level in NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(noisy_level)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the specified name.

    Args:
        name: Name of the logger (usually __name__).

    Returns:
        Configured logger instance.
    """
    return logging.getLogger(name)


def get_context_logger(name: str, **context: Any) -> ContextLogger:
    """
    Get a logger with context that will be included in all log messages.

    Args:
        name: Name of the logger (usually __name__).
        **context: Context key-value pairs to include in logs.

    Returns:
        ContextLogger adapter.

    Example:
        logger = get_context_logger(__name__, worker_id="w1", event_id="abc123")
        logger.info("Dispatching event")
    """
    base_logger = logging.getLogger(name)
    return ContextLogger(base_logger, context)


def log_external_call(
    logger: logging.Logger,
    service: str,
    operation: str,
    success: bool,
    duration_ms: float,
    **extra: Any,
) -> None:
    """
    Log an external service call with standard fields.

    Args:
        logger: Logger instance to use.
        service: Name of the external service (e.g., "twilio", "calendar").
        operation: Operation performed (e.g., "send_sms", "create_event").
        success: Whether the call succeeded.
        duration_ms: Duration of the call in milliseconds.
        **extra: Additional context to log.
    """
    log_data = {
        "service": service,
        "operation": operation,
        "success": success,
        "duration_ms": round(duration_ms, 2),
        **extra,
    }

    if success:
        logger.info(
            f"External call: {service}.{operation} completed in {duration_ms:.2f}ms",
            extra={"extra_data": log_data},
        )
    else:
        logger.warning(
            f"External call: {service}.{operation} failed after {duration_ms:.2f}ms",
            extra={"extra_data": log_data},
        )


__all__ = [
    "setup_logging",
    "get_logger",
    "get_context_logger",
    "log_external_call",
    "JSONFormatter",
    "ContextLogger",
]
