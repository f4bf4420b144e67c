"""
Structured Logging Configuration Module

Loan lifecycle events are logged with the loan they concern and the state
change they made. Both formatters put those fields first-class:

    {"timestamp": ..., "level": "INFO", "logger": "p2p_lending.loans",
     "message": "Loan invest succeeded", "action": "invest",
     "loan_id": "5b0c...", "from_state": "approved", "to_state": "invested",
     "version": 3}

    2024-01-15 09:30:00 INFO [p2p_lending.loans] Loan invest succeeded action=invest loan_id=5b0c... from_state=approved to_state=invested version=3
"""

import logging
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional


TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# Emitted in this order ahead of any other event fields
LOAN_FIELDS = ("action", "loan_id", "from_state", "to_state", "version", "code")


def loan_fields(record: logging.LogRecord) -> Dict[str, Any]:
    """Structured loan fields attached to a record by log_action"""
    fields = getattr(record, 'loan_fields', None) or {}
    ordered = {key: fields[key] for key in LOAN_FIELDS if key in fields}
    ordered.update((k, v) for k, v in fields.items() if k not in ordered)
    return ordered


class JSONFormatter(logging.Formatter):
    """One JSON object per line with loan fields at the top level"""

    def format(self, record):
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, 'correlation_id', None),
        }
        log_entry.update(loan_fields(record))
        log_entry = {k: v for k, v in log_entry.items() if v is not None}

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class TextFormatter(logging.Formatter):
    """Plain log line followed by key=value loan fields"""

    def __init__(self):
        super().__init__(TEXT_FORMAT)

    def format(self, record):
        line = super().format(record)
        fields = loan_fields(record)
        if not fields:
            return line
        pairs = " ".join(f"{key}={value}" for key, value in fields.items())
        return f"{line} {pairs}"


def setup_logging(level: str = "INFO", logger_name: str = "p2p_lending",
                  fmt: str = "json") -> logging.Logger:
    """
    Setup structured logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        logger_name: Name of the logger
        fmt: "json" for structured output, "text" for key=value lines

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(logger_name)

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.StreamHandler()
    if fmt.lower() == "text":
        handler.setFormatter(TextFormatter())
    else:
        handler.setFormatter(JSONFormatter())

    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper()))
    logger.propagate = False

    return logger


def get_logger(name: str = "p2p_lending") -> logging.Logger:
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               action: Optional[str] = None, loan_id: Optional[str] = None,
               correlation_id: Optional[str] = None, **fields: Any) -> None:
    """
    Log a loan event with structured fields.

    Args:
        logger: Logger instance
        level: Log level (info, warning, error, etc.)
        message: Log message
        action: Lifecycle action, e.g. "approve"
        loan_id: Loan the event concerns
        correlation_id: Correlation ID for request tracing
        **fields: Further event fields such as from_state, to_state,
            version or code; None values are dropped
    """
    levelno = getattr(logging, level.upper())
    if not logger.isEnabledFor(levelno):
        return

    record = logger.makeRecord(
        logger.name, levelno, __name__, 0, message, (), None
    )

    fields.update(action=action, loan_id=loan_id)
    record.loan_fields = {k: v for k, v in fields.items() if v is not None}
    if correlation_id:
        record.correlation_id = correlation_id

    logger.handle(record)
