"""
Logging Configuration Module

Servicing events are emitted as one JSON object per line. log_action attaches
the operator, action and resource of an event to the record so the formatter
can write them as top-level keys.
"""

import logging
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional


TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# Record attributes written as top-level keys when set
STRUCTURED_FIELDS = ("correlation_id", "user_id", "action", "resource", "extra")


class JSONFormatter(logging.Formatter):
    """Render a record and its structured fields as a JSON line"""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in STRUCTURED_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                entry[field] = value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def _build_handler(log_format: str, log_file: Optional[str]) -> logging.Handler:
    handler = logging.FileHandler(log_file) if log_file else logging.StreamHandler()
    if log_format == "text":
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))
    else:
        handler.setFormatter(JSONFormatter())
    return handler


def setup_logging(level: str = "INFO", logger_name: str = "loan_servicing",
                  log_format: str = "json", log_file: Optional[str] = None) -> logging.Logger:
    """
    Attach a single handler to the package logger

    Calling it again replaces the previous handler, so the API factory can
    run more than once in a process.

    Args:
        level: Level name, case-insensitive
        logger_name: Logger to configure; child loggers inherit it
        log_format: "json" or "text"
        log_file: Append to this file instead of stderr

    Returns:
        The configured logger
    """
    logger = logging.getLogger(logger_name)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    logger.addHandler(_build_handler(log_format, log_file))
    logger.setLevel(level.upper())
    logger.propagate = False
    return logger


def get_logger(name: str = "loan_servicing") -> logging.Logger:
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               user_id: Optional[str] = None, action: Optional[str] = None,
               resource: Optional[str] = None, correlation_id: Optional[str] = None,
               extra: Optional[dict] = None) -> None:
    """
    Log a servicing event with its structured fields

    Args:
        logger: Logger to write to
        level: Level name, e.g. "info"
        message: Human readable summary
        user_id: Operator who triggered the event
        action: Event name, e.g. "payment_registered"
        resource: Affected entity, e.g. "loan:<id>"
        correlation_id: Request identifier
        extra: Event details written under the "extra" key
    """
    fields = {
        "user_id": user_id,
        "action": action,
        "resource": resource,
        "correlation_id": correlation_id,
        "extra": extra,
    }
    logger.log(
        logging.getLevelName(level.upper()),
        message,
        extra={key: value for key, value in fields.items() if value is not None}
    )
