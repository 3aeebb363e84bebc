"""
Structured logging configuration.

JSON lines for log aggregation in production, readable console output
while developing.

Environment variables:
- LOG_FORMAT: "json" or "console" (default: json unless DEBUG)
- LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO, DEBUG when DEBUG)

Hierarchy code logs structured fields through ``extra``:

    logger.warning(
        "tenant.delete_blocked",
        extra={"tenant_id": tenant.id, "child_count": 2},
    )
"""
import json
import logging
import os
from datetime import datetime, timezone

APP_LOGGERS = ("organization", "accounts", "tasks", "ops")

# Attributes every LogRecord carries; anything else came in through ``extra``.
_STANDARD_ATTRS = frozenset({
    "name", "msg", "args", "levelname", "levelno", "pathname",
    "filename", "module", "lineno", "funcName", "created",
    "msecs", "relativeCreated", "thread", "threadName",
    "processName", "process", "exc_info", "exc_text", "stack_info",
    "message", "asctime", "taskName",
})


def get_logging_config(debug: bool = False) -> dict:
    """
    Build the Django LOGGING dict.

    Args:
        debug: Whether running in debug mode

    Returns:
        Django LOGGING dict
    """
    log_level = os.environ.get("LOG_LEVEL", "INFO" if not debug else "DEBUG")
    log_format = os.environ.get("LOG_FORMAT", "console" if debug else "json")

    config = {
        "version": 1,
        "disable_existing_loggers": False,
    }

    if log_format == "json":
        config["formatters"] = {
            "json": {
                "()": "ops.logging_config.JsonFormatter",
            },
        }
        console_formatter = "json"
    else:
        config["formatters"] = {
            "verbose": {
                "()": "ops.logging_config.ConsoleFormatter",
                "format": "[{asctime}] {levelname} {name} {message}",
                "style": "{",
            },
        }
        console_formatter = "verbose"

    config["handlers"] = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": console_formatter,
            "stream": "ext://sys.stdout",
        },
        "null": {
            "class": "logging.NullHandler",
        },
    }

    config["loggers"] = {
        "": {
            "handlers": ["console"],
            "level": log_level,
        },
        "django": {
            "handlers": ["console"],
            "level": log_level,
            "propagate": False,
        },
        "django.db.backends": {
            "handlers": ["console"] if debug else ["null"],
            "level": "DEBUG" if debug else "INFO",
            "propagate": False,
        },
    }
    # App loggers only set levels; records propagate to the root console
    # handler (and to pytest's caplog).
    for name in APP_LOGGERS:
        config["loggers"][name] = {
            "handlers": [],
            "level": log_level,
            "propagate": True,
        }

    return config


def extract_extras(record: logging.LogRecord) -> dict:
    """Return the fields passed through ``extra=``, JSON-safe."""
    extras = {}
    for key, value in record.__dict__.items():
        if key in _STANDARD_ATTRS:
            continue
        try:
            json.dumps(value)
            extras[key] = value
        except (TypeError, ValueError):
            extras[key] = str(value)
    return extras


class JsonFormatter(logging.Formatter):
    """
    JSON log formatter.

    Fields: timestamp, level, logger, message, location, exception and
    an ``extra`` object for structured context (tenant ids, counts).
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.pathname:
            log_entry["location"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        extras = extract_extras(record)
        if extras:
            log_entry["extra"] = extras

        return json.dumps(log_entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Human readable formatter that appends ``extra`` fields as key=value."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = extract_extras(record)
        if extras:
            line += " " + " ".join(f"{k}={v}" for k, v in sorted(extras.items()))
        return line

