"""Structured logging for warehouse operations.

Two renderers are supported: Splunk-style ``key=value`` lines (default) and
JSON documents, selected by ``logging.format`` in config.yaml.
"""

import logging
import sys
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any

import structlog

from .config import Config

LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


def _format_value(value: Any) -> str:
    """Render a single value for key=value output."""
    if value is None:
        return "-"
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, (list, tuple, set)):
        value = ",".join(str(v) for v in value)
    if isinstance(value, str) and (" " in value or "=" in value):
        escaped = value.replace('"', '\\"')
        return f'"{escaped}"'
    return str(value)


def splunk_processor(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> str:
    """Format log entries in Splunk key=value format.

    Format: 2026-01-08T12:15:00Z INFO  table.write_rejected table=expenditure_fact
    """
    timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    level = event_dict.pop("level", method_name or "INFO").upper()
    event = event_dict.pop("event", "")

    kvs = [
        f"{key}={_format_value(value)}"
        for key, value in sorted(event_dict.items())
        if not key.startswith("_")
    ]

    line = f"{timestamp} {level:5} {event}"
    if kvs:
        line = f"{line} {' '.join(kvs)}"
    return line


def json_processor(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Normalize an event for JSON rendering."""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    event_dict["level"] = event_dict.get("level", method_name or "info").upper()
    for key, value in list(event_dict.items()):
        if isinstance(value, (date, datetime)):
            event_dict[key] = value.isoformat()
    return event_dict


def build_handlers(log_file: Path | None) -> list[logging.Handler]:
    """Build stdlib handlers: always stderr, plus an optional file."""
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))
    return handlers


def configure_logging(config: Config) -> structlog.BoundLogger:
    """Configure structured logging based on config.

    Args:
        config: Application configuration.

    Returns:
        Configured structlog logger.
    """
    logging.basicConfig(
        format="%(message)s",
        level=LEVELS.get(config.logging.level, logging.INFO),
        handlers=build_handlers(config.logging.file),
        force=True,
    )

    if config.logging.format == "json":
        processors = [
            structlog.stdlib.add_log_level,
            structlog.processors.format_exc_info,
            json_processor,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            structlog.stdlib.add_log_level,
            structlog.processors.format_exc_info,
            splunk_processor,
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    return structlog.get_logger()


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """Get a logger instance."""
    return structlog.get_logger(name)
