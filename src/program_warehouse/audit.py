"""Audit logging for warehouse operations.

Emits structured log events that can be consumed by Splunk, Elasticsearch,
or any log aggregator that supports JSON or key=value format. These events
complement the row-level audit_log table: they describe operations (loads,
refreshes, grants), not individual row snapshots.

Configure via config.yaml:
    logging:
      enabled: true  # set to false to disable operation events
      level: INFO
      format: json  # or 'splunk' for key=value format
      file: /var/log/program-warehouse/audit.log  # optional
"""

from typing import Any

import structlog

# Module state
_logger: structlog.BoundLogger | None = None
_enabled: bool = True


def configure(enabled: bool = True) -> None:
    """Enable or disable operation events."""
    global _enabled
    _enabled = enabled


def _get_logger() -> structlog.BoundLogger:
    """Get or create the audit logger."""
    global _logger
    if _logger is None:
        _logger = structlog.get_logger("audit")
    return _logger


def _emit(
    event_type: str,
    action: str,
    level: str = "info",
    **kwargs: Any,
) -> None:
    """Emit an operation event.

    Args:
        event_type: Category of event (load, view, calendar, table, roles)
        action: Specific action (completed, refreshed, write_rejected, ...)
        level: Log method to use.
        **kwargs: Additional event-specific fields
    """
    if not _enabled:
        return

    logger = _get_logger()
    getattr(logger, level)(
        f"{event_type}.{action}",
        event_type=event_type,
        action=action,
        **kwargs,
    )


# Load events
def log_load(
    filename: str,
    table_name: str,
    row_count: int,
    loaded_rows: int,
    failed_rows: int,
    user: str | None = None,
) -> None:
    """Log a completed CSV bulk load."""
    _emit(
        "load",
        "completed",
        filename=filename,
        table=table_name,
        row_count=row_count,
        loaded_rows=loaded_rows,
        failed_rows=failed_rows,
        user=user or "system",
    )


def log_seed(row_counts: dict[str, int], user: str | None = None) -> None:
    """Log sample data seeding."""
    _emit(
        "load",
        "seeded",
        tables=sorted(row_counts),
        row_count=sum(row_counts.values()),
        user=user or "system",
    )


# Write events
def log_write_rejected(
    table_name: str,
    operation: str,
    error_type: str,
    detail: str,
    user: str | None = None,
) -> None:
    """Log a write the warehouse refused."""
    _emit(
        "table",
        "write_rejected",
        level="warning",
        table=table_name,
        operation=operation,
        error_type=error_type,
        detail=detail,
        user=user or "system",
    )


def log_cascade(
    table_name: str,
    deleted: int,
    nullified: int,
    user: str | None = None,
) -> None:
    """Log dependent rows removed or detached by a delete."""
    _emit(
        "table",
        "cascade",
        table=table_name,
        deleted=deleted,
        nullified=nullified,
        user=user or "system",
    )


# Summary refresh events
def log_view_refreshed(
    view_name: str,
    row_count: int,
    duration_ms: float,
) -> None:
    """Log a materialized summary refresh."""
    _emit(
        "view",
        "refreshed",
        view=view_name,
        row_count=row_count,
        duration_ms=round(duration_ms, 1),
    )


# Calendar events
def log_calendar_populated(
    start_year: int,
    end_year: int,
    inserted: int,
    skipped: int,
    flagged: int = 0,
) -> None:
    """Log time dimension population."""
    _emit(
        "calendar",
        "populated",
        start_year=start_year,
        end_year=end_year,
        inserted=inserted,
        skipped=skipped,
        flagged=flagged,
    )


# Security events
def log_roles_granted(
    roles: list[str],
    dialect: str,
    applied: bool,
) -> None:
    """Log read-only role grants."""
    _emit(
        "roles",
        "granted" if applied else "skipped",
        roles=roles,
        dialect=dialect,
    )
