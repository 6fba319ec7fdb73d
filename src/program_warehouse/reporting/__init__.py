"""Reporting: materialized summaries, the KPI view and analytic queries."""

from .queries import (
    enrollment_metric_rows,
    expenditure_by_category,
    grants_by_agency,
    grants_by_category,
    kpi_report,
    summary_rows,
)
from .refresh import (
    cron_schedule_statement,
    is_stale,
    refresh_all,
    refresh_stale,
    refresh_view,
    view_status,
)

__all__ = [
    "cron_schedule_statement",
    "enrollment_metric_rows",
    "expenditure_by_category",
    "grants_by_agency",
    "grants_by_category",
    "is_stale",
    "kpi_report",
    "refresh_all",
    "refresh_stale",
    "refresh_view",
    "summary_rows",
    "view_status",
]
