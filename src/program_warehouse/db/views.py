"""Reporting view definitions.

``kpi_report`` is a plain database view created at initialization. The
materialized summaries are ordinary tables whose contents are replaced from
the queries below on refresh.
"""

from sqlalchemy import Integer, case, cast, column, distinct, func, select, table
from sqlalchemy.engine import Connection
from sqlalchemy.sql import Select

from .tables import (
    enrollment_dim,
    enrollment_metrics,
    expenditure_fact,
    expenditure_summary,
    grants_fact,
    program_dim,
)

KPI_REPORT_VIEW = "kpi_report"

# Lightweight handle for selecting from the view
kpi_report = table(
    KPI_REPORT_VIEW,
    column("program_id"),
    column("program_name"),
    column("program_type"),
    column("total_expenditure"),
    column("expenditure_count"),
    column("total_grant_funding"),
    column("grant_count"),
    column("enrolled_clients"),
    column("funding_balance"),
)


def expenditure_summary_query() -> Select:
    """SUM/COUNT of expenditures per program, fiscal year, quarter and category."""
    e = expenditure_fact.c
    return select(
        e.program_id,
        e.fiscal_year,
        e.quarter,
        e.expense_category,
        func.sum(e.amount).label("total_amount"),
        func.count(e.expenditure_id).label("expenditure_count"),
    ).group_by(e.program_id, e.fiscal_year, e.quarter, e.expense_category)


def enrollment_metrics_query() -> Select:
    """Per-client enrollment totals."""
    en = enrollment_dim.c
    return select(
        en.client_id,
        func.count(en.enrollment_id).label("total_enrollments"),
        cast(
            func.coalesce(func.sum(case((en.status == "Active", 1), else_=0)), 0),
            Integer,
        ).label("active_enrollments"),
        func.count(en.completion_date).label("completed_enrollments"),
        func.min(en.start_date).label("earliest_enrollment"),
        func.max(en.completion_date).label("latest_completion"),
        func.avg(en.duration_days).label("average_duration_days"),
    ).group_by(en.client_id)


def kpi_report_query() -> Select:
    """Per-program expenditure, grant and enrollment aggregates."""
    spent = (
        select(
            expenditure_fact.c.program_id,
            func.sum(expenditure_fact.c.amount).label("total"),
            func.count(expenditure_fact.c.expenditure_id).label("n"),
        )
        .group_by(expenditure_fact.c.program_id)
        .subquery("program_spend")
    )
    funded = (
        select(
            grants_fact.c.program_id,
            func.sum(grants_fact.c.grant_amount).label("total"),
            func.count(grants_fact.c.grant_id).label("n"),
        )
        .where(grants_fact.c.program_id.is_not(None))
        .group_by(grants_fact.c.program_id)
        .subquery("program_funding")
    )
    enrolled = (
        select(
            enrollment_dim.c.program_id,
            func.count(distinct(enrollment_dim.c.client_id)).label("n"),
        )
        .group_by(enrollment_dim.c.program_id)
        .subquery("program_enrollment")
    )

    total_spent = func.coalesce(spent.c.total, 0)
    total_funded = func.coalesce(funded.c.total, 0)
    return (
        select(
            program_dim.c.program_id,
            program_dim.c.program_name,
            program_dim.c.program_type,
            total_spent.label("total_expenditure"),
            func.coalesce(spent.c.n, 0).label("expenditure_count"),
            total_funded.label("total_grant_funding"),
            func.coalesce(funded.c.n, 0).label("grant_count"),
            func.coalesce(enrolled.c.n, 0).label("enrolled_clients"),
            (total_funded - total_spent).label("funding_balance"),
        )
        .select_from(program_dim)
        .outerjoin(spent, spent.c.program_id == program_dim.c.program_id)
        .outerjoin(funded, funded.c.program_id == program_dim.c.program_id)
        .outerjoin(enrolled, enrolled.c.program_id == program_dim.c.program_id)
    )


# name -> (backing table, query producing its rows)
MATERIALIZED_VIEWS = {
    "expenditure_summary": (expenditure_summary, expenditure_summary_query),
    "enrollment_metrics": (enrollment_metrics, enrollment_metrics_query),
}


def create_view_sql(name: str, query: Select, conn: Connection) -> str:
    """Render a CREATE VIEW statement for the connection's dialect."""
    body = query.compile(dialect=conn.dialect, compile_kwargs={"literal_binds": True})
    if conn.dialect.name == "postgresql":
        return f"CREATE OR REPLACE VIEW {name} AS {body}"
    return f"CREATE VIEW IF NOT EXISTS {name} AS {body}"


def create_views(conn: Connection) -> None:
    """Create the reporting views."""
    conn.exec_driver_sql(create_view_sql(KPI_REPORT_VIEW, kpi_report_query(), conn))
