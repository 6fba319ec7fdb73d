"""Analytic queries over the star schema and its summaries."""

from dataclasses import dataclass
from datetime import date

from sqlalchemy import func, select

from ..db.repository import Database
from ..db.tables import (
    agency_dim,
    enrollment_metrics,
    expenditure_fact,
    expenditure_summary,
    grant_category_dim,
    grants_fact,
)
from ..db.views import kpi_report as kpi_report_view


@dataclass
class CategoryTotal:
    """Expenditure total for one expense category."""

    expense_category: str
    total_amount: float
    expenditure_count: int


@dataclass
class AgencyTotal:
    """Grant funding total for one agency."""

    agency_id: int
    agency_name: str
    total_grant_amount: float
    grant_count: int


@dataclass
class GrantCategoryTotal:
    """Grant funding total for one grant category."""

    category_name: str
    total_grant_amount: float
    grant_count: int


@dataclass
class SummaryRow:
    """expenditure_summary row."""

    program_id: int
    fiscal_year: int
    quarter: str
    expense_category: str
    total_amount: float
    expenditure_count: int


@dataclass
class EnrollmentMetric:
    """enrollment_metrics row."""

    client_id: int
    total_enrollments: int
    active_enrollments: int
    completed_enrollments: int
    earliest_enrollment: date | None
    latest_completion: date | None
    average_duration_days: float | None


@dataclass
class KpiRow:
    """kpi_report view row."""

    program_id: int
    program_name: str
    program_type: str
    total_expenditure: float
    expenditure_count: int
    total_grant_funding: float
    grant_count: int
    enrolled_clients: int
    funding_balance: float


def expenditure_by_category(db: Database, fiscal_year: int | None = None) -> list[CategoryTotal]:
    """Total expenditures by category, largest first."""
    e = expenditure_fact.c
    total = func.sum(e.amount)
    stmt = (
        select(e.expense_category, total.label("total_amount"), func.count().label("n"))
        .group_by(e.expense_category)
        .order_by(total.desc(), e.expense_category)
    )
    if fiscal_year is not None:
        stmt = stmt.where(e.fiscal_year == fiscal_year)

    with db.engine.connect() as conn:
        return [
            CategoryTotal(
                expense_category=row.expense_category,
                total_amount=float(row.total_amount or 0),
                expenditure_count=row.n,
            )
            for row in conn.execute(stmt)
        ]


def grants_by_agency(db: Database) -> list[AgencyTotal]:
    """Total grant funding by agency, largest first; agencies without grants included."""
    total = func.coalesce(func.sum(grants_fact.c.grant_amount), 0)
    stmt = (
        select(
            agency_dim.c.agency_id,
            agency_dim.c.agency_name,
            total.label("total_grant_amount"),
            func.count(grants_fact.c.grant_id).label("n"),
        )
        .select_from(agency_dim)
        .outerjoin(grants_fact, grants_fact.c.agency_id == agency_dim.c.agency_id)
        .group_by(agency_dim.c.agency_id, agency_dim.c.agency_name)
        .order_by(total.desc(), agency_dim.c.agency_name)
    )
    with db.engine.connect() as conn:
        return [
            AgencyTotal(
                agency_id=row.agency_id,
                agency_name=row.agency_name,
                total_grant_amount=float(row.total_grant_amount),
                grant_count=row.n,
            )
            for row in conn.execute(stmt)
        ]


def grants_by_category(db: Database) -> list[GrantCategoryTotal]:
    """Total grant funding by grant category; uncategorized grants grouped together."""
    name = grant_category_dim.c.category_name
    total = func.sum(grants_fact.c.grant_amount)
    stmt = (
        select(name, total.label("total"), func.count().label("n"))
        .select_from(grants_fact)
        .outerjoin(
            grant_category_dim,
            grant_category_dim.c.grant_category_id == grants_fact.c.grant_category_id,
        )
        .group_by(name)
        .order_by(total.desc())
    )
    with db.engine.connect() as conn:
        return [
            GrantCategoryTotal(
                category_name=row.category_name or "(uncategorized)",
                total_grant_amount=float(row.total),
                grant_count=row.n,
            )
            for row in conn.execute(stmt)
        ]


def summary_rows(
    db: Database,
    program_id: int | None = None,
    fiscal_year: int | None = None,
) -> list[SummaryRow]:
    """Rows of the expenditure_summary snapshot (as of its last refresh)."""
    s = expenditure_summary.c
    stmt = select(expenditure_summary).order_by(
        s.program_id, s.fiscal_year, s.quarter, s.expense_category
    )
    if program_id is not None:
        stmt = stmt.where(s.program_id == program_id)
    if fiscal_year is not None:
        stmt = stmt.where(s.fiscal_year == fiscal_year)
    with db.engine.connect() as conn:
        return [SummaryRow(**row._mapping) for row in conn.execute(stmt)]


def enrollment_metric_rows(db: Database, client_id: int | None = None) -> list[EnrollmentMetric]:
    """Rows of the enrollment_metrics snapshot (as of its last refresh)."""
    stmt = select(enrollment_metrics).order_by(enrollment_metrics.c.client_id)
    if client_id is not None:
        stmt = stmt.where(enrollment_metrics.c.client_id == client_id)
    with db.engine.connect() as conn:
        return [EnrollmentMetric(**row._mapping) for row in conn.execute(stmt)]


def kpi_report(db: Database) -> list[KpiRow]:
    """Pre-joined per-program KPIs from the kpi_report view."""
    stmt = select(kpi_report_view).order_by(kpi_report_view.c.program_id)
    with db.engine.connect() as conn:
        return [
            KpiRow(
                program_id=row.program_id,
                program_name=row.program_name,
                program_type=row.program_type,
                total_expenditure=float(row.total_expenditure),
                expenditure_count=int(row.expenditure_count),
                total_grant_funding=float(row.total_grant_funding),
                grant_count=int(row.grant_count),
                enrolled_clients=int(row.enrolled_clients),
                funding_balance=float(row.funding_balance),
            )
            for row in conn.execute(stmt)
        ]
