"""SQLAlchemy table definitions for the program warehouse star schema."""

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Computed,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB

SCHEMA_VERSION = 1

# Use naming convention for constraints (helps with migrations)
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

metadata = MetaData(naming_convention=convention)

# JSONB on PostgreSQL, JSON text elsewhere
JsonDocument = JSON().with_variant(JSONB(), "postgresql")

QUARTERS = ("Q1", "Q2", "Q3", "Q4")
GENDERS = ("M", "F", "O")
ETHNICITIES = ("Hispanic", "White", "Black", "Asian", "Other")
WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")
PROGRAM_TYPES = ("Training", "Support", "Education", "Internship")
ENROLLMENT_STATUSES = ("Active", "Complete", "Withdrawn", "Suspended")
GRANT_STATUSES = ("Pending", "Awarded", "Active", "Closed")
PAYMENT_METHODS = ("Check", "ACH", "Credit Card", "Wire", "Cash")
FUNDING_SOURCE_TYPES = ("Federal", "State", "Local", "Private")
PROCUREMENT_METHODS = ("Competitive", "Sole Source", "Emergency", "Cooperative")


def _in(column: str, values: tuple[str, ...]) -> str:
    """Build an IN (...) check expression for a fixed value set."""
    quoted = ", ".join(f"'{v}'" for v in values)
    return f"{column} IN ({quoted})"


# Schema version tracking
schema_version = Table(
    "schema_version",
    metadata,
    Column("version", Integer, primary_key=True),
    Column("applied_at", DateTime, server_default=func.now()),
)

# ---------------------------------------------------------------------------
# Dimensions
# ---------------------------------------------------------------------------

time_dim = Table(
    "time_dim",
    metadata,
    Column("date_id", Integer, primary_key=True, autoincrement=False),  # epoch seconds
    Column("full_date", Date, nullable=False, unique=True),
    Column("year", Integer, nullable=False),
    Column("month", Integer, nullable=False),
    Column("day", Integer, nullable=False),
    Column("weekday", String(10), nullable=False),
    Column("fiscal_quarter", Integer, nullable=False),
    Column(
        "is_weekend",
        Boolean,
        Computed("weekday IN ('Saturday', 'Sunday')", persisted=True),
    ),
    Column("holiday_flag", Boolean, nullable=False, server_default="0"),
    Column("last_updated", DateTime, server_default=func.now(), onupdate=func.now()),
    CheckConstraint("year > 1900", name="year_check"),
    CheckConstraint("month BETWEEN 1 AND 12", name="month_check"),
    CheckConstraint("day BETWEEN 1 AND 31", name="day_check"),
    CheckConstraint(_in("weekday", WEEKDAYS), name="weekday_check"),
    CheckConstraint("fiscal_quarter BETWEEN 1 AND 4", name="fiscal_quarter_check"),
)

Index("idx_time_fiscal_quarter", time_dim.c.fiscal_quarter)

program_dim = Table(
    "program_dim",
    metadata,
    Column("program_id", Integer, primary_key=True, autoincrement=False),
    Column("program_name", String(100), nullable=False, unique=True),
    Column("program_type", String(50), nullable=False),
    Column("provider", String(100)),
    Column("program_description", Text),
    Column("program_start_date", Date, nullable=False),
    Column("last_updated", DateTime, server_default=func.now(), onupdate=func.now()),
    CheckConstraint(_in("program_type", PROGRAM_TYPES), name="program_type_check"),
)

Index("idx_program_type_start", program_dim.c.program_type, program_dim.c.program_start_date)

agency_dim = Table(
    "agency_dim",
    metadata,
    Column("agency_id", Integer, primary_key=True, autoincrement=False),
    Column("agency_name", String(150), nullable=False, unique=True),
    Column("contact_name", String(100)),
    Column("contact_email", String(254)),
    Column("phone", String(30)),
    Column("address", Text),
    Column("last_updated", DateTime, server_default=func.now(), onupdate=func.now()),
)

grant_category_dim = Table(
    "grant_category_dim",
    metadata,
    Column("grant_category_id", Integer, primary_key=True, autoincrement=False),
    Column("category_name", String(100), nullable=False, unique=True),
    Column("description", Text),
)

vendor_dim = Table(
    "vendor_dim",
    metadata,
    Column("vendor_id", Integer, primary_key=True, autoincrement=False),
    Column("vendor_name", String(150), nullable=False),
    Column("vendor_type", String(50)),
    Column("tax_id", String(20), unique=True),
    Column("contact_email", String(254)),
    Column("last_updated", DateTime, server_default=func.now(), onupdate=func.now()),
)

funding_source_dim = Table(
    "funding_source_dim",
    metadata,
    Column("funding_source_id", Integer, primary_key=True, autoincrement=False),
    Column("source_name", String(150), nullable=False, unique=True),
    Column("source_type", String(20), nullable=False),
    Column("budget_amount", Float, nullable=False, server_default="0"),
    CheckConstraint(_in("source_type", FUNDING_SOURCE_TYPES), name="source_type_check"),
    CheckConstraint("budget_amount >= 0", name="budget_amount_check"),
)

procurement_dim = Table(
    "procurement_dim",
    metadata,
    Column("procurement_id", Integer, primary_key=True, autoincrement=False),
    Column("vendor_id", Integer, ForeignKey("vendor_dim.vendor_id", ondelete="SET NULL")),
    Column("procurement_method", String(30), nullable=False),
    Column("contract_number", String(50), unique=True),
    Column("award_date", Date),
    Column("contract_start", Date),
    Column("contract_end", Date),
    CheckConstraint(_in("procurement_method", PROCUREMENT_METHODS), name="method_check"),
    CheckConstraint(
        "contract_start IS NULL OR contract_end IS NULL OR contract_start <= contract_end",
        name="contract_dates_check",
    ),
)

# ---------------------------------------------------------------------------
# Facts
# ---------------------------------------------------------------------------

client_fact = Table(
    "client_fact",
    metadata,
    Column("client_id", Integer, primary_key=True, autoincrement=False),
    Column("age", Integer, nullable=False),
    Column("gender", String(10), nullable=False),
    Column("ethnicity", String(50), nullable=False),
    Column("enrollment_count", Integer, nullable=False, server_default="0"),
    Column("active_enrollments", Integer, nullable=False, server_default="0"),
    Column("total_exits", Integer, nullable=False, server_default="0"),
    Column("average_enrollment_duration", Float),  # days
    Column("budget_amount", Float, nullable=False, server_default="0"),
    Column("data_quality_score", Float, nullable=False, server_default="100"),
    Column("last_updated", DateTime, server_default=func.now(), onupdate=func.now()),
    CheckConstraint("age > 0 AND age < 120", name="age_check"),
    CheckConstraint(_in("gender", GENDERS), name="gender_check"),
    CheckConstraint(_in("ethnicity", ETHNICITIES), name="ethnicity_check"),
    CheckConstraint("enrollment_count >= 0", name="enrollment_count_check"),
    CheckConstraint("active_enrollments >= 0", name="active_enrollments_check"),
    CheckConstraint("total_exits >= 0", name="total_exits_check"),
    CheckConstraint("budget_amount >= 0", name="budget_amount_check"),
    CheckConstraint(
        "data_quality_score >= 0 AND data_quality_score <= 100",
        name="data_quality_score_check",
    ),
)

Index("idx_client_gender_ethnicity", client_fact.c.gender, client_fact.c.ethnicity)
Index(
    "idx_client_fact_aggregate",
    client_fact.c.enrollment_count,
    client_fact.c.active_enrollments,
)

# Range-partitioned by start_date on PostgreSQL; the partition key must be
# part of the primary key there.
enrollment_dim = Table(
    "enrollment_dim",
    metadata,
    Column("enrollment_id", Integer, nullable=False, autoincrement=False),
    Column(
        "client_id",
        Integer,
        ForeignKey("client_fact.client_id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column(
        "program_id",
        Integer,
        ForeignKey("program_dim.program_id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("start_date", Date, nullable=False),
    Column("completion_date", Date),
    Column("duration_days", Integer),  # maintained on write
    Column("status", String(20), nullable=False),
    Column("last_updated", DateTime, server_default=func.now(), onupdate=func.now()),
    PrimaryKeyConstraint("enrollment_id", "start_date"),
    CheckConstraint(_in("status", ENROLLMENT_STATUSES), name="status_check"),
    CheckConstraint(
        "completion_date IS NULL OR completion_date >= start_date",
        name="completion_date_check",
    ),
    postgresql_partition_by="RANGE (start_date)",
)

Index("idx_enrollment_status_duration", enrollment_dim.c.status, enrollment_dim.c.duration_days)
Index("idx_enrollment_client_program", enrollment_dim.c.client_id, enrollment_dim.c.program_id)
# Partitioned PostgreSQL tables cannot carry a unique index without the partition key
Index("uq_enrollment_dim_enrollment_id", enrollment_dim.c.enrollment_id, unique=True).ddl_if(dialect="sqlite")

expenditure_fact = Table(
    "expenditure_fact",
    metadata,
    Column("expenditure_id", Integer, primary_key=True, autoincrement=False),
    Column(
        "program_id",
        Integer,
        ForeignKey("program_dim.program_id", ondelete="CASCADE"),
        nullable=False,
    ),
    # Expenditures outlive the client record
    Column("client_id", Integer, ForeignKey("client_fact.client_id", ondelete="SET NULL")),
    Column("date_id", Integer, ForeignKey("time_dim.date_id")),
    Column("vendor_id", Integer, ForeignKey("vendor_dim.vendor_id", ondelete="SET NULL")),
    Column(
        "funding_source_id",
        Integer,
        ForeignKey("funding_source_dim.funding_source_id", ondelete="SET NULL"),
    ),
    Column(
        "procurement_id",
        Integer,
        ForeignKey("procurement_dim.procurement_id", ondelete="SET NULL"),
    ),
    Column("fiscal_year", Integer, nullable=False),
    Column("quarter", String(2), nullable=False),
    Column("expense_category", String(50), nullable=False),
    Column("amount", Float, nullable=False),
    Column("payment_method", String(20)),
    Column("description", Text),
    Column("last_updated", DateTime, server_default=func.now(), onupdate=func.now()),
    CheckConstraint("amount >= 0", name="amount_check"),
    CheckConstraint("fiscal_year > 1900", name="fiscal_year_check"),
    CheckConstraint(_in("quarter", QUARTERS), name="quarter_check"),
    CheckConstraint(
        f"payment_method IS NULL OR {_in('payment_method', PAYMENT_METHODS)}",
        name="payment_method_check",
    ),
)

Index(
    "idx_expenditure_program_period",
    expenditure_fact.c.program_id,
    expenditure_fact.c.fiscal_year,
    expenditure_fact.c.quarter,
)
Index("idx_expenditure_category", expenditure_fact.c.expense_category)

grants_fact = Table(
    "grants_fact",
    metadata,
    Column("grant_id", Integer, primary_key=True, autoincrement=False),
    Column(
        "agency_id",
        Integer,
        ForeignKey("agency_dim.agency_id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column(
        "grant_category_id",
        Integer,
        ForeignKey("grant_category_dim.grant_category_id", ondelete="SET NULL"),
    ),
    Column("program_id", Integer, ForeignKey("program_dim.program_id", ondelete="SET NULL")),
    Column(
        "funding_source_id",
        Integer,
        ForeignKey("funding_source_dim.funding_source_id", ondelete="SET NULL"),
    ),
    Column("grant_amount", Float, nullable=False),
    Column("start_date", Date, nullable=False),
    Column("end_date", Date, nullable=False),
    Column("status", String(20), nullable=False, server_default="Pending"),
    Column("last_updated", DateTime, server_default=func.now(), onupdate=func.now()),
    CheckConstraint("grant_amount >= 0", name="grant_amount_check"),
    CheckConstraint("start_date <= end_date", name="date_range_check"),
    CheckConstraint(_in("status", GRANT_STATUSES), name="status_check"),
)

Index("idx_grants_agency", grants_fact.c.agency_id)
Index("idx_grants_category", grants_fact.c.grant_category_id)

# ---------------------------------------------------------------------------
# Audit and error logs
# ---------------------------------------------------------------------------

audit_log = Table(
    "audit_log",
    metadata,
    Column("log_id", Integer, primary_key=True, autoincrement=True),
    Column("table_name", String(50), nullable=False),
    Column("operation_type", String(10), nullable=False),
    Column("operation_time", DateTime, server_default=func.now()),
    Column("old_value", JsonDocument),
    Column("new_value", JsonDocument),
    Column("user_name", String(50)),
    CheckConstraint(
        "operation_type IN ('INSERT', 'UPDATE', 'DELETE')",
        name="operation_type_check",
    ),
)

Index("idx_audit_log_table_time", audit_log.c.table_name, audit_log.c.operation_time)

error_log = Table(
    "error_log",
    metadata,
    Column("error_id", Integer, primary_key=True, autoincrement=True),
    Column("table_name", String(50), nullable=False),
    Column("operation", String(10), nullable=False),
    Column("error_type", String(30), nullable=False),
    Column("error_message", Text, nullable=False),
    Column("payload", JsonDocument),
    Column("logged_at", DateTime, server_default=func.now()),
    Column("user_name", String(50)),
)

# ---------------------------------------------------------------------------
# Materialized summaries (rebuilt by reporting.refresh)
# ---------------------------------------------------------------------------

expenditure_summary = Table(
    "expenditure_summary",
    metadata,
    Column("program_id", Integer, nullable=False),
    Column("fiscal_year", Integer, nullable=False),
    Column("quarter", String(2), nullable=False),
    Column("expense_category", String(50), nullable=False),
    Column("total_amount", Float, nullable=False),
    Column("expenditure_count", Integer, nullable=False),
    PrimaryKeyConstraint("program_id", "fiscal_year", "quarter", "expense_category"),
)

enrollment_metrics = Table(
    "enrollment_metrics",
    metadata,
    Column("client_id", Integer, primary_key=True, autoincrement=False),
    Column("total_enrollments", Integer, nullable=False),
    Column("active_enrollments", Integer, nullable=False),
    Column("completed_enrollments", Integer, nullable=False),
    Column("earliest_enrollment", Date),
    Column("latest_completion", Date),
    Column("average_duration_days", Float),
)

materialized_view_refreshes = Table(
    "materialized_view_refreshes",
    metadata,
    Column("view_name", String(50), primary_key=True),
    Column("refreshed_at", DateTime, nullable=False),
    Column("row_count", Integer, nullable=False),
)

# Row-level audit coverage by default
AUDITED_TABLES = (
    "client_fact",
    "enrollment_dim",
    "program_dim",
    "expenditure_fact",
    "grants_fact",
)

# Star schema tables callers may write through the repository
WAREHOUSE_TABLES = (
    "time_dim",
    "program_dim",
    "agency_dim",
    "grant_category_dim",
    "vendor_dim",
    "funding_source_dim",
    "procurement_dim",
    "client_fact",
    "enrollment_dim",
    "expenditure_fact",
    "grants_fact",
)

# Columns that must never be negative
MONETARY_COLUMNS = {
    "expenditure_fact": ("amount",),
    "grants_fact": ("grant_amount",),
    "client_fact": ("budget_amount",),
    "funding_source_dim": ("budget_amount",),
}
