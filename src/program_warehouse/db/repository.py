"""Data access layer using SQLAlchemy Core.

All writes go through :class:`Database`, which validates derived and
monetary columns, records row history in audit_log, and records every
rejected write in error_log.
"""

from collections import Counter
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field, fields
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterator, Mapping

from sqlalchemy import Table, delete, func, select, update
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from .. import audit
from ..errors import (
    ConstraintViolationError,
    DerivedColumnError,
    NegativeAmountError,
    RecordNotFoundError,
    UnknownTableError,
    WriteRejectedError,
)
from .derivations import (
    DEFAULT_ACTIVE_WINDOW_DAYS,
    DERIVED_COLUMNS,
    active_cutoff,
    enrollment_duration,
    program_is_active,
)
from .engine import create_db_engine, get_dialect, initialize_schema
from .history import AuditTrail, RowChange, dependent_changes, snapshot
from .partitions import PartitionScheme, enrollment_scheme
from .tables import (
    AUDITED_TABLES,
    MONETARY_COLUMNS,
    WAREHOUSE_TABLES,
    audit_log,
    client_fact,
    enrollment_dim,
    error_log,
    expenditure_fact,
    grants_fact,
    metadata,
    program_dim,
)


@dataclass
class Program:
    """Program dimension record."""

    program_id: int
    program_name: str
    program_type: str
    program_start_date: date
    provider: str | None = None
    program_description: str | None = None
    last_updated: str | None = None
    # Window used by is_active; set by Database from reporting.active_window_days
    active_window_days: int = field(default=DEFAULT_ACTIVE_WINDOW_DAYS, repr=False, compare=False)

    def is_active_on(
        self,
        today: date | None = None,
        window_days: int | None = None,
    ) -> bool:
        """Whether the program is active on a given day."""
        if window_days is None:
            window_days = self.active_window_days
        return program_is_active(self.program_start_date, today, window_days)

    @property
    def is_active(self) -> bool:
        return self.is_active_on()


@dataclass
class Client:
    """Client record (fact table doubling as the client dimension)."""

    client_id: int
    age: int
    gender: str
    ethnicity: str
    enrollment_count: int = 0
    active_enrollments: int = 0
    total_exits: int = 0
    average_enrollment_duration: float | None = None  # days
    budget_amount: float = 0.0
    data_quality_score: float = 100.0
    last_updated: str | None = None


@dataclass
class Enrollment:
    """Enrollment dimension record."""

    enrollment_id: int
    client_id: int
    program_id: int
    start_date: date
    status: str
    completion_date: date | None = None
    duration_days: int | None = None  # derived, read-only
    last_updated: str | None = None


@dataclass
class Expenditure:
    """Expenditure fact record."""

    expenditure_id: int
    program_id: int
    fiscal_year: int
    quarter: str
    expense_category: str
    amount: float
    client_id: int | None = None
    date_id: int | None = None
    vendor_id: int | None = None
    funding_source_id: int | None = None
    procurement_id: int | None = None
    payment_method: str | None = None
    description: str | None = None
    last_updated: str | None = None


@dataclass
class Grant:
    """Grant fact record."""

    grant_id: int
    agency_id: int
    grant_amount: float
    start_date: date
    end_date: date
    status: str = "Pending"
    grant_category_id: int | None = None
    program_id: int | None = None
    funding_source_id: int | None = None
    last_updated: str | None = None


@dataclass
class AuditEntry:
    """audit_log row."""

    log_id: int
    table_name: str
    operation_type: str
    operation_time: str | None
    old_value: dict | None
    new_value: dict | None
    user_name: str | None


@dataclass
class ErrorEntry:
    """error_log row."""

    error_id: int
    table_name: str
    operation: str
    error_type: str
    error_message: str
    payload: dict | None
    logged_at: str | None
    user_name: str | None


@dataclass
class DeleteResult:
    """Outcome of a delete, including rows changed by foreign key policies."""

    deleted: int = 0
    cascaded: int = 0
    nullified: int = 0


# Bookkeeping columns never supplied by callers
_READ_ONLY_FIELDS = ("last_updated", "active_window_days")


def _row_to_dict(row: Any) -> dict:
    """Convert SQLAlchemy row to dict."""
    return dict(row._mapping)


def _format_datetime(dt: datetime | str | None) -> str | None:
    """Format datetime to ISO string."""
    if dt is None:
        return None
    if isinstance(dt, str):
        return dt
    return dt.isoformat()


def _record_values(record: Any) -> dict[str, Any]:
    """Writable column values of a record dataclass."""
    derived = set()
    for columns in DERIVED_COLUMNS.values():
        derived.update(columns)
    return {
        key: value
        for key, value in asdict(record).items()
        if key not in _READ_ONLY_FIELDS and key not in derived
    }


def _from_row(cls: type, row: Mapping[str, Any]) -> Any:
    """Build a record dataclass from a row mapping."""
    names = {f.name for f in fields(cls)}
    values = {key: value for key, value in row.items() if key in names}
    for key in ("last_updated", "operation_time", "logged_at"):
        if key in values:
            values[key] = _format_datetime(values[key])
    return cls(**values)


def _integrity_detail(exc: IntegrityError) -> str:
    """Driver message for an engine constraint violation."""
    return str(exc.orig).strip() if exc.orig is not None else str(exc)


class Database:
    """Database connection and operations using SQLAlchemy Core."""

    def __init__(
        self,
        db_path: Path | str,
        trail: AuditTrail | None = None,
        partitions: list[PartitionScheme] | None = None,
        active_window_days: int = DEFAULT_ACTIVE_WINDOW_DAYS,
        default_user: str = "system",
    ):
        """Initialize database connection.

        Args:
            db_path: Path to SQLite database file, or full connection string.
            trail: Audit trail; defaults to auditing the standard fact tables.
            partitions: Range partition schemes (PostgreSQL only).
            active_window_days: Days a program stays active after it starts.
            default_user: User recorded when a write names no user.
        """
        self._engine: Engine | None = None
        self._db_path = db_path
        self.trail = trail or AuditTrail(AUDITED_TABLES)
        self.partitions = partitions if partitions is not None else [enrollment_scheme([2021, 2022, 2023])]
        self.active_window_days = active_window_days
        self.default_user = default_user

    @classmethod
    def from_config(cls, config: Any) -> "Database":
        """Build a database from application configuration."""
        return cls(
            config.database.connection,
            trail=AuditTrail(config.audit.tables, enabled=config.audit.enabled),
            partitions=[enrollment_scheme(config.partitions.enrollment_years)],
            active_window_days=config.reporting.active_window_days,
            default_user=config.audit.default_user,
        )

    @property
    def engine(self) -> Engine:
        """Get or create database engine."""
        if self._engine is None:
            self._engine = create_db_engine(self._db_path)
        return self._engine

    @property
    def dialect(self) -> str:
        """Get database dialect (sqlite, postgresql)."""
        return get_dialect(self.engine)

    def close(self) -> None:
        """Close database connection."""
        if self._engine:
            self._engine.dispose()
            self._engine = None

    def initialize(self) -> None:
        """Initialize database schema, partitions and views."""
        initialize_schema(self.engine, self.partitions)

    # Table helpers

    def table(self, table_name: str) -> Table:
        """Resolve a writable warehouse table by name."""
        if table_name not in WAREHOUSE_TABLES:
            raise UnknownTableError(table_name)
        return metadata.tables[table_name]

    @staticmethod
    def _key_clause(table: Table, key: Any) -> list:
        """WHERE conditions for a key.

        A scalar key matches the first primary key column; a mapping matches
        each named column.
        """
        if isinstance(key, Mapping):
            return [table.c[name] == value for name, value in key.items()]
        first = list(table.primary_key.columns)[0]
        return [first == key]

    @staticmethod
    def _pk_of(table: Table, row: Mapping[str, Any]) -> dict[str, Any]:
        return {c.name: row[c.name] for c in table.primary_key.columns}

    def _fetch_one(self, conn: Connection, table: Table, key: Any) -> dict | None:
        row = conn.execute(select(table).where(*self._key_clause(table, key))).fetchone()
        return _row_to_dict(row) if row else None

    def _prepare(
        self,
        table: Table,
        values: Mapping[str, Any],
        operation: str,
        existing: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Validate caller values and fill in derived columns."""
        known = {c.name for c in table.columns}
        unknown = sorted(set(values) - known - set(DERIVED_COLUMNS.get(table.name, ())))
        if unknown:
            raise WriteRejectedError(table.name, operation, f"unknown columns: {', '.join(unknown)}")

        derived = set(DERIVED_COLUMNS.get(table.name, ()))
        derived.update(c.name for c in table.columns if c.computed is not None)
        written = sorted(derived & set(values))
        if written:
            raise DerivedColumnError(
                table.name,
                operation,
                f"derived columns cannot be written: {', '.join(written)}",
            )

        for column in MONETARY_COLUMNS.get(table.name, ()):
            value = values.get(column)
            if value is None:
                continue
            if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
                raise WriteRejectedError(
                    table.name,
                    operation,
                    f"{column} must be numeric (got {value!r})",
                )
            if value < 0:
                raise NegativeAmountError(
                    table.name,
                    operation,
                    f"{column} must be non-negative (got {value})",
                )

        prepared = dict(values)
        if table is enrollment_dim:
            merged = {**(existing or {}), **prepared}
            if merged.get("start_date") is not None:
                prepared["duration_days"] = enrollment_duration(
                    merged["start_date"], merged.get("completion_date")
                )
        return prepared

    def _check_enrollment_id(self, conn: Connection, operation: str, enrollment_id: Any) -> None:
        """enrollment_id stays unique although the key also holds start_date."""
        taken = conn.execute(
            select(func.count())
            .select_from(enrollment_dim)
            .where(enrollment_dim.c.enrollment_id == enrollment_id)
        ).scalar_one()
        if taken:
            raise ConstraintViolationError(
                enrollment_dim.name,
                operation,
                f"enrollment_id {enrollment_id} already exists",
            )

    def _log_rejection(
        self,
        exc: WriteRejectedError,
        values: Mapping[str, Any] | None,
        user: str,
    ) -> None:
        """Record a rejected write in error_log (own transaction)."""
        with self.engine.begin() as conn:
            conn.execute(
                error_log.insert().values(
                    table_name=exc.table_name,
                    operation=exc.operation,
                    error_type=exc.error_type,
                    error_message=exc.detail,
                    payload=snapshot(values),
                    logged_at=datetime.now(),
                    user_name=user,
                )
            )
        audit.log_write_rejected(
            exc.table_name, exc.operation, exc.error_type, exc.detail, user=user
        )

    @contextmanager
    def _guard(
        self,
        table: Table,
        operation: str,
        values: Mapping[str, Any] | None,
        user: str,
    ) -> Iterator[None]:
        """Map engine rejections to warehouse errors and log them."""
        try:
            yield
        except WriteRejectedError as exc:
            self._log_rejection(exc, values, user)
            raise
        except IntegrityError as exc:
            violation = ConstraintViolationError(table.name, operation, _integrity_detail(exc))
            self._log_rejection(violation, values, user)
            raise violation from exc

    # Generic audited writes

    def insert(
        self,
        table_name: str,
        values: Mapping[str, Any],
        performed_by: str | None = None,
    ) -> dict[str, Any]:
        """Insert a row and return it as stored (defaults and derivations applied)."""
        table = self.table(table_name)
        user = performed_by or self.default_user

        with self._guard(table, "INSERT", values, user):
            prepared = self._prepare(table, values, "INSERT")
            with self.engine.begin() as conn:
                if table is enrollment_dim:
                    self._check_enrollment_id(conn, "INSERT", prepared.get("enrollment_id"))
                result = conn.execute(table.insert().values(**prepared))
                key = dict(
                    zip(
                        [c.name for c in table.primary_key.columns],
                        result.inserted_primary_key,
                    )
                )
                row = self._fetch_one(conn, table, key)
                self.trail.record(conn, RowChange(table.name, "INSERT", None, row), user)
        return row

    def update(
        self,
        table_name: str,
        key: Any,
        values: Mapping[str, Any],
        performed_by: str | None = None,
    ) -> dict[str, Any]:
        """Update one row and return its new state.

        Raises:
            RecordNotFoundError: If no row matches ``key``.
        """
        table = self.table(table_name)
        user = performed_by or self.default_user

        with self._guard(table, "UPDATE", values, user):
            with self.engine.begin() as conn:
                old = self._fetch_one(conn, table, key)
                if old is None:
                    raise RecordNotFoundError(table.name, key)
                prepared = self._prepare(table, values, "UPDATE", existing=old)
                new_id = prepared.get("enrollment_id", old.get("enrollment_id"))
                if table is enrollment_dim and new_id != old["enrollment_id"]:
                    self._check_enrollment_id(conn, "UPDATE", new_id)
                conn.execute(
                    update(table).where(*self._key_clause(table, self._pk_of(table, old))).values(**prepared)
                )
                new = self._fetch_one(conn, table, self._pk_of(table, {**old, **prepared}))
                self.trail.record(conn, RowChange(table.name, "UPDATE", old, new), user)
        return new

    def delete(
        self,
        table_name: str,
        key: Any,
        performed_by: str | None = None,
    ) -> DeleteResult:
        """Delete a row; dependents follow their foreign key policy.

        Raises:
            RecordNotFoundError: If no row matches ``key``.
        """
        table = self.table(table_name)
        user = performed_by or self.default_user
        result = DeleteResult()

        with self._guard(table, "DELETE", {"key": key}, user):
            with self.engine.begin() as conn:
                rows = [
                    _row_to_dict(r)
                    for r in conn.execute(select(table).where(*self._key_clause(table, key)))
                ]
                if not rows:
                    raise RecordNotFoundError(table.name, key)

                # Snapshot dependents before the engine changes them
                changes = dependent_changes(conn, table, rows)
                conn.execute(delete(table).where(*self._key_clause(table, key)))

                for row in rows:
                    self.trail.record(conn, RowChange(table.name, "DELETE", row, None), user)
                self.trail.record_all(conn, changes, user)

        result.deleted = len(rows)
        result.cascaded = sum(1 for c in changes if c.operation == "DELETE")
        result.nullified = sum(1 for c in changes if c.operation == "UPDATE")
        if changes:
            audit.log_cascade(table.name, result.cascaded, result.nullified, user=user)
        return result

    def bulk_insert(
        self,
        table_name: str,
        rows: list[Mapping[str, Any]],
        performed_by: str | None = None,
    ) -> tuple[int, list[tuple[int, WriteRejectedError]]]:
        """Insert rows one by one; a rejected row does not stop the rest.

        Returns:
            Number of rows inserted, and (index, error) for each rejected row.
        """
        inserted = 0
        failures = []
        for index, values in enumerate(rows):
            try:
                self.insert(table_name, values, performed_by)
            except WriteRejectedError as exc:
                failures.append((index, exc))
                continue
            inserted += 1
        return inserted, failures

    # Generic reads

    def get(self, table_name: str, key: Any) -> dict[str, Any] | None:
        """Fetch one row by key."""
        table = self.table(table_name)
        with self.engine.connect() as conn:
            return self._fetch_one(conn, table, key)

    def rows(self, table_name: str, **filters: Any) -> list[dict[str, Any]]:
        """All rows of a table matching equality filters, in key order."""
        table = self.table(table_name)
        stmt = select(table).order_by(*table.primary_key.columns)
        for name, value in filters.items():
            stmt = stmt.where(table.c[name] == value)
        with self.engine.connect() as conn:
            return [_row_to_dict(r) for r in conn.execute(stmt)]

    def count(self, table_name: str) -> int:
        """Number of rows in a table."""
        table = self.table(table_name)
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(table)).scalar_one()

    # Program operations

    def _program(self, row: Mapping[str, Any]) -> Program:
        program = _from_row(Program, row)
        program.active_window_days = self.active_window_days
        return program

    def add_program(self, program: Program, performed_by: str | None = None) -> Program:
        """Insert a program."""
        row = self.insert("program_dim", _record_values(program), performed_by)
        return self._program(row)

    def get_program(self, program_id: int) -> Program | None:
        """Get program by ID."""
        row = self.get("program_dim", program_id)
        return self._program(row) if row else None

    def list_programs(self, active_only: bool = False, today: date | None = None) -> list[Program]:
        """List programs by ID, optionally only those currently active."""
        stmt = select(program_dim).order_by(program_dim.c.program_id)
        if active_only:
            stmt = stmt.where(
                program_dim.c.program_start_date >= active_cutoff(today, self.active_window_days)
            )
        with self.engine.connect() as conn:
            return [self._program(r._mapping) for r in conn.execute(stmt)]

    # Client operations

    def add_client(self, client: Client, performed_by: str | None = None) -> Client:
        """Insert a client."""
        row = self.insert("client_fact", _record_values(client), performed_by)
        return _from_row(Client, row)

    def get_client(self, client_id: int) -> Client | None:
        """Get client by ID."""
        row = self.get("client_fact", client_id)
        return _from_row(Client, row) if row else None

    def recompute_client_rollups(self, performed_by: str | None = None) -> int:
        """Refresh enrollment counters on client_fact from enrollment_dim.

        Only clients whose counters change are updated (and audited).

        Returns:
            Number of clients updated.
        """
        en = enrollment_dim.c
        stmt = select(en.client_id, en.status, en.duration_days)
        stats: dict[int, dict[str, Any]] = {}
        with self.engine.connect() as conn:
            for client_id, status, duration in conn.execute(stmt):
                entry = stats.setdefault(
                    client_id,
                    {"enrollment_count": 0, "active_enrollments": 0, "total_exits": 0, "durations": []},
                )
                entry["enrollment_count"] += 1
                if status == "Active":
                    entry["active_enrollments"] += 1
                elif status in ("Complete", "Withdrawn"):
                    entry["total_exits"] += 1
                if duration is not None:
                    entry["durations"].append(duration)
            clients = {
                r.client_id: _row_to_dict(r) for r in conn.execute(select(client_fact))
            }

        updated = 0
        for client_id, current in clients.items():
            entry = stats.get(client_id)
            durations = entry.pop("durations") if entry else []
            target = entry or {"enrollment_count": 0, "active_enrollments": 0, "total_exits": 0}
            target["average_enrollment_duration"] = (
                sum(durations) / len(durations) if durations else None
            )
            changed = {k: v for k, v in target.items() if current.get(k) != v}
            if changed:
                self.update("client_fact", client_id, changed, performed_by)
                updated += 1
        return updated

    # Enrollment operations

    def add_enrollment(self, enrollment: Enrollment, performed_by: str | None = None) -> Enrollment:
        """Insert an enrollment; duration_days is derived."""
        row = self.insert("enrollment_dim", _record_values(enrollment), performed_by)
        return _from_row(Enrollment, row)

    def get_enrollment(self, enrollment_id: int) -> Enrollment | None:
        """Get enrollment by ID."""
        row = self.get("enrollment_dim", enrollment_id)
        return _from_row(Enrollment, row) if row else None

    def list_enrollments(
        self,
        client_id: int | None = None,
        program_id: int | None = None,
    ) -> list[Enrollment]:
        """List enrollments, optionally filtered by client or program."""
        stmt = select(enrollment_dim).order_by(enrollment_dim.c.enrollment_id)
        if client_id is not None:
            stmt = stmt.where(enrollment_dim.c.client_id == client_id)
        if program_id is not None:
            stmt = stmt.where(enrollment_dim.c.program_id == program_id)
        with self.engine.connect() as conn:
            return [_from_row(Enrollment, r._mapping) for r in conn.execute(stmt)]

    def partition_counts(self, scheme: PartitionScheme | None = None) -> dict[str, int]:
        """Rows per partition of a partitioned table (enrollment_dim by default)."""
        scheme = scheme or self.partitions[0]
        table = self.table(scheme.table_name)
        counts: Counter[str] = Counter()
        with self.engine.connect() as conn:
            for (value,) in conn.execute(select(table.c[scheme.column])):
                counts[scheme.partition_for(value)] += 1
        return dict(counts)

    # Expenditure operations

    def add_expenditure(self, expenditure: Expenditure, performed_by: str | None = None) -> Expenditure:
        """Insert an expenditure; negative amounts are rejected."""
        row = self.insert("expenditure_fact", _record_values(expenditure), performed_by)
        return _from_row(Expenditure, row)

    def get_expenditure(self, expenditure_id: int) -> Expenditure | None:
        """Get expenditure by ID."""
        row = self.get("expenditure_fact", expenditure_id)
        return _from_row(Expenditure, row) if row else None

    def list_expenditures(
        self,
        program_id: int | None = None,
        fiscal_year: int | None = None,
    ) -> list[Expenditure]:
        """List expenditures, optionally filtered by program and fiscal year."""
        stmt = select(expenditure_fact).order_by(expenditure_fact.c.expenditure_id)
        if program_id is not None:
            stmt = stmt.where(expenditure_fact.c.program_id == program_id)
        if fiscal_year is not None:
            stmt = stmt.where(expenditure_fact.c.fiscal_year == fiscal_year)
        with self.engine.connect() as conn:
            return [_from_row(Expenditure, r._mapping) for r in conn.execute(stmt)]

    # Grant operations

    def add_grant(self, grant: Grant, performed_by: str | None = None) -> Grant:
        """Insert a grant; start_date must not follow end_date."""
        row = self.insert("grants_fact", _record_values(grant), performed_by)
        return _from_row(Grant, row)

    def get_grant(self, grant_id: int) -> Grant | None:
        """Get grant by ID."""
        row = self.get("grants_fact", grant_id)
        return _from_row(Grant, row) if row else None

    def list_grants(self, agency_id: int | None = None) -> list[Grant]:
        """List grants, optionally for one agency."""
        stmt = select(grants_fact).order_by(grants_fact.c.grant_id)
        if agency_id is not None:
            stmt = stmt.where(grants_fact.c.agency_id == agency_id)
        with self.engine.connect() as conn:
            return [_from_row(Grant, r._mapping) for r in conn.execute(stmt)]

    # Audit and error logs

    def get_audit_log(
        self,
        table_name: str | None = None,
        limit: int = 50,
    ) -> list[AuditEntry]:
        """Most recent audit entries first."""
        stmt = select(audit_log).order_by(audit_log.c.log_id.desc()).limit(limit)
        if table_name:
            stmt = stmt.where(audit_log.c.table_name == table_name)
        with self.engine.connect() as conn:
            return [_from_row(AuditEntry, r._mapping) for r in conn.execute(stmt)]

    def get_error_log(self, limit: int = 50) -> list[ErrorEntry]:
        """Most recent rejected writes first."""
        stmt = select(error_log).order_by(error_log.c.error_id.desc()).limit(limit)
        with self.engine.connect() as conn:
            return [_from_row(ErrorEntry, r._mapping) for r in conn.execute(stmt)]
