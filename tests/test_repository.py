"""Tests for database repository operations."""

from datetime import date, timedelta

import pytest
from sqlalchemy import inspect, select

from program_warehouse.db.history import AuditTrail
from program_warehouse.db.repository import (
    Client,
    Database,
    Enrollment,
    Expenditure,
    Grant,
    Program,
)
from program_warehouse.db.tables import time_dim
from program_warehouse.errors import (
    ConstraintViolationError,
    DerivedColumnError,
    NegativeAmountError,
    RecordNotFoundError,
    UnknownTableError,
    WriteRejectedError,
)
from program_warehouse.timedim import populate_time_dim


@pytest.fixture
def base(db):
    """Database with one program, client, agency and vendor."""
    db.add_program(Program(1, "Career Pathways", "Training", date(2023, 1, 9)))
    db.add_client(Client(1, 24, "F", "Hispanic"))
    db.insert("agency_dim", {"agency_id": 1, "agency_name": "Department of Labor"})
    db.insert("vendor_dim", {"vendor_id": 1, "vendor_name": "Metro Training Supplies"})
    return db


def audit_count(db: Database) -> int:
    return len(db.get_audit_log(limit=10_000))


class TestDatabaseInitialization:
    """Tests for database initialization."""

    def test_initialize_creates_tables(self, temp_db):
        """Initialize creates schema tables and the KPI view."""
        db = Database(temp_db)
        db.initialize()

        inspector = inspect(db.engine)
        tables = set(inspector.get_table_names())

        for name in (
            "time_dim",
            "program_dim",
            "client_fact",
            "enrollment_dim",
            "expenditure_fact",
            "grants_fact",
            "agency_dim",
            "grant_category_dim",
            "vendor_dim",
            "funding_source_dim",
            "procurement_dim",
            "audit_log",
            "error_log",
            "expenditure_summary",
            "enrollment_metrics",
        ):
            assert name in tables
        assert "kpi_report" in inspector.get_view_names()
        db.close()

    def test_initialize_idempotent(self, temp_db):
        """Initialize can be called multiple times."""
        db = Database(temp_db)
        db.initialize()
        db.initialize()  # Should not raise
        db.close()

    def test_engine_lazy(self, temp_db):
        """Engine is created lazily."""
        db = Database(temp_db)
        assert db._engine is None

        _ = db.engine
        assert db._engine is not None

    def test_close_disposes_engine(self, temp_db):
        db = Database(temp_db)
        db.initialize()
        db.close()
        assert db._engine is None

    def test_unknown_table(self, db):
        with pytest.raises(UnknownTableError):
            db.insert("billing_periods", {"id": 1})
        with pytest.raises(UnknownTableError):
            db.rows("audit_log")


class TestProgramOperations:
    def test_add_and_get(self, db):
        program = db.add_program(
            Program(1, "Career Pathways", "Training", date(2023, 1, 9), provider="Metro Board")
        )

        assert program.last_updated is not None
        fetched = db.get_program(1)
        assert fetched.program_name == "Career Pathways"
        assert fetched.provider == "Metro Board"

    def test_get_missing(self, db):
        assert db.get_program(99) is None

    def test_duplicate_name_rejected(self, base):
        with pytest.raises(ConstraintViolationError):
            base.add_program(Program(2, "Career Pathways", "Support", date(2023, 1, 1)))

    def test_invalid_type_rejected(self, db):
        with pytest.raises(ConstraintViolationError):
            db.add_program(Program(1, "Coding Camp", "Bootcamp", date(2023, 1, 1)))

    def test_is_active_evaluated_on_read(self, db):
        program = db.add_program(Program(1, "Career Pathways", "Training", date(2023, 1, 9)))

        assert program.is_active_on(date(2023, 12, 1))
        assert not program.is_active_on(date(2024, 1, 9))

    def test_list_active_programs(self, seeded_db):
        active = seeded_db.list_programs(active_only=True, today=date(2024, 1, 1))

        assert [p.program_id for p in active] == [1, 3]
        assert len(seeded_db.list_programs()) == 3

    def test_is_active_not_writable(self, base):
        with pytest.raises(DerivedColumnError):
            base.update("program_dim", 1, {"is_active": False})

    def test_is_active_uses_configured_window(self, temp_db):
        db = Database(temp_db, active_window_days=30)
        db.initialize()
        try:
            started = date.today() - timedelta(days=100)
            added = db.add_program(Program(1, "Career Pathways", "Training", started))

            assert added.is_active is False
            assert db.get_program(1).is_active is False
            assert db.list_programs(active_only=True) == []
            assert db.get_program(1).is_active_on(window_days=365)
        finally:
            db.close()


class TestClientOperations:
    def test_add_and_get(self, db):
        db.add_client(Client(7, 30, "M", "White", budget_amount=1000.0))

        client = db.get_client(7)
        assert client.enrollment_count == 0
        assert client.data_quality_score == 100.0
        assert client.budget_amount == 1000.0

    @pytest.mark.parametrize(
        "client",
        [
            Client(1, 0, "F", "Asian"),
            Client(1, 120, "F", "Asian"),
            Client(1, 30, "X", "Asian"),
            Client(1, 30, "F", "Martian"),
            Client(1, 30, "F", "Asian", data_quality_score=101.0),
        ],
    )
    def test_constraints(self, db, client):
        with pytest.raises(ConstraintViolationError):
            db.add_client(client)

    def test_negative_budget_rejected(self, db):
        with pytest.raises(NegativeAmountError):
            db.add_client(Client(1, 30, "F", "Asian", budget_amount=-1.0))

    def test_recompute_rollups(self, seeded_db):
        client1 = seeded_db.get_client(1)
        assert client1.enrollment_count == 1
        assert client1.total_exits == 1
        assert client1.average_enrollment_duration == 172.0

        client2 = seeded_db.get_client(2)
        assert client2.active_enrollments == 1
        assert client2.average_enrollment_duration is None

        client3 = seeded_db.get_client(3)
        assert client3.enrollment_count == 2
        assert client3.total_exits == 2
        assert client3.average_enrollment_duration == 88.0

    def test_recompute_rollups_no_changes(self, seeded_db):
        assert seeded_db.recompute_client_rollups() == 0


class TestEnrollmentOperations:
    def test_duration_derived_on_insert(self, base):
        enrollment = base.add_enrollment(
            Enrollment(1, 1, 1, date(2023, 1, 9), "Complete", completion_date=date(2023, 6, 30))
        )
        assert enrollment.duration_days == 172

    def test_open_enrollment_has_no_duration(self, base):
        enrollment = base.add_enrollment(Enrollment(1, 1, 1, date(2023, 1, 9), "Active"))
        assert enrollment.duration_days is None

    def test_duration_recomputed_on_update(self, base):
        base.add_enrollment(Enrollment(1, 1, 1, date(2023, 1, 9), "Active"))

        row = base.update(
            "enrollment_dim",
            1,
            {"status": "Complete", "completion_date": date(2023, 1, 19)},
        )

        assert row["duration_days"] == 10

    def test_duration_not_writable(self, base):
        with pytest.raises(DerivedColumnError):
            base.insert(
                "enrollment_dim",
                {
                    "enrollment_id": 1,
                    "client_id": 1,
                    "program_id": 1,
                    "start_date": date(2023, 1, 9),
                    "status": "Active",
                    "duration_days": 30,
                },
            )
        assert base.count("enrollment_dim") == 0

    def test_completion_before_start_rejected(self, base):
        with pytest.raises(ConstraintViolationError):
            base.add_enrollment(
                Enrollment(1, 1, 1, date(2023, 6, 1), "Complete", completion_date=date(2023, 5, 1))
            )

    def test_unknown_client_rejected(self, base):
        with pytest.raises(ConstraintViolationError):
            base.add_enrollment(Enrollment(1, 99, 1, date(2023, 1, 9), "Active"))

    def test_duplicate_enrollment_id_rejected(self, base):
        base.add_enrollment(Enrollment(7, 1, 1, date(2023, 1, 9), "Active"))

        with pytest.raises(ConstraintViolationError):
            base.add_enrollment(Enrollment(7, 1, 1, date(2022, 3, 1), "Active"))

        assert base.count("enrollment_dim") == 1
        assert base.get_error_log()[0].error_type == "constraint_violation"
        assert base.delete("enrollment_dim", 7).deleted == 1

    def test_update_to_taken_enrollment_id_rejected(self, base):
        base.add_enrollment(Enrollment(1, 1, 1, date(2023, 1, 9), "Active"))
        base.add_enrollment(Enrollment(2, 1, 1, date(2022, 3, 1), "Active"))

        with pytest.raises(ConstraintViolationError):
            base.update("enrollment_dim", 2, {"enrollment_id": 1})
        assert base.get_enrollment(2) is not None

    def test_list_enrollments(self, seeded_db):
        assert [e.enrollment_id for e in seeded_db.list_enrollments(client_id=3)] == [3, 4]
        assert [e.enrollment_id for e in seeded_db.list_enrollments(program_id=1)] == [1, 2]

    def test_partition_counts(self, seeded_db):
        assert seeded_db.partition_counts() == {
            "enrollment_dim_2023": 3,
            "enrollment_dim_2022": 1,
        }


class TestExpenditureOperations:
    def test_add_and_get(self, base):
        base.add_expenditure(Expenditure(1, 1, 2023, "Q1", "Training Materials", 1200.0, client_id=1))

        expenditure = base.get_expenditure(1)
        assert expenditure.amount == 1200.0
        assert expenditure.client_id == 1

    def test_invalid_quarter_rejected(self, base):
        with pytest.raises(ConstraintViolationError):
            base.add_expenditure(Expenditure(1, 1, 2023, "Q5", "Travel", 10.0))

        errors = base.get_error_log()
        assert errors[0].error_type == "constraint_violation"
        assert errors[0].table_name == "expenditure_fact"

    def test_negative_amount_rejected_and_logged(self, base):
        with pytest.raises(NegativeAmountError) as exc_info:
            base.add_expenditure(Expenditure(1, 1, 2023, "Q1", "Travel", -5.0), performed_by="alice")

        assert "amount" in str(exc_info.value)
        assert base.get_expenditure(1) is None

        errors = base.get_error_log()
        assert len(errors) == 1
        assert errors[0].error_type == "negative_amount"
        assert errors[0].operation == "INSERT"
        assert errors[0].user_name == "alice"
        assert errors[0].payload["amount"] == -5.0

    def test_negative_amount_on_update_rejected(self, base):
        base.add_expenditure(Expenditure(1, 1, 2023, "Q1", "Travel", 10.0))

        with pytest.raises(NegativeAmountError):
            base.update("expenditure_fact", 1, {"amount": -1.0})
        assert base.get_expenditure(1).amount == 10.0

    def test_non_numeric_amount_rejected_and_logged(self, base):
        with pytest.raises(WriteRejectedError) as exc_info:
            base.insert(
                "expenditure_fact",
                {
                    "expenditure_id": 1,
                    "program_id": 1,
                    "fiscal_year": 2023,
                    "quarter": "Q1",
                    "expense_category": "Travel",
                    "amount": "abc",
                },
            )

        assert not isinstance(exc_info.value, NegativeAmountError)
        assert base.get_expenditure(1) is None
        errors = base.get_error_log()
        assert len(errors) == 1
        assert errors[0].error_type == "rejected"
        assert errors[0].payload["amount"] == "abc"

    def test_zero_amount_allowed(self, base):
        base.add_expenditure(Expenditure(1, 1, 2023, "Q1", "Travel", 0.0))
        assert base.get_expenditure(1).amount == 0.0

    def test_unknown_program_rejected(self, base):
        with pytest.raises(ConstraintViolationError):
            base.add_expenditure(Expenditure(1, 99, 2023, "Q1", "Travel", 10.0))

    def test_date_must_exist_in_calendar(self, base):
        with pytest.raises(ConstraintViolationError):
            base.add_expenditure(Expenditure(1, 1, 2023, "Q1", "Travel", 10.0, date_id=12345))

    def test_seeded_date_ids(self, seeded_db):
        from program_warehouse.db.derivations import date_key

        assert seeded_db.get_expenditure(1).date_id == date_key(date(2023, 2, 14))

    def test_list_by_year(self, seeded_db):
        assert len(seeded_db.list_expenditures(program_id=1, fiscal_year=2023)) == 2
        assert seeded_db.list_expenditures(fiscal_year=2022) == []

    def test_unknown_column_rejected(self, base):
        base.add_expenditure(Expenditure(1, 1, 2023, "Q1", "Travel", 10.0))

        with pytest.raises(WriteRejectedError):
            base.update("expenditure_fact", 1, {"cost": 5.0})


class TestGrantOperations:
    def test_add_and_list(self, base):
        base.add_grant(Grant(1, 1, 50000.0, date(2023, 1, 1), date(2023, 12, 31), "Active"))

        grants = base.list_grants(agency_id=1)
        assert len(grants) == 1
        assert grants[0].status == "Active"

    def test_default_status_pending(self, base):
        grant = base.add_grant(Grant(1, 1, 100.0, date(2023, 1, 1), date(2023, 1, 1)))
        assert grant.status == "Pending"

    def test_start_after_end_rejected(self, base):
        with pytest.raises(ConstraintViolationError):
            base.add_grant(Grant(1, 1, 100.0, date(2023, 6, 1), date(2023, 1, 1)))
        assert base.get_grant(1) is None

    def test_negative_amount_rejected(self, base):
        with pytest.raises(NegativeAmountError):
            base.add_grant(Grant(1, 1, -100.0, date(2023, 1, 1), date(2023, 12, 31)))

    def test_invalid_status_rejected(self, base):
        with pytest.raises(ConstraintViolationError):
            base.add_grant(Grant(1, 1, 100.0, date(2023, 1, 1), date(2023, 12, 31), "Cancelled"))


class TestTimeDimension:
    def test_is_weekend_generated(self, db):
        populate_time_dim(db, 2023, 2023)

        with db.engine.connect() as conn:
            saturday = conn.execute(
                select(time_dim.c.weekday, time_dim.c.is_weekend).where(
                    time_dim.c.full_date == date(2023, 1, 7)
                )
            ).one()
            monday = conn.execute(
                select(time_dim.c.is_weekend).where(time_dim.c.full_date == date(2023, 1, 9))
            ).scalar_one()

        assert saturday.weekday == "Saturday"
        assert bool(saturday.is_weekend) is True
        assert bool(monday) is False

    def test_is_weekend_not_writable(self, db):
        with pytest.raises(DerivedColumnError):
            db.insert(
                "time_dim",
                {
                    "date_id": 0,
                    "full_date": date(1970, 1, 1),
                    "year": 1970,
                    "month": 1,
                    "day": 1,
                    "weekday": "Thursday",
                    "fiscal_quarter": 1,
                    "is_weekend": True,
                },
            )


class TestAuditTrail:
    """Every write to an audited table leaves exactly one audit entry."""

    def test_insert_audited(self, base):
        before = audit_count(base)
        base.add_expenditure(
            Expenditure(1, 1, 2023, "Q1", "Travel", 100.0), performed_by="alice"
        )

        entries = base.get_audit_log("expenditure_fact")
        assert audit_count(base) == before + 1
        assert entries[0].operation_type == "INSERT"
        assert entries[0].old_value is None
        assert entries[0].new_value["amount"] == 100.0
        assert entries[0].user_name == "alice"
        assert entries[0].operation_time is not None

    def test_update_audited(self, base):
        base.add_expenditure(Expenditure(1, 1, 2023, "Q1", "Travel", 100.0))
        before = audit_count(base)

        base.update("expenditure_fact", 1, {"amount": 150.0})

        entry = base.get_audit_log("expenditure_fact")[0]
        assert audit_count(base) == before + 1
        assert entry.operation_type == "UPDATE"
        assert entry.old_value["amount"] == 100.0
        assert entry.new_value["amount"] == 150.0

    def test_delete_audited(self, base):
        base.add_expenditure(Expenditure(1, 1, 2023, "Q1", "Travel", 100.0))
        before = audit_count(base)

        base.delete("expenditure_fact", 1)

        entry = base.get_audit_log("expenditure_fact")[0]
        assert audit_count(base) == before + 1
        assert entry.operation_type == "DELETE"
        assert entry.old_value["expenditure_id"] == 1
        assert entry.new_value is None

    def test_default_user(self, base):
        base.add_expenditure(Expenditure(1, 1, 2023, "Q1", "Travel", 1.0))
        assert base.get_audit_log("expenditure_fact")[0].user_name == "system"

    def test_unaudited_table(self, db):
        db.insert("agency_dim", {"agency_id": 5, "agency_name": "City Council"})
        assert audit_count(db) == 0

    def test_rejected_write_not_audited(self, base):
        before = audit_count(base)
        with pytest.raises(NegativeAmountError):
            base.add_expenditure(Expenditure(1, 1, 2023, "Q1", "Travel", -1.0))
        assert audit_count(base) == before

    def test_disabled_trail(self, temp_db):
        db = Database(temp_db, trail=AuditTrail([], enabled=False))
        db.initialize()
        db.add_program(Program(1, "Career Pathways", "Training", date(2023, 1, 9)))
        assert audit_count(db) == 0
        db.close()


class TestDeletePolicies:
    """Dependents follow CASCADE / SET NULL and are audited."""

    def test_delete_client_cascades_enrollments(self, seeded_db):
        result = seeded_db.delete("client_fact", 3)

        assert result.deleted == 1
        assert result.cascaded == 2
        assert seeded_db.list_enrollments(client_id=3) == []

        ops = [(e.table_name, e.operation_type) for e in seeded_db.get_audit_log(limit=3)]
        assert ("client_fact", "DELETE") in ops
        assert ops.count(("enrollment_dim", "DELETE")) == 2

    def test_delete_client_detaches_expenditures(self, seeded_db):
        result = seeded_db.delete("client_fact", 1)

        assert result.nullified == 1
        assert seeded_db.get_expenditure(1).client_id is None

        update = seeded_db.get_audit_log("expenditure_fact", limit=1)[0]
        assert update.operation_type == "UPDATE"
        assert update.old_value["client_id"] == 1
        assert update.new_value["client_id"] is None

    def test_delete_program(self, seeded_db):
        seeded_db.delete("program_dim", 1)

        assert seeded_db.list_expenditures(program_id=1) == []
        assert seeded_db.list_enrollments(program_id=1) == []
        assert seeded_db.get_grant(1).program_id is None

    def test_delete_agency_cascades_grants(self, seeded_db):
        result = seeded_db.delete("agency_dim", 2)

        assert result.cascaded == 2
        assert [g.grant_id for g in seeded_db.list_grants()] == [1]

    def test_delete_vendor_detaches_procurement(self, seeded_db):
        seeded_db.delete("vendor_dim", 2)

        assert seeded_db.get("procurement_dim", 1)["vendor_id"] is None
        assert seeded_db.get_expenditure(2).vendor_id is None

    def test_delete_missing(self, db):
        with pytest.raises(RecordNotFoundError):
            db.delete("program_dim", 42)

    def test_update_missing(self, db):
        with pytest.raises(RecordNotFoundError):
            db.update("program_dim", 42, {"provider": "x"})


class TestBulkInsert:
    def test_rejected_rows_do_not_stop_load(self, base):
        rows = [
            {"expenditure_id": 1, "program_id": 1, "fiscal_year": 2023, "quarter": "Q1",
             "expense_category": "Travel", "amount": 10.0},
            {"expenditure_id": 2, "program_id": 1, "fiscal_year": 2023, "quarter": "Q1",
             "expense_category": "Travel", "amount": -5.0},
            {"expenditure_id": 3, "program_id": 1, "fiscal_year": 2023, "quarter": "Q9",
             "expense_category": "Travel", "amount": 10.0},
            {"expenditure_id": 4, "program_id": 1, "fiscal_year": 2023, "quarter": "Q4",
             "expense_category": "Travel", "amount": 100.0},
        ]

        inserted, failures = base.bulk_insert("expenditure_fact", rows)

        assert inserted == 2
        assert [(i, type(e)) for i, e in failures] == [
            (1, NegativeAmountError),
            (2, ConstraintViolationError),
        ]
        assert len(base.get_error_log()) == 2
