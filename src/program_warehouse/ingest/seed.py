"""Illustrative sample data for a fresh warehouse."""

from dataclasses import replace
from datetime import date

from .. import audit
from ..db.repository import Client, Database, Enrollment, Expenditure, Grant, Program
from ..timedim import date_id_for

AGENCIES = [
    {
        "agency_id": 1,
        "agency_name": "Department of Labor",
        "contact_name": "Maria Lopez",
        "contact_email": "mlopez@dol.example.gov",
        "phone": "202-555-0143",
    },
    {
        "agency_id": 2,
        "agency_name": "Community Foundation",
        "contact_name": "James Carter",
        "contact_email": "jcarter@foundation.example.org",
        "phone": "312-555-0187",
    },
]

GRANT_CATEGORIES = [
    {"grant_category_id": 1, "category_name": "Workforce Development", "description": "Job training and placement"},
    {"grant_category_id": 2, "category_name": "Youth Services", "description": "Education and mentoring for youth"},
    {"grant_category_id": 3, "category_name": "Capacity Building", "description": "Organizational infrastructure"},
]

FUNDING_SOURCES = [
    {"funding_source_id": 1, "source_name": "WIOA Title I", "source_type": "Federal", "budget_amount": 500000.0},
    {"funding_source_id": 2, "source_name": "Annual Giving Fund", "source_type": "Private", "budget_amount": 120000.0},
]

VENDORS = [
    {"vendor_id": 1, "vendor_name": "Metro Training Supplies", "vendor_type": "Supplier", "tax_id": "12-3456789"},
    {"vendor_id": 2, "vendor_name": "Bright Path Consulting", "vendor_type": "Contractor", "tax_id": "98-7654321"},
]

PROCUREMENTS = [
    {
        "procurement_id": 1,
        "vendor_id": 2,
        "procurement_method": "Competitive",
        "contract_number": "RFP-2023-014",
        "award_date": date(2023, 1, 15),
        "contract_start": date(2023, 2, 1),
        "contract_end": date(2024, 1, 31),
    },
]

PROGRAMS = [
    Program(1, "Career Pathways", "Training", date(2023, 1, 9), "Metro Workforce Board",
            "Sector-based occupational training"),
    Program(2, "Youth Mentoring", "Support", date(2022, 9, 1), "Community Partners",
            "One-on-one mentoring for at-risk youth"),
    Program(3, "Summer Internships", "Internship", date(2023, 6, 5), "City Employers Network"),
]

CLIENTS = [
    Client(1, 24, "F", "Hispanic", budget_amount=2500.0),
    Client(2, 31, "M", "Black", budget_amount=1800.0),
    Client(3, 19, "O", "Asian", budget_amount=900.0),
]

ENROLLMENTS = [
    Enrollment(1, 1, 1, date(2023, 1, 9), "Complete", completion_date=date(2023, 6, 30)),
    Enrollment(2, 2, 1, date(2023, 2, 6), "Active"),
    Enrollment(3, 3, 2, date(2022, 9, 12), "Withdrawn", completion_date=date(2022, 12, 16)),
    Enrollment(4, 3, 3, date(2023, 6, 5), "Complete", completion_date=date(2023, 8, 25)),
]

# (expenditure, transaction date)
EXPENDITURES = [
    (Expenditure(1, 1, 2023, "Q1", "Training Materials", 1200.00, client_id=1, vendor_id=1,
                 funding_source_id=1, payment_method="ACH", description="Certification workbooks"),
     date(2023, 2, 14)),
    (Expenditure(2, 1, 2023, "Q2", "Contract Services", 4500.00, vendor_id=2, funding_source_id=1,
                 procurement_id=1, payment_method="Check", description="Curriculum consulting"),
     date(2023, 4, 3)),
]

GRANTS = [
    Grant(1, 1, 250000.00, date(2023, 1, 1), date(2024, 12, 31), "Active",
          grant_category_id=1, program_id=1, funding_source_id=1),
    Grant(2, 2, 40000.00, date(2022, 7, 1), date(2023, 6, 30), "Closed",
          grant_category_id=2, program_id=2, funding_source_id=2),
    Grant(3, 2, 15000.00, date(2023, 3, 1), date(2024, 2, 29), "Awarded",
          grant_category_id=3),
]


def seed_sample_data(db: Database, performed_by: str | None = None) -> dict[str, int]:
    """Insert the sample rows, dimensions first.

    Expenditures are linked to time_dim when the calendar covers their date.

    Returns:
        Rows inserted per table.
    """
    counts: dict[str, int] = {}

    def add_rows(table_name: str, rows: list[dict]) -> None:
        for values in rows:
            db.insert(table_name, values, performed_by)
        counts[table_name] = len(rows)

    add_rows("agency_dim", AGENCIES)
    add_rows("grant_category_dim", GRANT_CATEGORIES)
    add_rows("funding_source_dim", FUNDING_SOURCES)
    add_rows("vendor_dim", VENDORS)
    add_rows("procurement_dim", PROCUREMENTS)

    for program in PROGRAMS:
        db.add_program(program, performed_by)
    counts["program_dim"] = len(PROGRAMS)

    for client in CLIENTS:
        db.add_client(client, performed_by)
    counts["client_fact"] = len(CLIENTS)

    for enrollment in ENROLLMENTS:
        db.add_enrollment(enrollment, performed_by)
    counts["enrollment_dim"] = len(ENROLLMENTS)

    for expenditure, spent_on in EXPENDITURES:
        db.add_expenditure(replace(expenditure, date_id=date_id_for(db, spent_on)), performed_by)
    counts["expenditure_fact"] = len(EXPENDITURES)

    for grant in GRANTS:
        db.add_grant(grant, performed_by)
    counts["grants_fact"] = len(GRANTS)

    db.recompute_client_rollups(performed_by)
    audit.log_seed(counts, user=performed_by)
    return counts
