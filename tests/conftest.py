"""Pytest configuration and fixtures."""

import os
import tempfile
from pathlib import Path

import pytest

from program_warehouse.db.repository import Database
from program_warehouse.ingest.seed import seed_sample_data
from program_warehouse.timedim import populate_time_dim


@pytest.fixture
def temp_db():
    """Create a temporary database file."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        yield Path(f.name)
    os.unlink(f.name)


@pytest.fixture
def db(temp_db):
    """Create initialized database."""
    database = Database(temp_db)
    database.initialize()
    yield database
    database.close()


@pytest.fixture
def seeded_db(db):
    """Database with a 2022-2023 calendar and the sample data loaded."""
    populate_time_dim(db, 2022, 2023)
    seed_sample_data(db, performed_by="tester")
    return db


@pytest.fixture
def sample_expenditure_csv(tmp_path: Path) -> Path:
    """Create a sample expenditure CSV file for testing."""
    csv_content = """ExpenditureID,ProgramID,FiscalYear,Quarter,ExpenseCategory,Amount,PaymentMethod,Notes
10,1,2023,Q3,Training Materials,350.00,ACH,extra column
11,1,2023,Q3,Travel,120.50,,
12,1,2023,Q3,Travel,-5,Check,
"""
    csv_file = tmp_path / "expenditures.csv"
    csv_file.write_text(csv_content)
    return csv_file
