"""Database layer with SQLAlchemy Core abstraction.

Supports SQLite (default) and PostgreSQL for production.
"""

from .engine import create_db_engine, get_dialect, initialize_schema
from .history import AuditTrail
from .partitions import PartitionScheme, enrollment_scheme
from .repository import (
    AuditEntry,
    Client,
    Database,
    DeleteResult,
    Enrollment,
    ErrorEntry,
    Expenditure,
    Grant,
    Program,
)
from .tables import SCHEMA_VERSION, metadata

__all__ = [
    "AuditEntry",
    "AuditTrail",
    "Client",
    "Database",
    "DeleteResult",
    "Enrollment",
    "ErrorEntry",
    "Expenditure",
    "Grant",
    "PartitionScheme",
    "Program",
    "SCHEMA_VERSION",
    "create_db_engine",
    "enrollment_scheme",
    "get_dialect",
    "initialize_schema",
    "metadata",
]
