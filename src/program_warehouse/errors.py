"""Exceptions raised by the warehouse layer."""

from typing import Any


class WarehouseError(Exception):
    """Base class for all warehouse errors."""


class UnknownTableError(WarehouseError):
    """A table name that is not part of the warehouse schema."""

    def __init__(self, table_name: str):
        super().__init__(f"Unknown warehouse table: {table_name}")
        self.table_name = table_name


class RecordNotFoundError(WarehouseError):
    """No row matched the given primary key."""

    def __init__(self, table_name: str, key: Any):
        super().__init__(f"No {table_name} row with key {key!r}")
        self.table_name = table_name
        self.key = key


class WriteRejectedError(WarehouseError):
    """A write that violates a warehouse invariant.

    Every rejected write is recorded in error_log before this is raised.
    """

    error_type = "rejected"

    def __init__(self, table_name: str, operation: str, detail: str):
        super().__init__(f"{operation} on {table_name} rejected: {detail}")
        self.table_name = table_name
        self.operation = operation
        self.detail = detail


class ConstraintViolationError(WriteRejectedError):
    """The database engine rejected a write (check, foreign key, unique)."""

    error_type = "constraint_violation"


class NegativeAmountError(WriteRejectedError):
    """A monetary column was given a negative value."""

    error_type = "negative_amount"


class DerivedColumnError(WriteRejectedError):
    """A generated/derived column was written directly."""

    error_type = "derived_column"
