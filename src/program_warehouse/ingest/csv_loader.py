"""CSV bulk loader for warehouse tables."""

import re
from datetime import date
from pathlib import Path
from typing import Any

import pandas as pd
from sqlalchemy import Boolean, Date, Float, Integer, Table

from .. import audit
from ..db.derivations import DERIVED_COLUMNS
from ..db.repository import Database
from ..db.tables import WAREHOUSE_TABLES, metadata
from ..errors import UnknownTableError
from .base import BaseLoader, LoadResult

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")
_TRUE_VALUES = {"true", "t", "yes", "y", "1"}
_FALSE_VALUES = {"false", "f", "no", "n", "0"}


def normalize_column_name(name: str) -> str:
    """Map a CSV header to a warehouse column name.

    ``ExpenditureID`` -> ``expenditure_id``, ``Grant_Amount`` -> ``grant_amount``,
    ``Fiscal Year`` -> ``fiscal_year``.
    """
    name = _CAMEL_BOUNDARY.sub("_", name.strip())
    name = re.sub(r"[\s\-]+", "_", name).lower()
    return re.sub(r"_+", "_", name).strip("_")


def coerce_value(column_type: Any, value: Any) -> Any:
    """Convert a raw CSV cell to the Python type a column expects.

    Raises:
        ValueError: If the cell cannot be converted.
    """
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return None
    if isinstance(value, str):
        value = value.strip()
        if value == "":
            return None

    if isinstance(column_type, Boolean):
        lowered = str(value).lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
        raise ValueError(f"not a boolean: {value!r}")
    if isinstance(column_type, Date):
        if isinstance(value, date):
            return value
        return pd.to_datetime(value).date()
    if isinstance(column_type, Integer):
        number = float(value)
        if not number.is_integer():
            raise ValueError(f"not an integer: {value!r}")
        return int(number)
    if isinstance(column_type, Float):
        return float(value)
    return str(value)


class CsvLoader(BaseLoader):
    """Loads CSV files into warehouse tables through the audited repository."""

    def _map_columns(self, table: Table, headers: list[str], result: LoadResult) -> dict[str, str]:
        """Map CSV headers to table columns, recording headers that are skipped."""
        derived = set(DERIVED_COLUMNS.get(table.name, ()))
        derived.update(c.name for c in table.columns if c.computed is not None)
        writable = {c.name for c in table.columns} - derived - {"last_updated"}

        mapping = {}
        for header in headers:
            column = normalize_column_name(header)
            if column in writable:
                mapping[header] = column
            else:
                result.ignored_columns.append(header)
        return mapping

    def load(self, file_path: Path, table_name: str) -> LoadResult:
        """Load a CSV file into ``table_name``.

        Rows that fail conversion or are rejected by the warehouse are
        reported in the result; the remaining rows are still loaded.
        """
        if table_name not in WAREHOUSE_TABLES:
            raise UnknownTableError(table_name)

        table = metadata.tables[table_name]
        result = LoadResult(table_name=table_name)

        try:
            df = pd.read_csv(file_path, dtype=str, keep_default_na=True)
        except Exception as e:
            result.errors.append(f"Failed to read CSV: {e}")
            return result

        mapping = self._map_columns(table, list(df.columns), result)
        if not mapping:
            result.errors.append("No CSV columns match table columns")
            return result

        pending: list[tuple[int, dict]] = []
        for idx, row in df.iterrows():
            line_num = idx + 2  # Account for header and 0-indexing
            result.total_rows += 1

            values = {}
            try:
                for header, column in mapping.items():
                    values[column] = coerce_value(table.c[column].type, row.get(header))
            except (ValueError, TypeError) as e:
                result.failed_rows += 1
                result.errors.append(f"Line {line_num}: {e}")
                continue
            pending.append((line_num, values))

        if self.db is None or self.dry_run:
            result.loaded_rows = len(pending)
            return result

        inserted, failures = self.db.bulk_insert(
            table_name, [values for _, values in pending], performed_by=self.performed_by
        )
        result.loaded_rows = inserted
        result.failed_rows += len(failures)
        for index, e in failures:
            result.errors.append(f"Line {pending[index][0]}: {e}")

        audit.log_load(
            file_path.name,
            table_name,
            result.total_rows,
            result.loaded_rows,
            result.failed_rows,
            user=self.performed_by,
        )
        return result


def load_csv_file(
    file_path: Path,
    table_name: str,
    db: Database | None,
    dry_run: bool = False,
    performed_by: str | None = None,
) -> LoadResult:
    """Convenience function to load a CSV file into a warehouse table."""
    loader = CsvLoader(db, dry_run, performed_by)
    return loader.load(file_path, table_name)
