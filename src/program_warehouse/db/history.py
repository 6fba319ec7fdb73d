"""Row-level change history for audited warehouse tables.

Every write the repository performs on an audited table is recorded in
audit_log inside the same transaction, with JSON snapshots of the row
before and after the change. Rows the engine removes or detaches through
ON DELETE CASCADE / SET NULL are snapshotted before the parent delete runs,
so they get their own DELETE or UPDATE entries.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable, Mapping

from sqlalchemy import Table, select
from sqlalchemy.engine import Connection

from .tables import audit_log, metadata

OPERATIONS = ("INSERT", "UPDATE", "DELETE")


@dataclass
class RowChange:
    """A pending audit entry."""

    table_name: str
    operation: str
    old: dict[str, Any] | None
    new: dict[str, Any] | None


def snapshot(row: Mapping[str, Any] | None) -> dict[str, Any] | None:
    """JSON-safe copy of a row."""
    if row is None:
        return None
    result = {}
    for key, value in row.items():
        if isinstance(value, (date, datetime)):
            value = value.isoformat()
        elif isinstance(value, Decimal):
            value = float(value)
        elif isinstance(value, Mapping):
            value = snapshot(value)
        result[key] = value
    return result


def dependent_changes(
    conn: Connection,
    table: Table,
    rows: list[Mapping[str, Any]],
    _seen: set[str] | None = None,
) -> list[RowChange]:
    """Changes the engine will apply to dependents when ``rows`` are deleted.

    Follows every foreign key pointing at ``table``: CASCADE children are
    collected (recursively) as deletes, SET NULL children as updates with the
    referencing column cleared. Other policies are left to the engine.
    """
    seen = set(_seen or ())
    seen.add(table.name)
    changes: list[RowChange] = []

    for child in metadata.sorted_tables:
        for fk in child.foreign_keys:
            if fk.column.table is not table:
                continue
            policy = (fk.ondelete or "").upper()
            if policy not in ("CASCADE", "SET NULL"):
                continue

            keys = {row[fk.column.name] for row in rows if row[fk.column.name] is not None}
            if not keys:
                continue

            dependents = [
                dict(r) for r in conn.execute(select(child).where(fk.parent.in_(keys))).mappings()
            ]
            if not dependents:
                continue

            if policy == "CASCADE":
                changes.extend(RowChange(child.name, "DELETE", d, None) for d in dependents)
                if child.name not in seen:
                    changes.extend(dependent_changes(conn, child, dependents, seen))
            else:
                changes.extend(
                    RowChange(child.name, "UPDATE", d, {**d, fk.parent.name: None})
                    for d in dependents
                )

    return changes


class AuditTrail:
    """Writes audit_log entries for a configured set of tables."""

    def __init__(self, tables: Iterable[str], enabled: bool = True):
        self.tables = frozenset(tables)
        self.enabled = enabled

    def is_audited(self, table_name: str) -> bool:
        return self.enabled and table_name in self.tables

    def record(
        self,
        conn: Connection,
        change: RowChange,
        user: str,
    ) -> bool:
        """Insert one audit entry; returns False when the table is not audited."""
        if change.operation not in OPERATIONS:
            raise ValueError(f"Unknown operation: {change.operation}")
        if not self.is_audited(change.table_name):
            return False

        conn.execute(
            audit_log.insert().values(
                table_name=change.table_name,
                operation_type=change.operation,
                operation_time=datetime.now(),
                old_value=snapshot(change.old),
                new_value=snapshot(change.new),
                user_name=user,
            )
        )
        return True

    def record_all(self, conn: Connection, changes: list[RowChange], user: str) -> int:
        """Record several changes; returns how many were audited."""
        return sum(1 for change in changes if self.record(conn, change, user))
