"""Dialect-specific statement helpers."""

from sqlalchemy import Table
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Connection


def upsert(
    conn: Connection,
    table: Table,
    values: dict,
    index_elements: list[str],
    update_columns: list[str],
):
    """Create dialect-appropriate upsert statement."""
    if conn.dialect.name == "postgresql":
        stmt = pg_insert(table).values(**values)
    else:  # sqlite
        stmt = sqlite_insert(table).values(**values)
    return stmt.on_conflict_do_update(
        index_elements=index_elements,
        set_={col: getattr(stmt.excluded, col) for col in update_columns},
    )
