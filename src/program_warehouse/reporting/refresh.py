"""Materialized summary refresh.

Each summary table is rebuilt from its defining query inside a single
transaction. Readers keep seeing the previous contents until the refresh
commits, so a refresh never blocks reporting queries.
"""

import time
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import delete, func, select
from sqlalchemy.dialects import postgresql

from .. import audit
from ..db.repository import Database, _format_datetime
from ..db.sql_compat import upsert
from ..db.tables import materialized_view_refreshes
from ..db.views import MATERIALIZED_VIEWS

DEFAULT_CRON = "0 0 * * *"


@dataclass
class ViewStatus:
    """Refresh state of one materialized summary."""

    view_name: str
    refreshed_at: str | None
    row_count: int | None
    stale: bool


def is_stale(
    refreshed_at: datetime | None,
    now: datetime | None = None,
    interval: timedelta = timedelta(hours=24),
) -> bool:
    """Whether a summary last refreshed at ``refreshed_at`` is due again."""
    if refreshed_at is None:
        return True
    now = now or datetime.now()
    return now - refreshed_at >= interval


def refresh_view(db: Database, view_name: str) -> int:
    """Rebuild one materialized summary.

    Returns:
        Number of rows in the refreshed summary.

    Raises:
        KeyError: If ``view_name`` is not a materialized summary.
    """
    if view_name not in MATERIALIZED_VIEWS:
        raise KeyError(f"Unknown materialized view: {view_name}")

    backing, build_query = MATERIALIZED_VIEWS[view_name]
    query = build_query()
    columns = [c.name for c in query.selected_columns]

    started = time.perf_counter()
    now = datetime.now()
    with db.engine.begin() as conn:
        conn.execute(delete(backing))
        conn.execute(backing.insert().from_select(columns, query))
        row_count = conn.execute(select(func.count()).select_from(backing)).scalar_one()
        conn.execute(
            upsert(
                conn,
                materialized_view_refreshes,
                {"view_name": view_name, "refreshed_at": now, "row_count": row_count},
                index_elements=["view_name"],
                update_columns=["refreshed_at", "row_count"],
            )
        )

    audit.log_view_refreshed(view_name, row_count, (time.perf_counter() - started) * 1000)
    return row_count


def refresh_all(db: Database) -> dict[str, int]:
    """Rebuild every materialized summary."""
    return {name: refresh_view(db, name) for name in MATERIALIZED_VIEWS}


def refresh_stale(
    db: Database,
    interval: timedelta = timedelta(hours=24),
    now: datetime | None = None,
) -> dict[str, int]:
    """Rebuild only summaries whose last refresh is older than ``interval``."""
    refreshed = {}
    for status in view_status(db, interval, now):
        if status.stale:
            refreshed[status.view_name] = refresh_view(db, status.view_name)
    return refreshed


def view_status(
    db: Database,
    interval: timedelta = timedelta(hours=24),
    now: datetime | None = None,
) -> list[ViewStatus]:
    """Last refresh time, row count and staleness of each summary."""
    with db.engine.connect() as conn:
        rows = {
            r.view_name: r
            for r in conn.execute(select(materialized_view_refreshes))
        }

    statuses = []
    for name in MATERIALIZED_VIEWS:
        row = rows.get(name)
        refreshed_at = row.refreshed_at if row else None
        statuses.append(
            ViewStatus(
                view_name=name,
                refreshed_at=_format_datetime(refreshed_at),
                row_count=row.row_count if row else None,
                stale=is_stale(refreshed_at, now, interval),
            )
        )
    return statuses


def refresh_sql(view_name: str) -> str:
    """PostgreSQL statements that rebuild a summary and stamp its refresh."""
    if view_name not in MATERIALIZED_VIEWS:
        raise KeyError(f"Unknown materialized view: {view_name}")

    backing, build_query = MATERIALIZED_VIEWS[view_name]
    query = build_query()
    rebuild = backing.insert().from_select([c.name for c in query.selected_columns], query)
    body = rebuild.compile(dialect=postgresql.dialect(), compile_kwargs={"literal_binds": True})
    return (
        f"DELETE FROM {backing.name}; {body}; "
        f"INSERT INTO {materialized_view_refreshes.name} (view_name, refreshed_at, row_count) "
        f"SELECT '{view_name}', now(), count(*) FROM {backing.name} "
        "ON CONFLICT (view_name) DO UPDATE "
        "SET refreshed_at = EXCLUDED.refreshed_at, row_count = EXCLUDED.row_count"
    )


def cron_schedule_statement(view_name: str, cron: str = DEFAULT_CRON) -> str:
    """pg_cron call that rebuilds a summary on a fixed schedule (daily by default)."""
    return f"SELECT cron.schedule('refresh_{view_name}', '{cron}', $${refresh_sql(view_name)}$$)"
