"""Time dimension pre-population.

time_dim holds one row per calendar day for a fixed range of years; rows
are never created on demand by fact loads.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, Iterator

from sqlalchemy import select, update

from . import audit
from .db.derivations import date_key, fiscal_quarter
from .db.repository import Database
from .db.tables import WEEKDAYS, time_dim

BATCH_SIZE = 1000


@dataclass
class CalendarResult:
    """Result of a time dimension population run."""

    inserted: int = 0
    skipped: int = 0
    flagged: int = 0


def calendar_rows(
    start: date,
    end: date,
    holidays: Iterable[date] = (),
) -> Iterator[dict]:
    """Yield a time_dim row for every day from ``start`` to ``end`` inclusive."""
    holiday_set = set(holidays)
    day = start
    while day <= end:
        yield {
            "date_id": date_key(day),
            "full_date": day,
            "year": day.year,
            "month": day.month,
            "day": day.day,
            "weekday": WEEKDAYS[day.weekday()],
            "fiscal_quarter": fiscal_quarter(day.month),
            "holiday_flag": day in holiday_set,
        }
        day += timedelta(days=1)


def populate_time_dim(
    db: Database,
    start_year: int = 2000,
    end_year: int = 2030,
    holidays: Iterable[date] = (),
) -> CalendarResult:
    """Insert every missing day of ``start_year``..``end_year`` into time_dim.

    Existing dates are kept, so the operation can be re-run to extend the
    range. Existing days listed in ``holidays`` get their holiday_flag set.
    """
    if start_year > end_year:
        raise ValueError("start_year must not exceed end_year")

    start, end = date(start_year, 1, 1), date(end_year, 12, 31)
    holidays = sorted(set(holidays))
    result = CalendarResult()

    with db.engine.begin() as conn:
        existing = set(
            conn.execute(
                select(time_dim.c.full_date).where(time_dim.c.full_date.between(start, end))
            ).scalars()
        )

        batch: list[dict] = []
        for row in calendar_rows(start, end, holidays):
            if row["full_date"] in existing:
                result.skipped += 1
                continue
            batch.append(row)
            if len(batch) >= BATCH_SIZE:
                conn.execute(time_dim.insert(), batch)
                result.inserted += len(batch)
                batch = []
        if batch:
            conn.execute(time_dim.insert(), batch)
            result.inserted += len(batch)

        in_range = [day for day in holidays if start <= day <= end]
        if in_range:
            result.flagged = conn.execute(
                update(time_dim)
                .where(time_dim.c.full_date.in_(in_range), time_dim.c.holiday_flag.is_not(True))
                .values(holiday_flag=True)
            ).rowcount

    audit.log_calendar_populated(
        start_year, end_year, result.inserted, result.skipped, result.flagged
    )
    return result


def date_id_for(db: Database, day: date) -> int | None:
    """time_dim key for a day, or None when the day is outside the calendar."""
    with db.engine.connect() as conn:
        return conn.execute(
            select(time_dim.c.date_id).where(time_dim.c.full_date == day)
        ).scalar_one_or_none()
