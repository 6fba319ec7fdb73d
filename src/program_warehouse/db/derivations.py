"""Derived attributes maintained by the warehouse.

Each function is a pure function of its source columns. ``is_weekend`` is
also a stored generated column in time_dim; ``duration_days`` is written by
the repository on every enrollment insert or update; ``is_active`` depends
on the current date and is evaluated on read.
"""

from datetime import date, datetime, timedelta, timezone

WEEKEND_DAYS = ("Saturday", "Sunday")
DEFAULT_ACTIVE_WINDOW_DAYS = 365

# Derived columns per table; direct writes are rejected
DERIVED_COLUMNS = {
    "enrollment_dim": ("duration_days",),
    "time_dim": ("is_weekend",),
    "program_dim": ("is_active",),
}

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def enrollment_duration(start: date, completion: date | None) -> int | None:
    """Days between start and completion; None while the enrollment is open."""
    if completion is None:
        return None
    return (completion - start).days


def program_is_active(
    start_date: date,
    today: date | None = None,
    window_days: int = DEFAULT_ACTIVE_WINDOW_DAYS,
) -> bool:
    """A program is active until ``window_days`` after it starts."""
    today = today or date.today()
    return today < start_date + timedelta(days=window_days)


def active_cutoff(today: date | None = None, window_days: int = DEFAULT_ACTIVE_WINDOW_DAYS) -> date:
    """Earliest start date for which a program is still active on ``today``."""
    today = today or date.today()
    return today - timedelta(days=window_days - 1)


def is_weekend(weekday: str) -> bool:
    return weekday in WEEKEND_DAYS


def fiscal_quarter(month: int) -> int:
    """Calendar quarter (1-4) for a month."""
    if not 1 <= month <= 12:
        raise ValueError(f"Invalid month: {month}")
    return (month - 1) // 3 + 1


def quarter_label(month: int) -> str:
    """Quarter label (Q1-Q4) for a month."""
    return f"Q{fiscal_quarter(month)}"


def date_key(day: date) -> int:
    """Surrogate key for time_dim: seconds since the epoch at UTC midnight."""
    midnight = datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
    return int((midnight - _EPOCH).total_seconds())


def date_from_key(key: int) -> date:
    """Inverse of :func:`date_key`."""
    return (_EPOCH + timedelta(seconds=key)).date()
