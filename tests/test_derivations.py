"""Tests for derived attribute functions."""

from datetime import date

import pytest

from program_warehouse.db.derivations import (
    active_cutoff,
    date_from_key,
    date_key,
    enrollment_duration,
    fiscal_quarter,
    is_weekend,
    program_is_active,
    quarter_label,
)


class TestEnrollmentDuration:
    def test_completed(self):
        assert enrollment_duration(date(2023, 1, 9), date(2023, 6, 30)) == 172

    def test_same_day(self):
        assert enrollment_duration(date(2023, 1, 9), date(2023, 1, 9)) == 0

    def test_open_enrollment(self):
        assert enrollment_duration(date(2023, 1, 9), None) is None


class TestProgramIsActive:
    """A program is active for 365 days from its start date."""

    def test_recent_start(self):
        assert program_is_active(date(2023, 1, 1), today=date(2023, 6, 1))

    def test_last_active_day(self):
        assert program_is_active(date(2023, 1, 1), today=date(2023, 12, 31))

    def test_expired(self):
        assert not program_is_active(date(2023, 1, 1), today=date(2024, 1, 1))

    def test_custom_window(self):
        assert not program_is_active(date(2023, 1, 1), today=date(2023, 1, 31), window_days=30)

    def test_cutoff_matches_predicate(self):
        today = date(2024, 3, 15)
        cutoff = active_cutoff(today)
        assert program_is_active(cutoff, today)
        assert not program_is_active(date.fromordinal(cutoff.toordinal() - 1), today)


class TestCalendarAttributes:
    @pytest.mark.parametrize(
        "weekday,expected",
        [("Saturday", True), ("Sunday", True), ("Monday", False), ("Friday", False)],
    )
    def test_is_weekend(self, weekday, expected):
        assert is_weekend(weekday) is expected

    @pytest.mark.parametrize("month,quarter", [(1, 1), (3, 1), (4, 2), (9, 3), (12, 4)])
    def test_fiscal_quarter(self, month, quarter):
        assert fiscal_quarter(month) == quarter

    def test_fiscal_quarter_invalid_month(self):
        with pytest.raises(ValueError):
            fiscal_quarter(13)

    def test_quarter_label(self):
        assert quarter_label(5) == "Q2"


class TestDateKey:
    def test_epoch(self):
        assert date_key(date(1970, 1, 1)) == 0

    def test_known_value(self):
        assert date_key(date(2023, 1, 1)) == 1672531200

    def test_inverse(self):
        assert date_from_key(date_key(date(2024, 2, 29))) == date(2024, 2, 29)
