"""Tests for range partition schemes."""

from datetime import date

import pytest

from program_warehouse.db.partitions import RangePartition, enrollment_scheme, yearly_scheme


class TestYearlyScheme:
    """Tests for yearly partition schemes."""

    def test_one_partition_per_year(self):
        scheme = enrollment_scheme([2021, 2022, 2023])

        assert [p.name for p in scheme.partitions] == [
            "enrollment_dim_2021",
            "enrollment_dim_2022",
            "enrollment_dim_2023",
        ]
        assert scheme.column == "start_date"

    def test_years_sorted_and_deduplicated(self):
        scheme = yearly_scheme("t", "d", [2023, 2021, 2023])
        assert [p.lower.year for p in scheme.partitions] == [2021, 2023]

    def test_invalid_year(self):
        with pytest.raises(ValueError):
            yearly_scheme("t", "d", [1900])


class TestRouting:
    """Rows route to the partition whose range contains the key."""

    @pytest.fixture
    def scheme(self):
        return enrollment_scheme([2021, 2022, 2023])

    def test_lower_bound_inclusive(self, scheme):
        assert scheme.partition_for(date(2022, 1, 1)) == "enrollment_dim_2022"

    def test_upper_bound_exclusive(self, scheme):
        assert scheme.partition_for(date(2022, 12, 31)) == "enrollment_dim_2022"
        assert scheme.partition_for(date(2023, 1, 1)) == "enrollment_dim_2023"

    def test_outside_range_goes_to_default(self, scheme):
        assert scheme.partition_for(date(2020, 6, 1)) == "enrollment_dim_default"
        assert scheme.partition_for(date(2024, 1, 1)) == "enrollment_dim_default"

    def test_range_partition_contains(self):
        partition = RangePartition("p", date(2021, 1, 1), date(2022, 1, 1))
        assert partition.contains(date(2021, 12, 31))
        assert not partition.contains(date(2022, 1, 1))


class TestDdl:
    def test_statements(self):
        ddl = enrollment_scheme([2021]).ddl()

        assert ddl == [
            "CREATE TABLE IF NOT EXISTS enrollment_dim_2021 PARTITION OF enrollment_dim "
            "FOR VALUES FROM ('2021-01-01') TO ('2022-01-01')",
            "CREATE TABLE IF NOT EXISTS enrollment_dim_default PARTITION OF enrollment_dim DEFAULT",
        ]
