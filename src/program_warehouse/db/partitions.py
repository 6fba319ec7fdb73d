"""Static yearly range partitions.

PostgreSQL gets real declarative partitions (one per configured year plus a
catch-all default). Other engines keep a single physical table and only use
:meth:`PartitionScheme.partition_for` to report where rows would land.
"""

from dataclasses import dataclass, field
from datetime import date

from sqlalchemy import text
from sqlalchemy.engine import Connection


@dataclass(frozen=True)
class RangePartition:
    """One partition covering ``lower <= key < upper``."""

    name: str
    lower: date
    upper: date

    def contains(self, value: date) -> bool:
        return self.lower <= value < self.upper


@dataclass(frozen=True)
class PartitionScheme:
    """Range partitioning of one table by a date column."""

    table_name: str
    column: str
    partitions: tuple[RangePartition, ...] = field(default_factory=tuple)

    @property
    def default_name(self) -> str:
        return f"{self.table_name}_default"

    def partition_for(self, value: date) -> str:
        """Name of the partition a key value is routed to."""
        for partition in self.partitions:
            if partition.contains(value):
                return partition.name
        return self.default_name

    def ddl(self) -> list[str]:
        """PostgreSQL statements creating every partition."""
        statements = [
            f"CREATE TABLE IF NOT EXISTS {p.name} PARTITION OF {self.table_name} "
            f"FOR VALUES FROM ('{p.lower.isoformat()}') TO ('{p.upper.isoformat()}')"
            for p in self.partitions
        ]
        statements.append(
            f"CREATE TABLE IF NOT EXISTS {self.default_name} "
            f"PARTITION OF {self.table_name} DEFAULT"
        )
        return statements

    def create(self, conn: Connection) -> None:
        """Create partitions on a PostgreSQL connection."""
        for statement in self.ddl():
            conn.execute(text(statement))


def yearly_scheme(table_name: str, column: str, years: list[int]) -> PartitionScheme:
    """Build a scheme with one partition per calendar year."""
    for year in years:
        if year < 1901:
            raise ValueError(f"Invalid partition year: {year}")
    partitions = tuple(
        RangePartition(
            name=f"{table_name}_{year}",
            lower=date(year, 1, 1),
            upper=date(year + 1, 1, 1),
        )
        for year in sorted(set(years))
    )
    return PartitionScheme(table_name=table_name, column=column, partitions=partitions)


def enrollment_scheme(years: list[int]) -> PartitionScheme:
    """Partitioning of enrollment_dim by start_date."""
    return yearly_scheme("enrollment_dim", "start_date", years)
