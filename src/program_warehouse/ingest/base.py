"""Base classes for warehouse loaders."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path

from ..db.repository import Database


@dataclass
class LoadResult:
    """Result of a load operation."""

    table_name: str = ""
    total_rows: int = 0
    loaded_rows: int = 0
    failed_rows: int = 0
    errors: list[str] = field(default_factory=list)
    # Input columns that were not loaded (unknown or derived)
    ignored_columns: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.failed_rows == 0 and not self.errors


class BaseLoader(ABC):
    """Abstract base class for warehouse loaders."""

    def __init__(
        self,
        db: Database | None = None,
        dry_run: bool = False,
        performed_by: str | None = None,
    ):
        """Initialize loader.

        Args:
            db: Database connection (None for dry run).
            dry_run: If True, parse and validate without writing.
            performed_by: User recorded in audit and error logs.
        """
        self.db = db
        self.dry_run = dry_run
        self.performed_by = performed_by

    @abstractmethod
    def load(self, file_path: Path, table_name: str) -> LoadResult:
        """Load rows from a file into a warehouse table.

        Args:
            file_path: Path to the data file.
            table_name: Target table.

        Returns:
            LoadResult with statistics and any errors.
        """
