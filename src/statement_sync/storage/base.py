"""Abstract row store used by the ingestion engine and the run log."""

from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional, Sequence

Row = dict[str, Any]


class RowStore(ABC):
    """Table-level operations on the accounting database.

    Filter mappings are ANDed equality tests; a None value means IS NULL.
    Every method raises StorageError on failure, with the backend's message
    text preserved so callers can inspect it (e.g. for an unknown column).
    """

    @abstractmethod
    def select_where(
        self,
        table: str,
        filters: Mapping[str, Any],
        columns: Optional[Sequence[str]] = None,
    ) -> list[Row]:
        """Return rows matching all filters (all columns if columns is None)."""
        pass

    @abstractmethod
    def select_in(
        self,
        table: str,
        column: str,
        values: Sequence[Any],
        columns: Optional[Sequence[str]] = None,
    ) -> list[Row]:
        """Return rows whose column value is one of values."""
        pass

    @abstractmethod
    def insert_rows(self, table: str, rows: Sequence[Mapping[str, Any]]) -> list[Row]:
        """Insert rows in one statement and return them as stored (with ids)."""
        pass

    @abstractmethod
    def update_where(self, table: str, values: Mapping[str, Any], filters: Mapping[str, Any]) -> int:
        """Set values on rows matching filters and return the affected count."""
        pass

    @abstractmethod
    def upsert_row(self, table: str, row: Mapping[str, Any], conflict_column: str) -> None:
        """Insert row, or update it when conflict_column already exists."""
        pass

    def close(self) -> None:
        """Release any held connection."""
        pass
