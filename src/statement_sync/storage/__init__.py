"""Storage module for statement rows, ledger links and run logs."""

from .base import RowStore
from .database import PostgresRowStore

__all__ = ["RowStore", "PostgresRowStore"]
