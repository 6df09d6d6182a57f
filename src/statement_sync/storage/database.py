"""Row store operations using psycopg (PostgreSQL)."""

import logging
from contextlib import contextmanager
from typing import Any, Mapping, Optional, Sequence

import psycopg
from psycopg import sql
from psycopg.rows import dict_row

from ..errors import StorageError
from .base import Row, RowStore

logger = logging.getLogger(__name__)


def _column_list(columns: Optional[Sequence[str]]) -> sql.Composable:
    if not columns:
        return sql.SQL("*")
    return sql.SQL(", ").join(sql.Identifier(c) for c in columns)


def _where(filters: Mapping[str, Any]) -> tuple[sql.Composable, list[Any]]:
    """Build a WHERE clause of ANDed equality tests (None -> IS NULL)."""
    clauses = []
    params: list[Any] = []
    for column, value in filters.items():
        if value is None:
            clauses.append(sql.SQL("{} IS NULL").format(sql.Identifier(column)))
        else:
            clauses.append(sql.SQL("{} = %s").format(sql.Identifier(column)))
            params.append(value)

    if not clauses:
        return sql.SQL(""), params
    return sql.SQL(" WHERE ") + sql.SQL(" AND ").join(clauses), params


class PostgresRowStore(RowStore):
    """PostgreSQL row store using psycopg."""

    def __init__(self, database_url: str):
        """Initialize the store (connects lazily).

        Args:
            database_url: PostgreSQL connection string
        """
        self.database_url = database_url
        self._conn: Optional[psycopg.Connection] = None

    def connect(self) -> psycopg.Connection:
        """Establish database connection."""
        if self._conn is None or self._conn.closed:
            try:
                self._conn = psycopg.connect(
                    self.database_url,
                    row_factory=dict_row,
                    autocommit=False,  # Each store call is its own transaction
                )
            except psycopg.Error as e:
                raise StorageError(f"Could not connect to database: {e}") from e
            logger.info("Database connection established")
        return self._conn

    def close(self) -> None:
        """Close database connection."""
        if self._conn and not self._conn.closed:
            self._conn.close()
            logger.info("Database connection closed")

    @contextmanager
    def transaction(self):
        """Context manager for one database transaction.

        Commits on success, rolls back on any exception. Driver errors are
        re-raised as StorageError with the server message intact.

        Yields:
            psycopg.Connection: Database connection object
        """
        conn = self.connect()
        try:
            yield conn
            conn.commit()
            logger.debug("Transaction committed")
        except psycopg.Error as e:
            conn.rollback()
            logger.error(f"Transaction rolled back: {e}")
            raise StorageError(str(e)) from e
        except Exception:
            conn.rollback()
            raise

    # ========================================================================
    # RowStore interface
    # ========================================================================

    def select_where(
        self,
        table: str,
        filters: Mapping[str, Any],
        columns: Optional[Sequence[str]] = None,
    ) -> list[Row]:
        where, params = _where(filters)
        query = sql.SQL("SELECT {} FROM {}").format(_column_list(columns), sql.Identifier(table)) + where

        with self.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                return cur.fetchall()

    def select_in(
        self,
        table: str,
        column: str,
        values: Sequence[Any],
        columns: Optional[Sequence[str]] = None,
    ) -> list[Row]:
        if not values:
            return []

        query = sql.SQL("SELECT {} FROM {} WHERE {} = ANY(%s)").format(
            _column_list(columns),
            sql.Identifier(table),
            sql.Identifier(column),
        )

        with self.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(query, (list(values),))
                return cur.fetchall()

    def insert_rows(self, table: str, rows: Sequence[Mapping[str, Any]]) -> list[Row]:
        """Insert rows with a single multi-row INSERT ... RETURNING *.

        Rows may carry different keys; columns absent from a row are sent as
        DEFAULT so server-side defaults still apply.
        """
        if not rows:
            return []

        columns: list[str] = []
        for row in rows:
            for key in row:
                if key not in columns:
                    columns.append(key)

        params: list[Any] = []
        tuples = []
        for row in rows:
            slots = []
            for column in columns:
                if column in row:
                    slots.append(sql.Placeholder())
                    params.append(row[column])
                else:
                    slots.append(sql.DEFAULT)
            tuples.append(sql.SQL("({})").format(sql.SQL(", ").join(slots)))

        query = sql.SQL("INSERT INTO {} ({}) VALUES {} RETURNING *").format(
            sql.Identifier(table),
            sql.SQL(", ").join(sql.Identifier(c) for c in columns),
            sql.SQL(", ").join(tuples),
        )

        with self.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                inserted = cur.fetchall()

        logger.debug(f"Inserted {len(inserted)} row(s) into {table}")
        return inserted

    def update_where(self, table: str, values: Mapping[str, Any], filters: Mapping[str, Any]) -> int:
        if not values:
            return 0

        assignments = sql.SQL(", ").join(
            sql.SQL("{} = %s").format(sql.Identifier(column)) for column in values
        )
        where, where_params = _where(filters)
        query = sql.SQL("UPDATE {} SET {}").format(sql.Identifier(table), assignments) + where

        with self.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(query, [*values.values(), *where_params])
                return cur.rowcount

    def upsert_row(self, table: str, row: Mapping[str, Any], conflict_column: str) -> None:
        columns = list(row)
        updates = [c for c in columns if c != conflict_column]

        query = sql.SQL("INSERT INTO {} ({}) VALUES ({}) ON CONFLICT ({}) ").format(
            sql.Identifier(table),
            sql.SQL(", ").join(sql.Identifier(c) for c in columns),
            sql.SQL(", ").join(sql.Placeholder() * len(columns)),
            sql.Identifier(conflict_column),
        )
        if updates:
            query += sql.SQL("DO UPDATE SET {}").format(
                sql.SQL(", ").join(
                    sql.SQL("{0} = EXCLUDED.{0}").format(sql.Identifier(c)) for c in updates
                )
            )
        else:
            query += sql.SQL("DO NOTHING")

        with self.transaction() as conn:
            conn.execute(query, list(row.values()))
