"""Tests for the SQL that PostgresRowStore sends, against a recording connection."""

import psycopg
import pytest

from statement_sync.errors import StorageError
from statement_sync.storage import PostgresRowStore
from statement_sync.storage import database


class RecordingCursor:
    def __init__(self, conn):
        self.conn = conn
        self.rowcount = 0

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, query, params=None):
        self.conn.execute(query, params)
        self.rowcount = self.conn.rowcount

    def fetchall(self):
        return self.conn.results


class RecordingConnection:
    """Stands in for a psycopg connection and renders every query to text."""

    def __init__(self, results=None, rowcount=0, error=None):
        self.results = results or []
        self.rowcount = rowcount
        self.error = error
        self.executed: list[tuple[str, list]] = []
        self.commits = 0
        self.rollbacks = 0
        self.closed = False

    def cursor(self):
        return RecordingCursor(self)

    def execute(self, query, params=None):
        self.executed.append((query.as_string(), list(params or [])))
        if self.error:
            raise self.error

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1

    def close(self):
        self.closed = True


@pytest.fixture
def conn(monkeypatch):
    connection = RecordingConnection()
    monkeypatch.setattr(database.psycopg, "connect", lambda *args, **kwargs: connection)
    return connection


@pytest.fixture
def pg_store(conn):
    return PostgresRowStore("postgresql://localhost/ledger")


def test_insert_fills_absent_keys_with_default(pg_store, conn):
    conn.results = [{"id": 1}, {"id": 2}]

    inserted = pg_store.insert_rows("riyadbankstatement", [{"txn_number": "1", "fee": "2"}, {"txn_number": "3"}])

    query, params = conn.executed[0]
    assert query == (
        'INSERT INTO "riyadbankstatement" ("txn_number", "fee") '
        "VALUES (%s, %s), (%s, DEFAULT) RETURNING *"
    )
    assert params == ["1", "2", "3"]
    assert inserted == [{"id": 1}, {"id": 2}]
    assert conn.commits == 1


def test_update_with_none_filter_uses_is_null(pg_store, conn):
    conn.rowcount = 1

    count = pg_store.update_where(
        "bank_ledger",
        {"transaction_receipt": "5001"},
        {"reference_number": "ORD-9", "transaction_receipt": None},
    )

    query, params = conn.executed[0]
    assert query == (
        'UPDATE "bank_ledger" SET "transaction_receipt" = %s '
        'WHERE "reference_number" = %s AND "transaction_receipt" IS NULL'
    )
    assert params == ["5001", "ORD-9"]
    assert count == 1


def test_upsert_updates_every_other_column_on_conflict(pg_store, conn):
    pg_store.upsert_row(
        "api_integration_settings",
        {"setting_key": "riyad_bank_last_auto_run", "setting_value": "x|2025-03-04", "updated_at": "now"},
        conflict_column="setting_key",
    )

    query, params = conn.executed[0]
    assert query == (
        'INSERT INTO "api_integration_settings" ("setting_key", "setting_value", "updated_at") '
        'VALUES (%s, %s, %s) ON CONFLICT ("setting_key") '
        'DO UPDATE SET "setting_value" = EXCLUDED."setting_value", "updated_at" = EXCLUDED."updated_at"'
    )
    assert params == ["riyad_bank_last_auto_run", "x|2025-03-04", "now"]


def test_select_in_passes_values_as_one_array(pg_store, conn):
    pg_store.select_in("riyadbankstatement", "txn_number", ("1", "2"), columns=["txn_number"])

    query, params = conn.executed[0]
    assert query == 'SELECT "txn_number" FROM "riyadbankstatement" WHERE "txn_number" = ANY(%s)'
    assert params == [["1", "2"]]


def test_select_in_without_values_skips_the_query(pg_store, conn):
    assert pg_store.select_in("riyadbankstatement", "txn_number", []) == []
    assert conn.executed == []


def test_driver_error_rolls_back_and_raises_storage_error(pg_store, conn):
    conn.error = psycopg.errors.UndefinedColumn('column "branch" does not exist')

    with pytest.raises(StorageError) as exc_info:
        pg_store.insert_rows("riyadbankstatement", [{"branch": "HQ"}])

    assert 'column "branch"' in str(exc_info.value)
    assert conn.rollbacks == 1
    assert conn.commits == 0
