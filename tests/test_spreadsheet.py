"""Tests for spreadsheet header detection and row mapping."""

from datetime import datetime

import pytest

from statement_sync.errors import DecodeFailure
from statement_sync.processing import COLUMN_MAP, map_statement, normalize_key
from statement_sync.processing.spreadsheet import cell_text, map_rows

from conftest import STATEMENT_HEADERS, build_statement, build_workbook, statement_row


@pytest.mark.parametrize("header", ["Txn. Number", "txn number", "TXN-NUMBER", "txn_number", " Txn.Number "])
def test_header_variants_normalize_to_the_same_key(header):
    assert normalize_key(header) == "txnnumber"


def test_header_row_found_below_banner_rows():
    data = build_statement(["5001", "5002"], banner_rows=3)

    result = map_statement(data)

    assert result.header_found
    assert result.header_row_index == 3
    assert [row["txn_number"] for row in result.rows] == ["5001", "5002"]
    assert result.missing_columns == []
    assert result.extra_columns == []


def test_rows_use_stored_column_names_and_string_values():
    data = build_statement(["5001"])

    row = map_statement(data).rows[0]

    assert set(row) == set(COLUMN_MAP.values())
    assert row["txn_amount"] == "150.5"
    assert row["vat"] == "0.34"
    assert row["vat_2"] == "15"
    assert row["acquirer_private_data"] == "APD-5001"


def test_punctuation_drift_in_headers_still_maps():
    headers = [h.upper().replace(".", "") for h in STATEMENT_HEADERS]
    data = build_workbook([headers, statement_row("7001")])

    result = map_statement(data)

    assert result.header_row_index == 0
    assert result.rows[0]["txn_number"] == "7001"
    assert result.missing_columns == []


def test_rows_without_txn_number_are_dropped_and_counted():
    data = build_statement(["8001", None, "8002", None])

    result = map_statement(data)

    assert [row["txn_number"] for row in result.rows] == ["8001", "8002"]
    assert result.dropped_rows == 2


def test_blank_rows_are_skipped_without_counting():
    rows = [STATEMENT_HEADERS, statement_row("9001"), [None] * len(STATEMENT_HEADERS), statement_row("9002")]

    result = map_rows(rows)

    assert len(result.rows) == 2
    assert result.dropped_rows == 0


def test_missing_and_extra_columns_are_reported():
    headers = [h for h in STATEMENT_HEADERS if h not in ("Fee", "Auth Code")] + ["Branch Name"]
    values = dict(zip(STATEMENT_HEADERS, statement_row("6001")))
    row = [values.get(h, "HQ") for h in headers]

    result = map_rows([headers, row])

    assert result.missing_columns == ["Fee", "Auth Code"]
    assert result.extra_columns == ["Branch Name"]
    assert "fee" not in result.rows[0]
    assert "Branch Name" not in result.rows[0]


def test_no_header_falls_back_to_first_row():
    rows = [["Date", "Amount"], ["2025-03-01", 10]]

    result = map_rows(rows)

    assert not result.header_found
    assert result.header_row_index == 0
    assert result.rows == []
    assert result.dropped_rows == 1


@pytest.mark.parametrize("banner_rows, found", [(19, True), (20, False)])
def test_header_scan_stops_after_twenty_rows(banner_rows, found):
    rows = [[f"Merchant Report line {i + 1}"] for i in range(banner_rows)]
    rows += [STATEMENT_HEADERS, statement_row("4001")]

    result = map_rows(rows)

    assert result.header_found is found
    if found:
        assert result.header_row_index == 19
        assert [row["txn_number"] for row in result.rows] == ["4001"]
    else:
        assert result.header_row_index == 0
        assert result.rows == []


def test_empty_workbook_yields_no_rows():
    result = map_statement(build_workbook([STATEMENT_HEADERS]))

    assert result.rows == []
    assert result.header_found


def test_unreadable_bytes_raise_decode_failure():
    with pytest.raises(DecodeFailure):
        map_statement(b"definitely not a workbook")


def test_cell_text_conversions():
    assert cell_text(None) is None
    assert cell_text(float("nan")) is None
    assert cell_text("  ") is None
    assert cell_text(" abc ") == "abc"
    assert cell_text(4111111111111111.0) == "4111111111111111"
    assert cell_text(12.75) == "12.75"
    assert cell_text(datetime(2025, 3, 1)) == "2025-03-01"
    assert cell_text(datetime(2025, 3, 1, 14, 5, 9)) == "2025-03-01 14:05:09"
