"""Map the bank's merchant report spreadsheet onto statement table columns."""

import io
import logging
import re
from datetime import date, datetime
from typing import Any, Optional

import pandas as pd

from ..errors import DecodeFailure
from ..models import MappingResult

logger = logging.getLogger(__name__)

# Report header -> riyadbankstatement column
COLUMN_MAP = {
    "Txn. Date": "txn_date",
    "Card Number": "card_number",
    "Txn. Amount": "txn_amount",
    "Fee": "fee",
    "VAT": "vat",
    "VAT %": "vat_2",
    "Net Amount": "net_amount",
    "Auth Code": "auth_code",
    "Txn. Type": "txn_type",
    "Card Type": "card_type",
    "Txn. Number": "txn_number",
    "Terminal ID": "terminal_id",
    "Payment Date": "payment_date",
    "Posting Date": "posting_date",
    "Payment Number": "payment_number",
    "Merchant Account": "merchant_account",
    "Txn. Certificate": "txn_certificate",
    "Acquirer Private Data": "acquirer_private_data",
    "Payment Reference": "payment_reference",
}

DEDUP_COLUMN = "txn_number"
HEADER_SCAN_ROWS = 20

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


def normalize_key(value: Any) -> str:
    """Lower-case and drop everything that is not a-z or 0-9."""
    return _NON_ALNUM_RE.sub("", str(value).strip().lower())


HEADER_ANCHOR = normalize_key("Txn. Number")


def cell_text(value: Any) -> Optional[str]:
    """Convert a cell to its stored string form, or None for an empty cell."""
    if value is None:
        return None
    if isinstance(value, (datetime, date)):
        if pd.isna(value):
            return None
        if isinstance(value, datetime):
            if value.hour == value.minute == value.second == value.microsecond == 0:
                return value.date().isoformat()
            return value.isoformat(sep=" ")
        return value.isoformat()
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, float):
        if pd.isna(value):
            return None
        # Card and transaction numbers come back as floats from .xls files
        if value.is_integer():
            return str(int(value))
        return repr(value)

    text = str(value).strip()
    if not text or text.lower() == "nan":
        return None
    return text


def read_rows(data: bytes) -> list[list[Any]]:
    """Read the first sheet as raw rows (no header inference).

    Raises:
        DecodeFailure: If the bytes are not a workbook pandas can open
    """
    try:
        frame = pd.read_excel(io.BytesIO(data), sheet_name=0, header=None, dtype=object)
    except Exception as e:  # pandas surfaces engine-specific errors (zip, xlrd, openpyxl)
        raise DecodeFailure(f"Could not read spreadsheet: {e}") from e

    rows = frame.astype(object).where(frame.notna(), None).values.tolist()
    logger.debug(f"Read {len(rows)} rows x {frame.shape[1]} columns")
    return rows


def find_header_row(rows: list[list[Any]]) -> Optional[int]:
    """Index of the first row (within HEADER_SCAN_ROWS) holding a Txn. Number header."""
    for index, row in enumerate(rows[:HEADER_SCAN_ROWS]):
        for cell in row:
            text = cell_text(cell)
            if text and normalize_key(text) == HEADER_ANCHOR:
                return index
    return None


def match_columns(headers: list[Any]) -> tuple[dict[int, str], list[str], list[str]]:
    """Match source header cells to statement columns.

    Canonical headers that collide after normalization ("VAT" and "VAT %")
    are assigned in order of appearance.

    Args:
        headers: Raw cells of the header row

    Returns:
        tuple: (source column index -> stored column, missing report headers,
        extra source headers)
    """
    candidates: dict[str, list[str]] = {}
    for header, column in COLUMN_MAP.items():
        candidates.setdefault(normalize_key(header), []).append(column)

    assigned: dict[int, str] = {}
    used: set[str] = set()
    extra: list[str] = []

    for index, cell in enumerate(headers):
        name = cell_text(cell)
        if name is None:
            continue
        options = candidates.get(normalize_key(name))
        if options is None:
            extra.append(name)
            continue
        column = next((c for c in options if c not in used), None)
        if column is None:
            logger.warning(f"Ignoring repeated column {name!r}")
            continue
        assigned[index] = column
        used.add(column)

    missing = [header for header, column in COLUMN_MAP.items() if column not in used]
    return assigned, missing, extra


def map_rows(rows: list[list[Any]]) -> MappingResult:
    """Locate the header row and normalize every data row below it."""
    if not rows:
        return MappingResult(missing_columns=list(COLUMN_MAP))

    header_index = find_header_row(rows)
    header_found = header_index is not None
    if header_index is None:
        logger.warning(f"No Txn. Number header in the first {HEADER_SCAN_ROWS} rows, using row 0")
        header_index = 0

    columns, missing, extra = match_columns(rows[header_index])
    if missing:
        logger.warning(f"Missing columns: {', '.join(missing)}")
    if extra:
        logger.info(f"Unmapped columns: {', '.join(extra)}")

    mapped: list[dict[str, str]] = []
    dropped = 0
    for row in rows[header_index + 1:]:
        cells = {index: cell_text(value) for index, value in enumerate(row)}
        if not any(cells.values()):
            continue

        record = {
            column: cells[index]
            for index, column in columns.items()
            if cells.get(index) is not None
        }
        if not record.get(DEDUP_COLUMN):
            dropped += 1
            continue
        mapped.append(record)

    if dropped:
        logger.warning(f"Dropped {dropped} row(s) without a transaction number")

    return MappingResult(
        rows=mapped,
        missing_columns=missing,
        extra_columns=extra,
        header_row_index=header_index,
        header_found=header_found,
        dropped_rows=dropped,
    )


def map_statement(data: bytes) -> MappingResult:
    """Read spreadsheet bytes and return normalized statement rows.

    Args:
        data: Decoded .xls/.xlsx attachment

    Returns:
        MappingResult: Rows keyed by stored column plus column diagnostics

    Raises:
        DecodeFailure: If the bytes are not a readable workbook
    """
    result = map_rows(read_rows(data))
    logger.info(
        f"Mapped {len(result.rows)} row(s) from header row {result.header_row_index} "
        f"({result.dropped_rows} dropped)"
    )
    return result
