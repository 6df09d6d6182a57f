"""Shared fixtures: scripted sockets, in-memory row store, statement builders."""

import io
import socket
from collections import defaultdict, deque
from email import encoders
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Mapping, Optional, Sequence

import pytest
from openpyxl import Workbook

from statement_sync.config import Config
from statement_sync.errors import StorageError
from statement_sync.storage.base import RowStore

SENDER = "9910013@riyadbank.com"
SUBJECT = "Merchant Report"

STATEMENT_HEADERS = [
    "Txn. Date", "Card Number", "Txn. Amount", "Fee", "VAT", "VAT %", "Net Amount",
    "Auth Code", "Txn. Type", "Card Type", "Txn. Number", "Terminal ID",
    "Payment Date", "Posting Date", "Payment Number", "Merchant Account",
    "Txn. Certificate", "Acquirer Private Data", "Payment Reference",
]


# ============================================================================
# Sockets
# ============================================================================


class FakeSocket:
    """Scripted server: each sendall() releases the next queued reply.

    A None entry in replies means the server stays silent for that write.
    recv() with nothing pending raises socket.timeout, like an idle server.
    """

    def __init__(self, greeting: Optional[str], replies: Sequence[Optional[str]] = ()):
        self.pending: list[bytes] = [greeting.encode("latin-1")] if greeting else []
        self.replies = deque(replies)
        self.sent: list[str] = []
        self.closed = False

    def settimeout(self, timeout: float) -> None:
        pass

    def recv(self, size: int) -> bytes:
        if not self.pending:
            raise socket.timeout("timed out")
        chunk = self.pending[0]
        if len(chunk) > size:
            self.pending[0] = chunk[size:]
            return chunk[:size]
        return self.pending.pop(0)

    def sendall(self, data: bytes) -> None:
        self.sent.append(data.decode("utf-8"))
        if self.replies:
            reply = self.replies.popleft()
            if reply is not None:
                self.pending.append(reply.encode("latin-1"))

    def close(self) -> None:
        self.closed = True


def connector_for(sock: FakeSocket):
    """Socket opener that hands out the given fake."""

    def connect(host: str, port: int, timeout: float) -> FakeSocket:
        return sock

    return connect


def fetch_reply(tag: str, seq: int, message: str, section: str = "BODY[]") -> str:
    """Untagged FETCH literal plus tagged OK, as an IMAP server sends it."""
    return f"* {seq} FETCH ({section} {{{len(message)}}}\r\n{message})\r\n{tag} OK FETCH completed\r\n"


# ============================================================================
# Row store
# ============================================================================


def _matches(row: Mapping[str, Any], filters: Mapping[str, Any]) -> bool:
    for column, value in filters.items():
        if value is None:
            if row.get(column) is not None:
                return False
        elif row.get(column) != value:
            return False
    return True


class InMemoryRowStore(RowStore):
    """RowStore over plain lists, with hooks to simulate database errors."""

    def __init__(self):
        self.tables: dict[str, list[dict]] = defaultdict(list)
        self.known_columns: dict[str, set[str]] = {}
        self.insert_failures: dict[str, int] = {}
        self.writes: list[tuple[str, str]] = []
        self._next_id = 1

    def _project(self, row: Mapping[str, Any], columns: Optional[Sequence[str]]) -> dict:
        if not columns:
            return dict(row)
        return {c: row.get(c) for c in columns}

    def select_where(self, table, filters, columns=None):
        return [self._project(r, columns) for r in self.tables[table] if _matches(r, filters)]

    def select_in(self, table, column, values, columns=None):
        wanted = {str(v) for v in values}
        return [self._project(r, columns) for r in self.tables[table] if str(r.get(column)) in wanted]

    def insert_rows(self, table, rows):
        self.writes.append(("insert", table))
        if self.insert_failures.get(table):
            self.insert_failures[table] -= 1
            raise StorageError("canceling statement due to statement timeout")

        allowed = self.known_columns.get(table)
        if allowed is not None:
            for row in rows:
                for column in row:
                    if column not in allowed:
                        raise StorageError(f'column "{column}" of relation "{table}" does not exist')

        stored = []
        for row in rows:
            record = dict(row)
            if "id" not in record:
                record["id"] = self._next_id
                self._next_id += 1
            self.tables[table].append(record)
            stored.append(dict(record))
        return stored

    def update_where(self, table, values, filters):
        self.writes.append(("update", table))
        count = 0
        for row in self.tables[table]:
            if _matches(row, filters):
                row.update(values)
                count += 1
        return count

    def upsert_row(self, table, row, conflict_column):
        self.writes.append(("upsert", table))
        for existing in self.tables[table]:
            if existing.get(conflict_column) == row[conflict_column]:
                existing.update(row)
                return
        self.tables[table].append(dict(row))

    def written_tables(self) -> set[str]:
        return {table for _, table in self.writes}


@pytest.fixture
def store() -> InMemoryRowStore:
    return InMemoryRowStore()


@pytest.fixture
def config() -> Config:
    return Config(
        database_url="postgresql://localhost/test",
        imap_host="imap.example.com",
        imap_user="reports@example.com",
        imap_password="secret",
    )


# ============================================================================
# Statement builders
# ============================================================================


def build_workbook(rows: Sequence[Sequence[Any]]) -> bytes:
    """Write rows to the first sheet of a new .xlsx and return its bytes."""
    wb = Workbook()
    ws = wb.active
    for row in rows:
        ws.append(list(row))
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def statement_row(txn_number: Optional[str], **overrides: Any) -> list[Any]:
    """One data row in STATEMENT_HEADERS order."""
    values = {
        "Txn. Date": "2025-03-01",
        "Card Number": "411111******1111",
        "Txn. Amount": 150.5,
        "Fee": 2.25,
        "VAT": 0.34,
        "VAT %": 15,
        "Net Amount": 147.91,
        "Auth Code": "A1B2C3",
        "Txn. Type": "PURCHASE",
        "Card Type": "MADA",
        "Txn. Number": txn_number,
        "Terminal ID": "T1001",
        "Payment Date": "2025-03-02",
        "Posting Date": "2025-03-02",
        "Payment Number": "P-77",
        "Merchant Account": "M-123",
        "Txn. Certificate": "CERT",
        "Acquirer Private Data": f"APD-{txn_number}" if txn_number else None,
        "Payment Reference": "REF",
    }
    values.update(overrides)
    return [values[h] for h in STATEMENT_HEADERS]


def build_statement(txn_numbers: Sequence[Optional[str]], banner_rows: int = 3) -> bytes:
    """Merchant report workbook: banner rows, header row, one row per txn number."""
    rows: list[list[Any]] = [[f"Merchant Report line {i + 1}"] for i in range(banner_rows)]
    rows.append(list(STATEMENT_HEADERS))
    rows.extend(statement_row(txn) for txn in txn_numbers)
    return build_workbook(rows)


def build_email(
    attachment: Optional[bytes],
    filename: str = "MerchantReport.xlsx",
    subject: str = SUBJECT,
    sender: str = SENDER,
) -> str:
    """Multipart statement email with CRLF line endings."""
    msg = MIMEMultipart()
    msg["From"] = sender
    msg["To"] = "reports@example.com"
    msg["Subject"] = subject
    msg.attach(MIMEText("Please find attached the merchant report.", "plain"))

    if attachment is not None:
        part = MIMEBase("application", "vnd.openxmlformats-officedocument.spreadsheetml.sheet")
        part.set_payload(attachment)
        encoders.encode_base64(part)
        part.add_header("Content-Disposition", "attachment", filename=filename)
        msg.attach(part)

    return msg.as_string().replace("\r\n", "\n").replace("\n", "\r\n")


def header_block(subject: str = SUBJECT, sender: str = SENDER) -> str:
    return f"From: {sender}\r\nTo: reports@example.com\r\nSubject: {subject}\r\n\r\n"
