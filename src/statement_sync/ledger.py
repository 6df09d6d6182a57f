"""Deduplicate, insert and cross-link bank statement rows."""

import logging
import re
from dataclasses import dataclass
from typing import Iterator, Optional, Sequence, TypeVar

from .errors import StorageError
from .models import IngestionResult
from .storage.base import RowStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

_COLUMN_ERROR_RE = re.compile(r'column "([^"]+)"', re.IGNORECASE)


@dataclass
class LedgerSchema:
    """Table and column names touched by ingestion and reconciliation."""

    statement_table: str = "riyadbankstatement"
    dedup_column: str = "txn_number"
    correlation_column: str = "acquirer_private_data"

    payment_table: str = "order_payment"
    payment_reference_column: str = "paymentrefrence"
    payment_order_column: str = "ordernumber"

    bank_ledger_table: str = "bank_ledger"
    bank_reference_column: str = "reference_number"
    bank_link_column: str = "transaction_receipt"


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Yield consecutive slices of at most size items."""
    for start in range(0, len(items), size):
        yield items[start:start + size]


def offending_column(error: Exception) -> Optional[str]:
    """Column named by a 'column "x" ... does not exist' style error, if any."""
    match = _COLUMN_ERROR_RE.search(str(error))
    return match.group(1) if match else None


class LedgerIngestor:
    """Stores new statement rows and links them into the bank ledger."""

    def __init__(
        self,
        store: RowStore,
        schema: Optional[LedgerSchema] = None,
        select_chunk_size: int = 500,
        insert_batch_size: int = 200,
    ):
        """Initialize the ingestor.

        Args:
            store: Row store to read and write through
            schema: Table/column names, defaults to LedgerSchema()
            select_chunk_size: Max values per IN lookup
            insert_batch_size: Max rows per INSERT
        """
        self.store = store
        self.schema = schema or LedgerSchema()
        self.select_chunk_size = select_chunk_size
        self.insert_batch_size = insert_batch_size

    def ingest(self, rows: list[dict[str, str]]) -> IngestionResult:
        """Dedup, insert and reconcile one file's rows.

        Args:
            rows: Normalized statement rows, each with a dedup key

        Returns:
            IngestionResult: Inserted/skipped/failed/linked counts

        Raises:
            StorageError: If the duplicate lookup fails (nothing is inserted)
        """
        new_rows, skipped = self.partition(rows)
        logger.info(f"{len(new_rows)} new row(s), {skipped} duplicate(s)")

        inserted_rows, failed = self.insert(new_rows)
        linked = self.reconcile(inserted_rows)

        return IngestionResult(
            inserted=len(inserted_rows),
            skipped=skipped,
            failed=failed,
            linked=linked,
            inserted_rows=inserted_rows,
        )

    # ========================================================================
    # Deduplication
    # ========================================================================

    def existing_keys(self, keys: Sequence[str]) -> set[str]:
        """Return the subset of keys already present in the statement table."""
        key_column = self.schema.dedup_column
        found: set[str] = set()
        for chunk in chunked(keys, self.select_chunk_size):
            rows = self.store.select_in(self.schema.statement_table, key_column, list(chunk), columns=[key_column])
            found.update(str(row[key_column]) for row in rows if row.get(key_column) is not None)
        return found

    def partition(self, rows: list[dict[str, str]]) -> tuple[list[dict[str, str]], int]:
        """Split rows into (new rows, skipped count).

        A key already stored, or seen earlier in the same file, is skipped.
        """
        key_column = self.schema.dedup_column
        keys = list(dict.fromkeys(row[key_column] for row in rows if row.get(key_column)))
        existing = self.existing_keys(keys)

        new_rows = []
        seen: set[str] = set()
        skipped = 0
        for row in rows:
            key = row.get(key_column)
            if not key:
                continue
            if key in existing or key in seen:
                skipped += 1
                continue
            seen.add(key)
            new_rows.append(row)

        return new_rows, skipped

    # ========================================================================
    # Insertion
    # ========================================================================

    def insert(self, rows: list[dict[str, str]]) -> tuple[list[dict[str, str]], int]:
        """Insert rows in batches; returns (rows actually stored, failed count)."""
        table = self.schema.statement_table
        inserted: list[dict[str, str]] = []
        failed = 0

        for number, batch in enumerate(chunked(rows, self.insert_batch_size), start=1):
            batch = list(batch)
            try:
                self.store.insert_rows(table, batch)
            except StorageError as e:
                retried = self._retry_without_column(batch, e, number)
                if retried is None:
                    failed += len(batch)
                    continue
                batch = retried

            inserted.extend(batch)
            logger.info(f"Inserted batch {number} ({len(batch)} rows)")

        if failed:
            logger.error(f"{failed} row(s) could not be inserted")
        return inserted, failed

    def _retry_without_column(
        self,
        batch: list[dict[str, str]],
        error: StorageError,
        number: int,
    ) -> Optional[list[dict[str, str]]]:
        """Retry a failed batch once with the column named in the error removed."""
        column = offending_column(error)
        if column is None:
            logger.error(f"Batch {number} failed: {error}")
            return None

        logger.warning(f"Batch {number} rejected column {column!r}, retrying without it")
        stripped = [{k: v for k, v in row.items() if k != column} for row in batch]
        try:
            self.store.insert_rows(self.schema.statement_table, stripped)
        except StorageError as e:
            logger.error(f"Batch {number} failed again without {column!r}: {e}")
            return None
        return stripped

    # ========================================================================
    # Reconciliation
    # ========================================================================

    def reconcile(self, rows: list[dict[str, str]]) -> int:
        """Link bank ledger entries to the transaction numbers of inserted rows.

        Goes statement row -> order_payment (by acquirer private data) ->
        bank_ledger (by order number), and only fills a link that is still
        NULL, so running it twice links nothing new.

        Returns:
            int: Number of bank ledger rows updated
        """
        s = self.schema
        by_reference: dict[str, str] = {}
        for row in rows:
            reference = row.get(s.correlation_column)
            txn_number = row.get(s.dedup_column)
            if reference and txn_number:
                by_reference.setdefault(reference, txn_number)

        if not by_reference:
            return 0

        linked = 0
        for chunk in chunked(list(by_reference), self.select_chunk_size):
            try:
                payments = self.store.select_in(
                    s.payment_table,
                    s.payment_reference_column,
                    list(chunk),
                    columns=[s.payment_reference_column, s.payment_order_column],
                )
            except StorageError as e:
                logger.error(f"Payment lookup failed for {len(chunk)} reference(s): {e}")
                continue

            for payment in payments:
                txn_number = by_reference.get(str(payment.get(s.payment_reference_column)))
                order_number = payment.get(s.payment_order_column)
                if not txn_number or not order_number:
                    continue
                try:
                    linked += self.store.update_where(
                        s.bank_ledger_table,
                        {s.bank_link_column: txn_number},
                        {s.bank_reference_column: order_number, s.bank_link_column: None},
                    )
                except StorageError as e:
                    logger.error(f"Could not link order {order_number} to {txn_number}: {e}")

        logger.info(f"Linked {linked} bank ledger row(s)")
        return linked
