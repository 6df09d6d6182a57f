"""Command-line interface for the bank statement sync."""

import argparse
import logging
import sys
from datetime import date
from pathlib import Path
from typing import Optional

from statement_sync import (
    DecodeFailure,
    RunLog,
    RunStatus,
    extract_attachment,
    map_statement,
    run_once,
)


def print_run_log(log: RunLog) -> None:
    """Print a finished run log.

    Args:
        log: Final run log returned by the pipeline
    """
    print("\n" + "=" * 80)
    print("SUMMARY")
    print("=" * 80)
    print(f"Status: {log.status.value}")
    print(f"Statement date: {log.target_date}")
    if log.email_subject:
        print(f"Email: {log.email_subject}")
    if log.attachment_filename:
        print(f"File: {log.attachment_filename}")
    print(f"Inserted: {log.records_inserted}")
    print(f"Skipped (duplicates): {log.records_skipped}")
    print(f"Failed: {log.records_failed}")
    print(f"Invalid rows: {log.records_invalid}")
    print(f"Bank ledger links: {log.ledger_links}")
    if log.missing_columns:
        print(f"Missing columns: {', '.join(log.missing_columns)}")
    if log.extra_columns:
        print(f"Extra columns: {', '.join(log.extra_columns)}")
    if log.error_message:
        print(f"Message: {log.error_message}")
    if log.duration_sec is not None:
        print(f"Duration: {log.duration_sec:.2f}s")


def inspect_eml_file(eml_path: Path) -> int:
    """Extract and map the statement in a saved .eml file (no database writes).

    Args:
        eml_path: Path to .eml file

    Returns:
        int: Process exit code
    """
    print(f"\nInspecting: {eml_path.name}")

    # latin-1 keeps every byte, as the IMAP client does
    raw = eml_path.read_bytes().decode("latin-1")

    attachment = extract_attachment(raw)
    if attachment is None:
        print("  No spreadsheet attachment found")
        return 1
    print(f"  Attachment: {attachment.filename} ({attachment.size_bytes} bytes)")

    try:
        mapping = map_statement(attachment.data)
    except DecodeFailure as e:
        print(f"  Could not read spreadsheet: {e}")
        return 1

    header = "found" if mapping.header_found else "not found, using row 0"
    print(f"  Header row: {mapping.header_row_index} ({header})")
    print(f"  Rows: {len(mapping.rows)} valid, {mapping.dropped_rows} without transaction number")
    if mapping.missing_columns:
        print(f"  Missing columns: {', '.join(mapping.missing_columns)}")
    if mapping.extra_columns:
        print(f"  Extra columns: {', '.join(mapping.extra_columns)}")

    for row in mapping.rows[:5]:
        print(f"    {row.get('txn_number')}  {row.get('txn_date', '-')}  {row.get('txn_amount', '-')}")
    if len(mapping.rows) > 5:
        print(f"    ... {len(mapping.rows) - 5} more")
    return 0


def run_sync(target_date: Optional[date]) -> int:
    """Run the pipeline once as a manual run.

    Args:
        target_date: Statement date, or None for yesterday

    Returns:
        int: Process exit code (1 if the run ended in error)
    """
    print("=" * 80)
    print("Bank Statement Sync")
    print("=" * 80)

    log = run_once(target_date=target_date, manual=True)
    print_run_log(log)
    return 1 if log.status is RunStatus.ERROR else 0


def main(argv: Optional[list[str]] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(description="Import the daily bank statement email")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run the sync once (manual run)")
    run_parser.add_argument(
        "--date",
        type=date.fromisoformat,
        default=None,
        help="Statement date YYYY-MM-DD (default: yesterday, UTC+3)",
    )

    inspect_parser = subparsers.add_parser("inspect", help="Extract and map a saved .eml file")
    inspect_parser.add_argument("eml", type=Path, help="Path to .eml file")

    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    if args.command == "inspect":
        return inspect_eml_file(args.eml)
    return run_sync(args.date)


if __name__ == "__main__":
    sys.exit(main())
