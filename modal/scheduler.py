"""Statement sync scheduler - runs the import daily and on demand."""

import logging
import sys
from pathlib import Path
from typing import Optional

import modal

# Create Modal app
app = modal.App("statement-sync")

# Create image with all dependencies
image = (
    modal.Image.debian_slim(python_version="3.12")
    .pip_install(
        "psycopg[binary]==3.2.3",
        "pydantic==2.12.4",
        "pandas==2.2.3",
        "openpyxl==3.1.5",
        "xlrd==2.0.1",
    )
    .add_local_dir(Path(__file__).parent.parent / "src" / "statement_sync", "/root/statement_sync")
)

# Modal secrets (DATABASE_URL, IMAP_*, SMTP_*, NOTIFY_TO)
secrets = [modal.Secret.from_name("statement-sync-secrets")]

logger = logging.getLogger(__name__)


def _run(target_date: Optional[str], manual: bool) -> dict:
    """Run the pipeline once inside the container and return the run log."""
    sys.path.insert(0, "/root")

    from datetime import date

    from statement_sync.pipeline import run_once

    logging.basicConfig(level=logging.INFO)

    parsed = date.fromisoformat(target_date) if target_date else None
    log = run_once(target_date=parsed, manual=manual)

    logger.info(
        f"Run {log.id} {log.status.value}: "
        f"{log.records_inserted} inserted, {log.records_skipped} skipped, "
        f"{log.records_failed} failed, {log.ledger_links} linked"
    )
    return log.model_dump(mode="json")


@app.function(
    image=image,
    secrets=secrets,
    timeout=900,
    schedule=modal.Cron("0 5 * * *"),  # 08:00 in Riyadh (UTC+3)
)
def scheduled_sync() -> dict:
    """Daily import of yesterday's statement."""
    return _run(target_date=None, manual=False)


@app.function(
    image=image,
    secrets=secrets,
    timeout=900,
)
def manual_sync(target_date: Optional[str] = None) -> dict:
    """On-demand import, optionally for a specific statement date (YYYY-MM-DD).

    Manual runs do not move the scheduled-run checkpoint.
    """
    return _run(target_date=target_date, manual=True)


@app.local_entrypoint()
def main(target_date: str = ""):
    """Local entrypoint for testing.

    Args:
        target_date: Statement date YYYY-MM-DD (default: yesterday)
    """
    print(f"Running manual sync for {target_date or 'yesterday'}")
    result = manual_sync.remote(target_date=target_date or None)
    print(f"\nSync Result: {result}")
