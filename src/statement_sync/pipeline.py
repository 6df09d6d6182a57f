"""Daily bank statement sync - mailbox in, ledger rows out."""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Optional

from .config import Config
from .errors import (
    EmptySpreadsheet,
    NoQualifyingEmail,
    ProtocolError,
    StorageError,
)
from .ingestion import ImapMailbox, MailSource
from .ledger import LedgerIngestor, LedgerSchema
from .metrics import MetricsCollector
from .models import Attachment, IngestionResult, MappingResult, RunLog, RunStatus
from .notify import SmtpNotifier, render_report
from .processing import extract_attachment, map_statement
from .run_log import RunLogRecorder
from .storage import PostgresRowStore, RowStore

logger = logging.getLogger(__name__)

KSA = timezone(timedelta(hours=3))

SCHEDULE_SETTINGS_TABLE = "api_integration_settings"
SCHEDULE_SETTING_KEY = "riyad_bank_last_auto_run"
UPLOAD_LOG_TABLE = "upload_logs"
UPLOAD_USER_NAME = "EdaraBoot"

NOTIFY_STATUSES = (RunStatus.COMPLETED, RunStatus.EMPTY, RunStatus.ERROR)

MailSourceFactory = Callable[[], MailSource]


def default_target_date(now: Optional[datetime] = None) -> date:
    """Yesterday in Saudi time (UTC+3), the day the latest statement covers."""
    now = now or datetime.now(KSA)
    return now.astimezone(KSA).date() - timedelta(days=1)


class StatementSyncPipeline:
    """Finds the bank's daily statement email and loads it into the ledger.

    One run handles one statement date: search the mailbox, take the newest
    candidate that carries a readable spreadsheet, map it, insert new rows,
    link bank ledger entries, finalize the run log and send the report.
    """

    def __init__(
        self,
        config: Config,
        store: RowStore,
        mail_source_factory: Optional[MailSourceFactory] = None,
        notifier: Optional[SmtpNotifier] = None,
        schema: Optional[LedgerSchema] = None,
    ):
        """Initialize the pipeline.

        Args:
            config: Application configuration
            store: Row store for statement rows, ledger links and run logs
            mail_source_factory: Builds an unopened MailSource per run,
                defaults to an ImapMailbox from config
            notifier: Report sender, defaults to SMTP from config when enabled
            schema: Ledger table/column names
        """
        self.config = config
        self.store = store
        self.mail_source_factory = mail_source_factory or self._imap_mailbox
        if notifier is None and config.notifications_enabled:
            notifier = SmtpNotifier.from_config(config)
        self.notifier = notifier
        self.ingestor = LedgerIngestor(
            store,
            schema=schema,
            select_chunk_size=config.select_chunk_size,
            insert_batch_size=config.insert_batch_size,
        )
        self.metrics = MetricsCollector()

    def _imap_mailbox(self) -> MailSource:
        return ImapMailbox(
            host=self.config.imap_host,
            user=self.config.imap_user,
            password=self.config.imap_password,
            port=self.config.imap_port,
            mailbox=self.config.imap_mailbox,
            command_timeout=self.config.imap_timeout_sec,
            fetch_timeout=self.config.fetch_timeout_sec,
        )

    def run(self, target_date: Optional[date] = None, manual: bool = False) -> RunLog:
        """Run the sync once.

        Args:
            target_date: Statement date, defaults to yesterday (UTC+3)
            manual: Whether a person triggered this run

        Returns:
            RunLog: Final run log; failures are recorded, never raised
        """
        target_date = target_date or default_target_date()
        since = target_date + timedelta(days=1)  # Statement for D arrives on D+1

        self.metrics = MetricsCollector()
        self.metrics.start_timer("total")
        recorder = RunLogRecorder(self.store)
        recorder.start(target_date, manual)
        logger.info(f"Starting {'manual' if manual else 'scheduled'} sync for {target_date}")

        attachment: Optional[Attachment] = None
        mapping: Optional[MappingResult] = None
        result: Optional[IngestionResult] = None

        try:
            # Stage 1: Find the statement email and its spreadsheet
            attachment = self._find_statement(recorder, target_date, since)

            # Stage 2: Map spreadsheet rows onto statement columns
            mapping = self._map_statement(recorder, attachment)

            # Stage 3: Dedup, insert and link
            result = self._ingest(recorder, mapping)

            self._finish(
                recorder,
                RunStatus.COMPLETED,
                current_step="completed",
                records_inserted=result.inserted,
                records_skipped=result.skipped,
                records_failed=result.failed,
                ledger_links=result.linked,
            )
            self._record_upload(attachment, result)

        except NoQualifyingEmail as e:
            logger.info(f"No statement to import: {e}")
            self._finish(recorder, RunStatus.NO_EMAIL, current_step="completed", error_message=str(e))
        except EmptySpreadsheet as e:
            logger.warning(f"Statement is empty: {e}")
            self._finish(recorder, RunStatus.EMPTY, current_step="completed", error_message=str(e))
        except Exception as e:  # Any other failure ends the run as error
            logger.exception(f"Statement sync failed: {e}")
            self._finish(recorder, RunStatus.ERROR, current_step="error", error_message=str(e))

        log = recorder.log
        if not manual:
            self._record_schedule(log)

        metrics = self.metrics.create_run_metrics(
            rows_mapped=len(mapping.rows) if mapping else 0,
            rows_inserted=result.inserted if result else 0,
            attachment_bytes=attachment.size_bytes if attachment else 0,
        )
        logger.info(f"Run finished: {log.status.value} {metrics}")

        # Stage 4: Report
        if self.notifier is not None and log.status in NOTIFY_STATUSES:
            subject, html = render_report(log)
            self.notifier.notify(subject, html)

        return log

    # ========================================================================
    # Stages
    # ========================================================================

    def _find_statement(self, recorder: RunLogRecorder, target_date: date, since: date) -> Attachment:
        """Return the spreadsheet from the newest qualifying email.

        Candidates whose subject names a date other than target_date are
        skipped, so a backfill run picks that day's statement.

        Raises:
            NoQualifyingEmail: If no candidate yields a spreadsheet attachment
        """
        cfg = self.config
        recorder.update(current_step="connecting_to_email")
        self.metrics.start_timer("mail")
        source = self.mail_source_factory()
        try:
            source.open()

            recorder.update(current_step="searching_emails")
            candidates = source.find_candidates(
                cfg.statement_sender, cfg.statement_subject, since, statement_date=target_date
            )
            if not candidates:
                raise NoQualifyingEmail(
                    f"No email from {cfg.statement_sender} for {target_date.isoformat()} since {since.isoformat()}"
                )

            recorder.update(current_step="downloading_attachment")
            for message in candidates:
                try:
                    raw = source.fetch_full_message(message.seq)
                except ProtocolError as e:  # FetchTimeout included
                    logger.warning(f"Skipping message {message.seq}: {e}")
                    continue

                attachment = extract_attachment(raw)
                if attachment is None:
                    logger.warning(f"Skipping message {message.seq}: no spreadsheet attachment")
                    continue

                logger.info(f"Using message {message.seq} ({message.subject!r}) -> {attachment.filename}")
                recorder.update(email_subject=message.subject, attachment_filename=attachment.filename)
                return attachment

            raise NoQualifyingEmail(
                f"None of {len(candidates)} statement email(s) had a readable spreadsheet attachment"
            )
        finally:
            source.close()
            self.metrics.stop_timer("mail")

    def _map_statement(self, recorder: RunLogRecorder, attachment: Attachment) -> MappingResult:
        """Map the attachment into rows.

        Raises:
            DecodeFailure: If the attachment is not a readable workbook
            EmptySpreadsheet: If no row carries a transaction number
        """
        recorder.update(current_step="processing_file")
        self.metrics.start_timer("mapping")
        try:
            mapping = map_statement(attachment.data)
        finally:
            self.metrics.stop_timer("mapping")

        recorder.update(
            missing_columns=mapping.missing_columns,
            extra_columns=mapping.extra_columns,
            records_invalid=mapping.dropped_rows,
        )
        if not mapping.rows:
            raise EmptySpreadsheet(f"{attachment.filename} has no rows with a transaction number")
        return mapping

    def _ingest(self, recorder: RunLogRecorder, mapping: MappingResult) -> IngestionResult:
        recorder.update(current_step="inserting_records")
        self.metrics.start_timer("ingest")
        try:
            return self.ingestor.ingest(mapping.rows)
        finally:
            self.metrics.stop_timer("ingest")

    # ========================================================================
    # Bookkeeping
    # ========================================================================

    def _finish(self, recorder: RunLogRecorder, status: RunStatus, **fields) -> None:
        duration = self.metrics.stop_timer("total")
        recorder.finish(status, duration_sec=round(duration, 3), **fields)

    def _record_upload(self, attachment: Attachment, result: IngestionResult) -> None:
        """Append the import to the upload history shown in the accounting UI."""
        row = {
            "file_name": attachment.filename,
            "user_name": UPLOAD_USER_NAME,
            "status": RunStatus.COMPLETED.value,
            "records_processed": result.inserted,
            "duplicate_records_count": result.skipped,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            self.store.insert_rows(UPLOAD_LOG_TABLE, [row])
        except StorageError as e:
            logger.error(f"Could not write upload log: {e}")

    def _record_schedule(self, log: RunLog) -> None:
        """Remember when the scheduled sync last ran and for which date."""
        now = datetime.now(timezone.utc)
        row = {
            "setting_key": SCHEDULE_SETTING_KEY,
            "setting_value": f"{now.isoformat()}|{log.target_date.isoformat() if log.target_date else ''}",
            "updated_at": now.isoformat(),
        }
        try:
            self.store.upsert_row(SCHEDULE_SETTINGS_TABLE, row, conflict_column="setting_key")
        except StorageError as e:
            logger.error(f"Could not record schedule checkpoint: {e}")


def run_once(
    target_date: Optional[date] = None,
    manual: bool = False,
    config: Optional[Config] = None,
) -> RunLog:
    """Build the pipeline from configuration and run it once.

    Args:
        target_date: Statement date, defaults to yesterday (UTC+3)
        manual: Whether a person triggered this run
        config: Configuration, defaults to Config.from_env()

    Returns:
        RunLog: Final run log
    """
    config = config or Config.from_env()
    store = PostgresRowStore(config.database_url)
    try:
        return StatementSyncPipeline(config, store).run(target_date=target_date, manual=manual)
    finally:
        store.close()
