"""Pydantic models for the run log and internal processing."""

from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Run Log (stored in riyad_statement_auto_imports)
# ============================================================================


class RunStatus(str, Enum):
    """Lifecycle status of one pipeline invocation."""

    PROCESSING = "processing"
    NO_EMAIL = "no_email"
    EMPTY = "empty"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self is not RunStatus.PROCESSING


class RunLog(BaseModel):
    """Audit record for a single pipeline run."""

    id: Optional[str] = None  # Assigned by the row store
    status: RunStatus = RunStatus.PROCESSING
    current_step: Optional[str] = None
    target_date: Optional[date] = None
    is_manual: bool = False

    email_subject: Optional[str] = None
    attachment_filename: Optional[str] = None
    missing_columns: list[str] = Field(default_factory=list)
    extra_columns: list[str] = Field(default_factory=list)

    records_inserted: int = 0
    records_skipped: int = 0
    records_failed: int = 0
    records_invalid: int = 0
    ledger_links: int = 0

    error_message: Optional[str] = None
    duration_sec: Optional[float] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, validate_assignment=True)


# ============================================================================
# Internal Processing Models (not stored in database)
# ============================================================================


class MailMessage(BaseModel):
    """Candidate message found by the mailbox search."""

    seq: int  # IMAP sequence number, only valid within the session
    headers: str = ""
    subject: str = ""
    statement_date: Optional[date] = None  # Date named in the subject, if any


class Attachment(BaseModel):
    """Decoded spreadsheet attachment."""

    filename: str
    data: bytes

    @property
    def size_bytes(self) -> int:
        return len(self.data)


class MappingResult(BaseModel):
    """Normalized statement rows plus column diagnostics."""

    rows: list[dict[str, str]] = Field(default_factory=list)
    missing_columns: list[str] = Field(default_factory=list)
    extra_columns: list[str] = Field(default_factory=list)
    header_row_index: int = 0
    header_found: bool = False
    dropped_rows: int = 0  # Rows without a transaction number


class IngestionResult(BaseModel):
    """Counts produced by the dedup/insert/reconcile stage."""

    inserted: int = 0
    skipped: int = 0  # Already stored (or repeated within the file)
    failed: int = 0  # Lost to batches that failed twice
    linked: int = 0  # Bank-ledger entries cross-linked
    inserted_rows: list[dict[str, str]] = Field(default_factory=list)
