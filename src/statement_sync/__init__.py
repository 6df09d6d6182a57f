"""Bank statement sync - statement email in, ledger rows out."""

# Models
from .models import (
    # Run log
    RunStatus,
    RunLog,
    # Processing models
    MailMessage,
    Attachment,
    MappingResult,
    IngestionResult,
)

# Errors
from .errors import (
    StatementSyncError,
    ConfigError,
    SessionConnectionError,
    ProtocolError,
    AuthError,
    MailboxError,
    FetchTimeout,
    DecodeFailure,
    NoQualifyingEmail,
    EmptySpreadsheet,
    StorageError,
    NotificationFailure,
)

# Ingestion
from .ingestion import ImapMailbox, MailSource

# Processing
from .processing import extract_attachment, map_statement

# Storage
from .storage import PostgresRowStore, RowStore
from .ledger import LedgerIngestor, LedgerSchema
from .run_log import RunLogRecorder

# Notification
from .notify import SmtpNotifier, render_report

# Pipeline
from .pipeline import StatementSyncPipeline, run_once

# Configuration
from .config import Config

__version__ = "0.1.0"

__all__ = [
    # Models
    "RunStatus",
    "RunLog",
    "MailMessage",
    "Attachment",
    "MappingResult",
    "IngestionResult",
    # Errors
    "StatementSyncError",
    "ConfigError",
    "SessionConnectionError",
    "ProtocolError",
    "AuthError",
    "MailboxError",
    "FetchTimeout",
    "DecodeFailure",
    "NoQualifyingEmail",
    "EmptySpreadsheet",
    "StorageError",
    "NotificationFailure",
    # Components
    "ImapMailbox",
    "MailSource",
    "extract_attachment",
    "map_statement",
    "PostgresRowStore",
    "RowStore",
    "LedgerIngestor",
    "LedgerSchema",
    "RunLogRecorder",
    "SmtpNotifier",
    "render_report",
    "StatementSyncPipeline",
    "run_once",
    "Config",
]
