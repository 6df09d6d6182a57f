"""Exception hierarchy for the statement sync pipeline."""


class StatementSyncError(Exception):
    """Base class for all pipeline errors."""


class ConfigError(StatementSyncError, ValueError):
    """Required configuration is missing or invalid."""


# ============================================================================
# Transport / protocol
# ============================================================================


class SessionConnectionError(StatementSyncError, ConnectionError):
    """TLS connection could not be opened (DNS, handshake or socket error)."""


class ProtocolError(StatementSyncError):
    """Server reply was missing, malformed or not the expected status."""


class AuthError(ProtocolError):
    """Credentials were rejected (IMAP LOGIN or SMTP AUTH)."""


class MailboxError(ProtocolError):
    """Mailbox could not be selected."""


class FetchTimeout(ProtocolError):
    """A full-message fetch hit its hard ceiling before completing."""

    def __init__(self, seq: int, received: int):
        super().__init__(f"Fetch of message {seq} timed out after {received} bytes")
        self.seq = seq
        self.received = received


# ============================================================================
# Content
# ============================================================================


class DecodeFailure(StatementSyncError):
    """Attachment payload or workbook bytes could not be decoded."""


class NoQualifyingEmail(StatementSyncError):
    """No statement email (or none with a usable attachment) was found."""


class EmptySpreadsheet(StatementSyncError):
    """The statement attachment contained no valid rows."""


# ============================================================================
# Storage / notification
# ============================================================================


class StorageError(StatementSyncError):
    """Row store operation failed. The message carries the backend error text."""


class NotificationFailure(StatementSyncError):
    """Outbound notification email could not be sent."""
