"""Configuration management for the statement sync application."""

import os
from dataclasses import dataclass, field
from typing import Optional

from .errors import ConfigError


@dataclass
class Config:
    """Application configuration loaded from environment variables."""

    # Database
    database_url: str

    # IMAP
    imap_host: str
    imap_user: str
    imap_password: str
    imap_port: int = 993
    imap_mailbox: str = "INBOX"
    imap_timeout_sec: float = 30.0
    fetch_timeout_sec: float = 120.0

    # Statement email filter
    statement_sender: str = "9910013@riyadbank.com"
    statement_subject: str = "Merchant Report"

    # SMTP notification (disabled unless host, user, password and recipients are set)
    smtp_host: Optional[str] = None
    smtp_port: int = 465
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    notify_from: Optional[str] = None
    notify_to: list[str] = field(default_factory=list)

    # Storage limits
    select_chunk_size: int = 500
    insert_batch_size: int = 200

    @property
    def notifications_enabled(self) -> bool:
        """Whether enough SMTP settings are present to send a report."""
        return bool(self.smtp_host and self.smtp_user and self.smtp_password and self.notify_to)

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables.

        Returns:
            Config: Configuration object

        Raises:
            ConfigError: If required environment variables are missing
        """
        required_vars = [
            "DATABASE_URL",
            "IMAP_HOST",
            "IMAP_USER",
            "IMAP_PASSWORD",
        ]

        missing = [var for var in required_vars if not os.getenv(var)]
        if missing:
            raise ConfigError(f"Missing required environment variables: {', '.join(missing)}")

        notify_to = [addr.strip() for addr in os.getenv("NOTIFY_TO", "").split(",") if addr.strip()]

        return cls(
            database_url=os.getenv("DATABASE_URL"),
            imap_host=os.getenv("IMAP_HOST"),
            imap_user=os.getenv("IMAP_USER"),
            imap_password=os.getenv("IMAP_PASSWORD"),
            imap_port=int(os.getenv("IMAP_PORT", "993")),
            imap_mailbox=os.getenv("IMAP_MAILBOX", "INBOX"),
            imap_timeout_sec=float(os.getenv("IMAP_TIMEOUT_SEC", "30")),
            fetch_timeout_sec=float(os.getenv("FETCH_TIMEOUT_SEC", "120")),
            statement_sender=os.getenv("STATEMENT_SENDER", "9910013@riyadbank.com"),
            statement_subject=os.getenv("STATEMENT_SUBJECT", "Merchant Report"),
            smtp_host=os.getenv("SMTP_HOST"),
            smtp_port=int(os.getenv("SMTP_PORT", "465")),
            smtp_user=os.getenv("SMTP_USER"),
            smtp_password=os.getenv("SMTP_PASSWORD"),
            notify_from=os.getenv("NOTIFY_FROM") or os.getenv("SMTP_USER"),
            notify_to=notify_to,
            select_chunk_size=int(os.getenv("SELECT_CHUNK_SIZE", "500")),
            insert_batch_size=int(os.getenv("INSERT_BATCH_SIZE", "200")),
        )
