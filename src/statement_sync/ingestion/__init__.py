"""Statement email ingestion module."""

from .base import MailSource, decode_subject, matches_filter, subject_date
from .imap import ImapMailbox, imap_date

__all__ = ["MailSource", "ImapMailbox", "decode_subject", "matches_filter", "subject_date", "imap_date"]
