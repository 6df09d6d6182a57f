"""Abstract base class for statement mail sources."""

import logging
import re
from abc import ABC, abstractmethod
from datetime import date
from email.header import decode_header, make_header
from email.parser import HeaderParser
from typing import Optional

from ..models import MailMessage

logger = logging.getLogger(__name__)

_SUBJECT_DATE_RE = re.compile(r"(\d{1,2})[/-](\d{1,2})[/-](\d{4})")


def decode_subject(headers: str) -> str:
    """Return the decoded Subject header (RFC 2047 aware) from a raw header block."""
    msg = HeaderParser().parsestr(headers)
    raw_subject = msg.get("Subject", "")
    if not raw_subject:
        return ""
    try:
        return str(make_header(decode_header(raw_subject))).strip()
    except (UnicodeDecodeError, LookupError):
        # Unknown charset, keep the encoded form
        return str(raw_subject).strip()


def subject_date(subject: str) -> Optional[date]:
    """Statement date named in a subject like "Merchant Report - 28/02/2026" (DD/MM/YYYY)."""
    match = _SUBJECT_DATE_RE.search(subject)
    if not match:
        return None
    day, month, year = (int(part) for part in match.groups())
    try:
        return date(year, month, day)
    except ValueError:
        return None


def matches_filter(headers: str, sender: str, subject: str) -> bool:
    """Check that a header block really comes from sender and carries subject.

    Servers are allowed to match SEARCH criteria loosely, so candidates are
    re-checked client side. Whitespace inside the subject is flexible.
    """
    if sender.lower() not in headers.lower():
        return False
    words = [re.escape(word) for word in subject.split()]
    pattern = r"\s*".join(words)
    return re.search(pattern, decode_subject(headers), re.IGNORECASE) is not None


class MailSource(ABC):
    """Abstract interface for finding and fetching statement emails."""

    @abstractmethod
    def open(self) -> None:
        """Connect, authenticate and select the configured mailbox."""
        pass

    @abstractmethod
    def search(self, sender: str, subject: str, since: date) -> list[int]:
        """Search for candidate messages.

        Args:
            sender: Sender address to match
            subject: Subject substring to match
            since: Earliest delivery date

        Returns:
            list[int]: Message ids in mailbox order (most recent last)
        """
        pass

    @abstractmethod
    def fetch_headers(self, seq: int) -> str:
        """Fetch the raw header block of a message without marking it read."""
        pass

    @abstractmethod
    def fetch_full_message(self, seq: int) -> str:
        """Fetch the complete raw message without marking it read."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Log out and close the connection."""
        pass

    def find_candidates(
        self,
        sender: str,
        subject: str,
        since: date,
        statement_date: Optional[date] = None,
    ) -> list[MailMessage]:
        """Search and return verified candidates, newest first.

        Args:
            sender: Sender address to match
            subject: Subject substring to match
            since: Earliest delivery date
            statement_date: If given, drop candidates whose subject names a
                different date. Subjects without a date are kept.

        Returns:
            list[MailMessage]: Candidates with headers and decoded subject
        """
        ids = self.search(sender, subject, since)
        logger.info(f"Search returned {len(ids)} message(s) since {since.isoformat()}")

        candidates = []
        for seq in reversed(ids):
            headers = self.fetch_headers(seq)
            if not matches_filter(headers, sender, subject):
                logger.info(f"Skipping message {seq}: headers do not match {sender} / {subject!r}")
                continue

            decoded = decode_subject(headers)
            named_date = subject_date(decoded)
            if statement_date and named_date and named_date != statement_date:
                logger.info(f"Skipping message {seq}: statement for {named_date}, not {statement_date}")
                continue
            candidates.append(MailMessage(seq=seq, headers=headers, subject=decoded, statement_date=named_date))

        return candidates
