"""Minimal IMAP4rev1 client over a raw TLS line session."""

import logging
import re
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Optional

from ..errors import (
    AuthError,
    FetchTimeout,
    MailboxError,
    ProtocolError,
    StatementSyncError,
)
from ..transport import LineSession
from ..transport.session import Connector
from .base import MailSource

logger = logging.getLogger(__name__)

# IMAP dates use English month names regardless of locale
MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

_SEARCH_RE = re.compile(r"^\* SEARCH((?: +\d+)*) *\r?$", re.MULTILINE | re.IGNORECASE)


def imap_date(day: date) -> str:
    """Format a date as D-Mon-YYYY for SEARCH SINCE."""
    return f"{day.day}-{MONTHS[day.month - 1]}-{day.year}"


def quote(value: str) -> str:
    """Quote a string argument, escaping backslash and double quote."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def unwrap_literal(response: str, seq: int) -> str:
    """Extract the {n} literal of a FETCH response for message seq.

    Args:
        response: Raw untagged + tagged response text
        seq: Message sequence number the FETCH was issued for

    Returns:
        str: The literal payload. If the literal is truncated, everything after
        the literal marker; if there is no literal, the whole response.
    """
    pattern = re.compile(rf"\* {seq} FETCH [^\r\n]*?\{{(\d+)\}}\r\n", re.IGNORECASE)
    match = pattern.search(response)
    if not match:
        return response

    size = int(match.group(1))
    start = match.end()
    literal = response[start:start + size]
    if len(literal) < size:
        logger.warning(f"FETCH literal for message {seq} truncated: {len(literal)}/{size} chars")
    return literal


class ImapState(str, Enum):
    """Client-side session state."""

    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    AUTHENTICATED = "authenticated"
    SELECTED = "selected"
    LOGGED_OUT = "logged_out"


@dataclass
class ImapResponse:
    """Complete response to one tagged command."""

    tag: str
    status: Optional[str]  # "OK", "NO", "BAD" or None if the tagged line never came
    text: str

    @property
    def ok(self) -> bool:
        return self.status == "OK"


class ImapMailbox(MailSource):
    """IMAP mailbox client: LOGIN, SELECT, SEARCH, FETCH (peek only), LOGOUT."""

    def __init__(
        self,
        host: str,
        user: str,
        password: str,
        port: int = 993,
        mailbox: str = "INBOX",
        command_timeout: float = 30.0,
        fetch_timeout: float = 120.0,
        connector: Optional[Connector] = None,
    ):
        """Initialize the client (does not connect).

        Args:
            host: IMAP server hostname
            user: Login name
            password: Login password
            port: Implicit-TLS port
            mailbox: Mailbox to select in open()
            command_timeout: Ceiling for control command responses
            fetch_timeout: Ceiling for a full-message fetch
            connector: Socket opener override (tests)
        """
        self.user = user
        self.password = password
        self.mailbox = mailbox
        self.command_timeout = command_timeout
        self.fetch_timeout = fetch_timeout
        self.session = LineSession(host, port, connect_timeout=command_timeout, connector=connector)
        self.state = ImapState.DISCONNECTED
        self._tag_counter = 0

    # ========================================================================
    # Protocol plumbing
    # ========================================================================

    def _next_tag(self) -> str:
        self._tag_counter += 1
        return f"A{self._tag_counter}"

    def _require_state(self, *states: ImapState) -> None:
        if self.state not in states:
            raise ProtocolError(f"IMAP command not allowed in state {self.state.value}")

    def _command(
        self,
        command: str,
        timeout: Optional[float] = None,
        idle_timeout: Optional[float] = None,
        display: Optional[str] = None,
    ) -> ImapResponse:
        """Send one tagged command and read until its tagged status line.

        Args:
            command: Command without tag
            timeout: Response ceiling, defaults to command_timeout
            idle_timeout: Per-chunk wait override
            display: Text to log instead of the command (hides credentials)

        Returns:
            ImapResponse: Tag, status and full response text
        """
        tag = self._next_tag()
        status_re = re.compile(rf"(?:^|\r\n){tag} (OK|NO|BAD)\b[^\r\n]*\r\n", re.IGNORECASE)

        logger.debug(f"> {tag} {display or command}")
        self.session.send_line(f"{tag} {command}")
        text = self.session.read_until(
            lambda acc: status_re.search(acc) is not None,
            timeout or self.command_timeout,
            idle_timeout,
        )

        match = status_re.search(text)
        status = match.group(1).upper() if match else None
        logger.debug(f"< {tag} {status} ({len(text)} chars)")
        return ImapResponse(tag=tag, status=status, text=text)

    # ========================================================================
    # Session lifecycle
    # ========================================================================

    def connect(self) -> None:
        """Open the TLS connection and consume the server greeting.

        Raises:
            SessionConnectionError: On TLS/DNS failure
            ProtocolError: If the greeting is missing or a BYE
        """
        self._require_state(ImapState.DISCONNECTED)
        self.session.connect()

        greeting = self.session.read_until(
            lambda acc: "\r\n" in acc and acc.lstrip().startswith("*"),
            self.command_timeout,
        )
        if not greeting.lstrip().upper().startswith(("* OK", "* PREAUTH")):
            self.session.close()
            raise ProtocolError(f"Unexpected IMAP greeting: {greeting.strip()[:200]!r}")

        self.state = ImapState.CONNECTED
        logger.info(f"Connected to IMAP server {self.session.host}")

    def login(self, user: str, password: str) -> None:
        """Authenticate with LOGIN.

        Raises:
            AuthError: If the server does not answer OK
        """
        self._require_state(ImapState.CONNECTED)
        response = self._command(
            f"LOGIN {quote(user)} {quote(password)}",
            display=f"LOGIN {quote(user)} \"***\"",
        )
        if not response.ok:
            raise AuthError(f"IMAP login failed for {user}: {response.status or 'no response'}")

        self.state = ImapState.AUTHENTICATED
        logger.info(f"Logged in as {user}")

    def select_mailbox(self, name: str) -> None:
        """Select a mailbox.

        Raises:
            MailboxError: If the server does not answer OK
        """
        self._require_state(ImapState.AUTHENTICATED, ImapState.SELECTED)
        response = self._command(f"SELECT {quote(name)}")
        if not response.ok:
            raise MailboxError(f"IMAP SELECT {name} failed: {response.status or 'no response'}")

        self.state = ImapState.SELECTED
        logger.info(f"Selected mailbox {name}")

    def logout(self) -> None:
        """Log out and close. Failures are ignored, the connection is going away anyway."""
        if self.session.connected:
            try:
                self._command("LOGOUT", timeout=5.0)
            except StatementSyncError as e:
                logger.debug(f"Ignoring LOGOUT failure: {e}")
        self.session.close()
        self.state = ImapState.LOGGED_OUT

    # ========================================================================
    # Mailbox operations
    # ========================================================================

    def search_today_from_subject(self, sender: str, subject: str, since: date) -> list[int]:
        """SEARCH SINCE/FROM/SUBJECT and return message ids, most recent last.

        A NO/BAD answer or an unparseable reply yields an empty list: there is
        simply nothing to process.
        """
        self._require_state(ImapState.SELECTED)
        response = self._command(f"SEARCH SINCE {imap_date(since)} FROM {quote(sender)} SUBJECT {quote(subject)}")
        if not response.ok:
            logger.warning(f"IMAP SEARCH returned {response.status or 'no response'}")
            return []

        match = _SEARCH_RE.search(response.text)
        if not match:
            logger.warning("IMAP SEARCH reply had no SEARCH line")
            return []

        return sorted(int(token) for token in match.group(1).split())

    def fetch_headers(self, seq: int) -> str:
        """Fetch BODY.PEEK[HEADER]; returns "" if the server refuses."""
        self._require_state(ImapState.SELECTED)
        response = self._command(f"FETCH {seq} (BODY.PEEK[HEADER])")
        if not response.ok:
            logger.warning(f"FETCH headers for message {seq} returned {response.status or 'no response'}")
            return ""
        return unwrap_literal(response.text, seq)

    def fetch_full_message(self, seq: int) -> str:
        """Fetch BODY.PEEK[] with the long fetch ceiling.

        Raises:
            FetchTimeout: If the tagged terminator did not arrive in time
            ProtocolError: If the server answered NO or BAD
        """
        self._require_state(ImapState.SELECTED)
        response = self._command(f"FETCH {seq} (BODY.PEEK[])", timeout=self.fetch_timeout)
        if response.status is None:
            raise FetchTimeout(seq, len(response.text))
        if not response.ok:
            raise ProtocolError(f"FETCH of message {seq} returned {response.status}")

        logger.info(f"Fetched message {seq} ({len(response.text)} chars)")
        return unwrap_literal(response.text, seq)

    # ========================================================================
    # MailSource interface
    # ========================================================================

    def open(self) -> None:
        self.connect()
        self.login(self.user, self.password)
        self.select_mailbox(self.mailbox)

    def search(self, sender: str, subject: str, since: date) -> list[int]:
        return self.search_today_from_subject(sender, subject, since)

    def close(self) -> None:
        self.logout()
