"""Send the run report over implicit-TLS SMTP with AUTH LOGIN."""

import base64
import logging
import re
from email.utils import parseaddr
from typing import Optional, Sequence

from ..config import Config
from ..errors import AuthError, NotificationFailure, StatementSyncError
from ..transport import LineSession
from ..transport.session import Connector
from .message import build_message, dot_stuff

logger = logging.getLogger(__name__)

# Final line of a (possibly multi-line) reply: "250 ok" or a bare "250"
_FINAL_LINE_RE = re.compile(r"(?:^|\r\n)(\d{3})(?: [^\r\n]*)?\r\n$")


def reply_complete(text: str) -> bool:
    """True once the accumulated reply ends with a non-continuation line."""
    return _FINAL_LINE_RE.search(text) is not None


def reply_code(text: str) -> Optional[int]:
    match = _FINAL_LINE_RE.search(text)
    return int(match.group(1)) if match else None


def _b64(value: str) -> str:
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


class SmtpNotifier:
    """Minimal SMTP submission client for the HTML run report."""

    def __init__(
        self,
        host: str,
        user: str,
        password: str,
        sender: str,
        recipients: Sequence[str],
        port: int = 465,
        timeout: float = 30.0,
        helo_name: str = "localhost",
        connector: Optional[Connector] = None,
    ):
        """Initialize the notifier (connects per send).

        Args:
            host: SMTP server hostname
            user: AUTH LOGIN username
            password: AUTH LOGIN password
            sender: From address
            recipients: To addresses
            port: Implicit-TLS port
            timeout: Ceiling for each reply
            helo_name: Name announced in EHLO
            connector: Socket opener override (tests)
        """
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender
        self.recipients = list(recipients)
        self.timeout = timeout
        self.helo_name = helo_name
        self.connector = connector

    @classmethod
    def from_config(cls, config: Config) -> "SmtpNotifier":
        return cls(
            host=config.smtp_host,
            port=config.smtp_port,
            user=config.smtp_user,
            password=config.smtp_password,
            sender=config.notify_from or config.smtp_user,
            recipients=config.notify_to,
        )

    # ========================================================================
    # Protocol plumbing
    # ========================================================================

    def _read_reply(self, session: LineSession) -> str:
        return session.read_until(reply_complete, self.timeout)

    def _expect(self, reply: str, expected: int, step: str) -> str:
        """Check that reply is in the same status class as expected."""
        code = reply_code(reply)
        if code is None or code // 100 != expected // 100:
            shown = reply.strip().splitlines()[-1] if reply.strip() else "no reply"
            raise NotificationFailure(f"SMTP {step} expected {expected}, got {shown!r}")
        logger.debug(f"< {code} ({step})")
        return reply

    def _exchange(self, session: LineSession, line: str, expected: int, step: str) -> str:
        session.send_line(line)
        return self._expect(self._read_reply(session), expected, step)

    # ========================================================================
    # Public API
    # ========================================================================

    def send(self, subject: str, html_body: str) -> None:
        """Deliver one message, walking the SMTP dialogue step by step.

        Raises:
            SessionConnectionError: If the server cannot be reached
            AuthError: If AUTH LOGIN is rejected
            NotificationFailure: If any other step gets an unexpected reply
        """
        if not self.recipients:
            raise NotificationFailure("No notification recipients configured")

        message = build_message(self.sender, self.recipients, subject, html_body)
        envelope_from = parseaddr(self.sender)[1] or self.sender

        session = LineSession(self.host, self.port, connect_timeout=self.timeout, connector=self.connector)
        session.connect()
        try:
            self._expect(self._read_reply(session), 220, "greeting")
            self._exchange(session, f"EHLO {self.helo_name}", 250, "EHLO")

            self._exchange(session, "AUTH LOGIN", 334, "AUTH LOGIN")
            self._exchange(session, _b64(self.user), 334, "AUTH username")
            try:
                self._exchange(session, _b64(self.password), 235, "AUTH password")
            except NotificationFailure as e:
                raise AuthError(f"SMTP authentication failed for {self.user}: {e}") from e

            self._exchange(session, f"MAIL FROM:<{envelope_from}>", 250, "MAIL FROM")
            for recipient in self.recipients:
                address = parseaddr(recipient)[1] or recipient
                self._exchange(session, f"RCPT TO:<{address}>", 250, f"RCPT TO {address}")

            self._exchange(session, "DATA", 354, "DATA")
            session.send_raw(dot_stuff(message) + "\r\n.\r\n")
            self._expect(self._read_reply(session), 250, "message body")

            session.send_line("QUIT")
            self._read_reply(session)
        finally:
            session.close()

        logger.info(f"Notification sent to {', '.join(self.recipients)}")

    def notify(self, subject: str, html_body: str) -> bool:
        """Send, logging instead of raising. Returns whether delivery succeeded."""
        try:
            self.send(subject, html_body)
        except StatementSyncError as e:
            logger.error(f"Notification failed: {e}")
            return False
        return True
