"""RFC 5322 text for the HTML report email."""

import base64
import textwrap
from datetime import datetime
from email.utils import format_datetime, make_msgid, parseaddr
from typing import Optional, Sequence

BODY_LINE_LENGTH = 76


def encode_subject(subject: str) -> str:
    """Encode a subject as a single UTF-8 base64 encoded-word."""
    encoded = base64.b64encode(subject.encode("utf-8")).decode("ascii")
    return f"=?UTF-8?B?{encoded}?="


def wrap_base64(data: bytes, width: int = BODY_LINE_LENGTH) -> str:
    """Base64-encode data in CRLF-separated lines of at most width chars."""
    encoded = base64.b64encode(data).decode("ascii")
    return "\r\n".join(textwrap.wrap(encoded, width)) if encoded else ""


def build_message(
    from_addr: str,
    to_addrs: Sequence[str],
    subject: str,
    html_body: str,
    now: Optional[datetime] = None,
) -> str:
    """Build a text/html message with a base64 body.

    Args:
        from_addr: From header value (bare address or "Name <addr>")
        to_addrs: Recipient addresses for the To header
        subject: Unicode subject
        html_body: HTML document
        now: Date header timestamp, defaults to the current time

    Returns:
        str: Headers and body joined with CRLF, without the DATA terminator
    """
    domain = parseaddr(from_addr)[1].rpartition("@")[2] or "localhost"
    headers = [
        f"From: {from_addr}",
        f"To: {', '.join(to_addrs)}",
        f"Subject: {encode_subject(subject)}",
        f"Date: {format_datetime(now or datetime.now().astimezone())}",
        f"Message-ID: {make_msgid(domain=domain)}",
        "MIME-Version: 1.0",
        "Content-Type: text/html; charset=UTF-8",
        "Content-Transfer-Encoding: base64",
    ]
    return "\r\n".join(headers) + "\r\n\r\n" + wrap_base64(html_body.encode("utf-8"))


def dot_stuff(message: str) -> str:
    """Double a leading '.' on every line so the body cannot end DATA early."""
    lines = message.split("\r\n")
    return "\r\n".join("." + line if line.startswith(".") else line for line in lines)
