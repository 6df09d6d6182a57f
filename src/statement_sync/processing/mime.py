"""Locate and decode the spreadsheet attachment of a statement email."""

import base64
import binascii
import email
import logging
import re
from email.header import decode_header, make_header
from email.message import Message
from typing import Iterator, Optional

from ..errors import DecodeFailure
from ..models import Attachment

logger = logging.getLogger(__name__)

SPREADSHEET_EXTENSIONS = (".xls", ".xlsx", ".xlsm")

_BOUNDARY_RE = re.compile(r'boundary\s*=\s*"?([^";\r\n]+)"?', re.IGNORECASE)
_FILENAME_RE = re.compile(r'(?:filename|name)\*?\s*=\s*"?([^";\r\n]+)"?', re.IGNORECASE)
_BASE64_CTE_RE = re.compile(r"Content-Transfer-Encoding:\s*base64", re.IGNORECASE)
_BLANK_LINE_RE = re.compile(r"\r?\n\r?\n")

# Lines that can never be base64: boundary delimiters, the closing paren of an
# IMAP FETCH literal, tagged status lines and untagged responses.
_ARTIFACT_LINE_RE = re.compile(r"^(?:--|\)|A\d+ (?:OK|NO|BAD)\b|\* )", re.IGNORECASE)


def clean_filename(value: str) -> str:
    """Strip quotes, an RFC 2231 charset prefix and RFC 2047 encoding from a filename."""
    name = value.strip().strip('"')
    if "''" in name:
        name = name.split("''", 1)[1]
    if "=?" in name:
        try:
            name = str(make_header(decode_header(name)))
        except (UnicodeDecodeError, LookupError):
            pass
    return name.strip()


def is_spreadsheet(filename: str) -> bool:
    return filename.lower().endswith(SPREADSHEET_EXTENSIONS)


def decode_base64_payload(payload: str) -> bytes:
    """Decode a base64 body, tolerating line breaks and trailing protocol artifacts.

    Args:
        payload: Part body text (everything after the part headers)

    Returns:
        bytes: Decoded attachment bytes

    Raises:
        DecodeFailure: If nothing decodable remains or the text is not valid base64
    """
    pieces = []
    for line in payload.splitlines():
        line = line.strip()
        if not line:
            continue
        if _ARTIFACT_LINE_RE.match(line):
            break
        pieces.append(line)

    text = "".join(pieces).rstrip(")")
    if not text:
        raise DecodeFailure("Attachment payload is empty")

    text += "=" * (-len(text) % 4)
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeFailure(f"Invalid base64 payload ({len(text)} chars): {e}") from e


# ============================================================================
# Part tree search
# ============================================================================


def _leaf_parts(msg: Message) -> Iterator[Message]:
    """Depth-first walk over non-multipart parts (descends into message/rfc822)."""
    for part in msg.walk():
        if not part.is_multipart():
            yield part


def _search_tree(raw: str) -> Optional[Attachment]:
    """Parse the message into its part tree and return the first spreadsheet leaf."""
    msg = email.message_from_string(raw)

    for part in _leaf_parts(msg):
        filename = part.get_filename()
        if not filename:
            continue
        filename = clean_filename(filename)
        if not is_spreadsheet(filename):
            continue

        encoding = str(part.get("Content-Transfer-Encoding", "")).strip().lower()
        if encoding != "base64":
            logger.warning(f"Skipping {filename}: transfer encoding {encoding or 'none'} is not supported")
            continue

        payload = part.get_payload()
        if not isinstance(payload, str):
            continue

        try:
            data = decode_base64_payload(payload)
        except DecodeFailure as e:
            logger.error(f"Failed to decode attachment {filename}: {e}")
            continue

        return Attachment(filename=filename, data=data)

    return None


# ============================================================================
# Boundary scan fallback
# ============================================================================


def _scan_boundaries(raw: str) -> Optional[Attachment]:
    """Split the raw text on every declared boundary and test each chunk.

    Used when the structural parse finds nothing, e.g. when a forwarded report
    arrives with its multipart headers mangled or the message is still wrapped
    in IMAP response framing.
    """
    boundaries = list(dict.fromkeys(m.group(1).strip() for m in _BOUNDARY_RE.finditer(raw)))

    for boundary in boundaries:
        for part in raw.split(f"--{boundary}"):
            match = _FILENAME_RE.search(part)
            if not match:
                continue
            filename = clean_filename(match.group(1))
            if not is_spreadsheet(filename):
                continue
            if not _BASE64_CTE_RE.search(part):
                logger.warning(f"Skipping {filename}: not base64 encoded")
                continue

            body_start = _BLANK_LINE_RE.search(part)
            if not body_start:
                continue

            try:
                data = decode_base64_payload(part[body_start.end():])
            except DecodeFailure as e:
                logger.error(f"Failed to decode attachment {filename} (boundary {boundary}): {e}")
                continue

            return Attachment(filename=filename, data=data)

    return None


def extract_attachment(raw: str) -> Optional[Attachment]:
    """Find the base64 spreadsheet attachment in a raw message.

    Args:
        raw: Full message text (headers and body)

    Returns:
        Optional[Attachment]: Filename and decoded bytes, or None if no part qualifies
    """
    attachment = _search_tree(raw)
    if attachment is None:
        attachment = _scan_boundaries(raw)

    if attachment is None:
        logger.info("No spreadsheet attachment found in message")
    else:
        logger.info(f"Found attachment {attachment.filename} ({attachment.size_bytes} bytes)")
    return attachment
