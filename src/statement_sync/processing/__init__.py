"""Attachment extraction and spreadsheet mapping."""

from .mime import decode_base64_payload, extract_attachment
from .spreadsheet import COLUMN_MAP, map_statement, normalize_key

__all__ = ["extract_attachment", "decode_base64_payload", "map_statement", "normalize_key", "COLUMN_MAP"]
