"""Run report notifications."""

from .message import build_message
from .report import render_report
from .smtp import SmtpNotifier

__all__ = ["SmtpNotifier", "build_message", "render_report"]
