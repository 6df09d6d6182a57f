"""Tests for the SMTP notifier, message building and report rendering."""

import base64
from datetime import date, datetime, timezone

import pytest

from statement_sync.errors import AuthError, NotificationFailure
from statement_sync.models import RunLog, RunStatus
from statement_sync.notify import SmtpNotifier, build_message, render_report
from statement_sync.notify.message import dot_stuff, encode_subject
from statement_sync.notify.smtp import reply_complete

from conftest import FakeSocket, connector_for

EHLO_REPLY = "250-smtp.example.com Hello\r\n250-AUTH LOGIN PLAIN\r\n250 SIZE 35882577\r\n"

HAPPY_PATH = [
    EHLO_REPLY,
    "334 VXNlcm5hbWU6\r\n",
    "334 UGFzc3dvcmQ6\r\n",
    "235 2.7.0 Authentication successful\r\n",
    "250 2.1.0 Ok\r\n",
    "250 2.1.5 Ok\r\n",
    "250 2.1.5 Ok\r\n",
    "354 End data with <CR><LF>.<CR><LF>\r\n",
    "250 2.0.0 Ok: queued\r\n",
    "221 2.0.0 Bye\r\n",
]


def make_notifier(sock: FakeSocket, recipients=("a@example.com", "Finance <b@example.com>")) -> SmtpNotifier:
    return SmtpNotifier(
        host="smtp.example.com",
        user="bot@example.com",
        password="secret",
        sender="bot@example.com",
        recipients=list(recipients),
        timeout=1.0,
        connector=connector_for(sock),
    )


def test_reply_complete_waits_for_final_line():
    assert not reply_complete("250-smtp.example.com\r\n")
    assert not reply_complete("250-smtp.example.com\r\n250 SIZE")
    assert reply_complete(EHLO_REPLY)
    assert reply_complete("250\r\n")


def test_send_walks_the_full_dialogue():
    sock = FakeSocket("220 smtp.example.com ESMTP\r\n", HAPPY_PATH)
    notifier = make_notifier(sock)

    notifier.send("Report", "<p>ok</p>")

    commands = [s for s in sock.sent if not s.startswith("From:")]
    assert commands == [
        "EHLO localhost\r\n",
        "AUTH LOGIN\r\n",
        base64.b64encode(b"bot@example.com").decode() + "\r\n",
        base64.b64encode(b"secret").decode() + "\r\n",
        "MAIL FROM:<bot@example.com>\r\n",
        "RCPT TO:<a@example.com>\r\n",
        "RCPT TO:<b@example.com>\r\n",
        "DATA\r\n",
        "QUIT\r\n",
    ]
    body = next(s for s in sock.sent if s.startswith("From:"))
    assert body.endswith("\r\n.\r\n")
    assert sock.closed


def test_rejected_password_aborts_before_mail_from():
    sock = FakeSocket(
        "220 smtp.example.com ESMTP\r\n",
        [EHLO_REPLY, "334 VXNlcm5hbWU6\r\n", "334 UGFzc3dvcmQ6\r\n", "535 5.7.8 Authentication failed\r\n"],
    )
    notifier = make_notifier(sock)

    with pytest.raises(AuthError):
        notifier.send("Report", "<p>ok</p>")

    assert not any(s.startswith("MAIL FROM") for s in sock.sent)
    assert sock.closed


def test_unexpected_greeting_raises_notification_failure():
    sock = FakeSocket("554 no service\r\n")

    with pytest.raises(NotificationFailure):
        make_notifier(sock).send("Report", "<p>ok</p>")


def test_notify_logs_instead_of_raising():
    sock = FakeSocket("220 ready\r\n", [EHLO_REPLY, "504 Unrecognized authentication type\r\n"])

    assert make_notifier(sock).notify("Report", "<p>ok</p>") is False


def test_notify_returns_true_on_success():
    sock = FakeSocket("220 ready\r\n", HAPPY_PATH)

    assert make_notifier(sock).notify("Report", "<p>ok</p>") is True


def test_build_message_encodes_subject_and_wraps_body():
    html = "<p>" + "تقرير " * 60 + "</p>"

    message = build_message("bot@example.com", ["a@example.com"], "تقرير - Report", html)

    headers, _, body = message.partition("\r\n\r\n")
    assert f"Subject: {encode_subject('تقرير - Report')}" in headers.split("\r\n")
    assert "Content-Type: text/html; charset=UTF-8" in headers
    assert "Content-Transfer-Encoding: base64" in headers
    assert "Message-ID: <" in headers
    lines = body.split("\r\n")
    assert all(len(line) <= 76 for line in lines)
    assert base64.b64decode("".join(lines)).decode("utf-8") == html


def test_encode_subject_format():
    encoded = encode_subject("تقرير")

    assert encoded.startswith("=?UTF-8?B?") and encoded.endswith("?=")
    assert base64.b64decode(encoded[10:-2]).decode("utf-8") == "تقرير"


def test_dot_stuffing_doubles_leading_dots():
    assert dot_stuff("a\r\n.b\r\n..c") == "a\r\n..b\r\n...c"


def test_render_report_includes_counts_and_escapes_error():
    log = RunLog(
        status=RunStatus.ERROR,
        target_date=date(2025, 3, 4),
        attachment_filename="report.xlsx",
        records_inserted=12,
        missing_columns=["Fee"],
        error_message="bad <column>",
    )

    subject, html = render_report(log, now=datetime(2025, 3, 5, 5, 0, tzinfo=timezone.utc))

    assert "Failed" in subject
    assert "report.xlsx" in html
    assert "12" in html
    assert "Fee" in html
    assert "bad &lt;column&gt;" in html
    assert "2025-03-05 08:00" in html
