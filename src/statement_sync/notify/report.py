"""Bilingual (Arabic/English) HTML summary of a run."""

from datetime import datetime, timedelta, timezone
from html import escape
from typing import Optional

from ..models import RunLog, RunStatus

KSA = timezone(timedelta(hours=3))

# status -> (subject, headline colour)
_STATUS_TEXT = {
    RunStatus.COMPLETED: ("تم تحميل كشف بنك الرياض - Riyad Bank Statement Imported", "#1e7e34"),
    RunStatus.EMPTY: ("كشف بنك الرياض فارغ - Riyad Bank Statement Empty", "#b8860b"),
    RunStatus.ERROR: ("فشل تحميل كشف بنك الرياض - Riyad Bank Statement Import Failed", "#c82333"),
    RunStatus.NO_EMAIL: ("لم يصل كشف بنك الرياض - No Riyad Bank Statement Received", "#6c757d"),
    RunStatus.PROCESSING: ("كشف بنك الرياض قيد المعالجة - Riyad Bank Statement Processing", "#6c757d"),
}


def _row(label_ar: str, label_en: str, value: object) -> str:
    return (
        "<tr>"
        f'<td style="padding:6px 10px;border:1px solid #ddd;">{escape(label_ar)} / {escape(label_en)}</td>'
        f'<td style="padding:6px 10px;border:1px solid #ddd;">{escape(str(value))}</td>'
        "</tr>"
    )


def render_report(log: RunLog, now: Optional[datetime] = None) -> tuple[str, str]:
    """Render the notification for a finished run.

    Args:
        log: Final run log
        now: Report timestamp, defaults to the current time

    Returns:
        tuple[str, str]: (subject, html body)
    """
    subject, colour = _STATUS_TEXT[log.status]
    stamp = (now or datetime.now(KSA)).astimezone(KSA).strftime("%Y-%m-%d %H:%M")

    rows = [
        _row("التاريخ", "Statement date", log.target_date.isoformat() if log.target_date else "-"),
        _row("نوع التشغيل", "Run type", "يدوي / Manual" if log.is_manual else "تلقائي / Scheduled"),
        _row("الحالة", "Status", log.status.value),
    ]
    if log.email_subject:
        rows.append(_row("عنوان الرسالة", "Email subject", log.email_subject))
    if log.attachment_filename:
        rows.append(_row("الملف", "File", log.attachment_filename))

    rows += [
        _row("سجلات مضافة", "Records inserted", log.records_inserted),
        _row("سجلات مكررة", "Duplicates skipped", log.records_skipped),
        _row("سجلات فاشلة", "Records failed", log.records_failed),
        _row("سجلات غير صالحة", "Invalid rows", log.records_invalid),
        _row("قيود بنكية مربوطة", "Bank ledger links", log.ledger_links),
    ]
    if log.missing_columns:
        rows.append(_row("أعمدة مفقودة", "Missing columns", ", ".join(log.missing_columns)))
    if log.extra_columns:
        rows.append(_row("أعمدة إضافية", "Extra columns", ", ".join(log.extra_columns)))
    if log.duration_sec is not None:
        rows.append(_row("المدة", "Duration", f"{log.duration_sec:.1f}s"))

    error_block = ""
    if log.error_message:
        error_block = (
            '<p style="color:#c82333;"><strong>الخطأ / Error:</strong> '
            f"{escape(log.error_message)}</p>"
        )

    html = (
        '<!DOCTYPE html><html><head><meta charset="UTF-8"></head>'
        '<body style="font-family:Arial,sans-serif;">'
        f'<h2 style="color:{colour};">{escape(subject)}</h2>'
        f"<p>{escape(stamp)} (KSA)</p>"
        '<table style="border-collapse:collapse;">'
        + "".join(rows)
        + "</table>"
        + error_block
        + '<p style="color:#888;font-size:12px;">EdaraBoot</p>'
        "</body></html>"
    )
    return subject, html
