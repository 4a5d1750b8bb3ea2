"""
PDF invoices for recorded contributions.
"""

from __future__ import annotations

import io
from datetime import datetime, timezone
from typing import Optional

from reportlab.lib.pagesizes import letter
from reportlab.lib.utils import simpleSplit
from reportlab.pdfgen import canvas

from crowdspark.db import TransactionRecord

TITLE = "CrowdSpark - Donation Invoice"
FOOTER = "Thank you for supporting this cause!"

MARGIN = 72
BODY_FONT = "Helvetica"
BODY_SIZE = 12
LINE_HEIGHT = 18


def invoice_filename(transaction_id: str) -> str:
    return f"invoice-{transaction_id}.pdf"


def invoice_lines(
    transaction: TransactionRecord, campaign_title: Optional[str], currency: str
) -> list[str]:
    created = datetime.fromtimestamp(transaction.created_at, tz=timezone.utc)
    return [
        f"Transaction ID: {transaction.transaction_id}",
        f"Date: {created.strftime('%Y-%m-%d %H:%M:%S UTC')}",
        f"Backer: {transaction.provider}",
        f"Campaign: {campaign_title or 'Unavailable'}",
        f"Amount: {currency} {transaction.amount:,.2f}",
        f"Message: {transaction.message}",
    ]


def wrap_lines(
    lines: list[str], font_name: str, font_size: float, max_width: float
) -> list[str]:
    """Split each line on word boundaries so it fits within `max_width` points."""
    wrapped: list[str] = []
    for line in lines:
        wrapped.extend(simpleSplit(line, font_name, font_size, max_width) or [""])
    return wrapped


def render_invoice(
    transaction: TransactionRecord, campaign_title: Optional[str], currency: str = "INR"
) -> bytes:
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=letter)
    width, height = letter
    top = height - MARGIN

    y = top
    c.setFont("Helvetica-Bold", 20)
    c.drawCentredString(width / 2, y, TITLE)
    y -= 40

    lines = wrap_lines(
        invoice_lines(transaction, campaign_title, currency),
        BODY_FONT,
        BODY_SIZE,
        width - 2 * MARGIN,
    )
    c.setFont(BODY_FONT, BODY_SIZE)
    for line in lines:
        if y < MARGIN:
            c.showPage()
            c.setFont(BODY_FONT, BODY_SIZE)
            y = top
        c.drawString(MARGIN, y, line)
        y -= LINE_HEIGHT

    y -= LINE_HEIGHT
    if y < MARGIN:
        c.showPage()
        c.setFont(BODY_FONT, BODY_SIZE)
        y = top
    c.drawCentredString(width / 2, y, FOOTER)

    c.showPage()
    c.save()
    return buf.getvalue()
