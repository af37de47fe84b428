"""Invoice PDF rendering and QR verification codes.

``render_invoice_pdf`` is a pure transform of an invoice into PDF bytes; it
never touches the database or the network. Embedded images (signature, QR)
are stored as ``data:`` URLs and checked with Pillow before layout, so a bad
payload fails with ``RenderError`` instead of producing half a document.
"""

import io
import json
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

import qrcode
from PIL import Image as PILImage, UnidentifiedImageError
from reportlab.lib import colors
from reportlab.lib.colors import HexColor
from reportlab.lib.enums import TA_CENTER, TA_RIGHT
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Image, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle
from xml.sax.saxutils import escape

from app.exceptions import RenderError
from app.services.invoice_calculator import format_money
from app.utils.data_url import decode_data_url

logger = logging.getLogger(__name__)

BRAND_COLOR = HexColor("#2E3440")
HEADER_BACKGROUND = HexColor("#E5E9F0")
GRID_COLOR = HexColor("#D8DEE9")


@dataclass(frozen=True)
class Issuer:
    """Issuer ("From") block printed on the invoice."""

    name: str
    company_name: Optional[str] = None
    company_address: Optional[str] = None
    company_phone: Optional[str] = None

    @classmethod
    def from_user(cls, user) -> "Issuer":
        return cls(
            name=user.full_name,
            company_name=user.company_name,
            company_address=user.company_address,
            company_phone=user.company_phone,
        )


# ---------------------------------------------------------------------------
# QR verification code
# ---------------------------------------------------------------------------

def verification_summary(
    invoice_number: str,
    client_name: str,
    total: float,
    issued_at: datetime,
) -> str:
    """Compact JSON encoded into the QR code."""
    return json.dumps(
        {
            "invoiceNumber": invoice_number,
            "client": client_name,
            "amount": total,
            "issueDate": issued_at.isoformat(),
        },
        separators=(",", ":"),
    )


def make_verification_payload(
    invoice_number: str,
    client_name: str,
    total: float,
    issued_at: datetime,
) -> bytes:
    """Render the verification summary as a QR code PNG."""
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=8,
        border=4,
    )
    qr.add_data(verification_summary(invoice_number, client_name, total, issued_at))
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


# ---------------------------------------------------------------------------
# PDF
# ---------------------------------------------------------------------------

def _load_image(payload: str, label: str, max_width: float, max_height: float) -> Image:
    raw = decode_data_url(payload)
    try:
        with PILImage.open(io.BytesIO(raw)) as probe:
            probe.verify()
            width, height = probe.size
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as e:
        raise RenderError(f"{label} is not a readable image") from e

    scale = min(max_width / width, max_height / height, 1.0) if width and height else 1.0
    return Image(io.BytesIO(raw), width=width * scale, height=height * scale)


def _format_date(value) -> str:
    if isinstance(value, (date, datetime)):
        return value.strftime("%B %d, %Y")
    return str(value or "")


def _text(value) -> str:
    return escape(str(value)) if value else ""


def render_invoice_pdf(invoice, issuer: Optional[Issuer] = None) -> bytes:
    """Render ``invoice`` to PDF bytes.

    Layout, top to bottom: title, number and dates, issuer, client, items
    table, totals, notes, terms, signature, QR code.

    Raises:
        RenderError: embedded images are malformed or layout fails.
    """
    # Decode embedded images first so nothing is laid out for a bad payload
    signature = None
    if invoice.digital_signature:
        signature = _load_image(invoice.digital_signature, "Digital signature", 2.8 * inch, 1.4 * inch)
    qr_image = None
    if invoice.qr_code:
        qr_image = _load_image(invoice.qr_code, "QR code", 1.4 * inch, 1.4 * inch)

    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=letter,
        rightMargin=54,
        leftMargin=54,
        topMargin=54,
        bottomMargin=36,
        title=f"Invoice {invoice.invoice_number}",
    )

    styles = getSampleStyleSheet()
    title_style = ParagraphStyle(
        "InvoiceTitle",
        parent=styles["Heading1"],
        fontSize=24,
        textColor=BRAND_COLOR,
        spaceAfter=18,
        alignment=TA_CENTER,
    )
    heading_style = ParagraphStyle(
        "InvoiceHeading",
        parent=styles["Heading2"],
        fontSize=12,
        textColor=BRAND_COLOR,
        spaceAfter=6,
    )
    normal_style = styles["Normal"]
    right_style = ParagraphStyle("InvoiceRight", parent=normal_style, alignment=TA_RIGHT)

    elements = [Paragraph("INVOICE", title_style)]

    details = Table(
        [
            ["Invoice Number:", invoice.invoice_number],
            ["Issue Date:", _format_date(invoice.issue_date)],
            ["Due Date:", _format_date(invoice.due_date)],
        ],
        colWidths=[1.6 * inch, 3 * inch],
    )
    details.setStyle(TableStyle([
        ("FONTNAME", (0, 0), (0, -1), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 10),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
    ]))
    elements.extend([details, Spacer(1, 0.2 * inch)])

    if issuer is not None:
        elements.append(Paragraph("From:", heading_style))
        for line in (issuer.name, issuer.company_name, issuer.company_address, issuer.company_phone):
            if line:
                elements.append(Paragraph(_text(line), normal_style))
        elements.append(Spacer(1, 0.2 * inch))

    elements.append(Paragraph("Bill To:", heading_style))
    for line in (invoice.client_name, invoice.client_email, invoice.client_address, invoice.client_phone):
        if line:
            elements.append(Paragraph(_text(line), normal_style))
    elements.append(Spacer(1, 0.3 * inch))

    rows = [["Description", "Quantity", "Rate", "Tax", "Amount"]]
    for item in invoice.items or []:
        rows.append([
            Paragraph(_text(item.get("description")), normal_style),
            str(item.get("quantity", "")),
            format_money(float(item.get("rate") or 0)),
            f"{float(item.get('tax') or 0):g}%",
            format_money(float(item.get("amount") or 0)),
        ])
    items_table = Table(rows, colWidths=[3 * inch, 0.8 * inch, 1 * inch, 0.7 * inch, 1.1 * inch], repeatRows=1)
    items_table.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, 0), HEADER_BACKGROUND),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 9),
        ("ALIGN", (1, 0), (-1, -1), "RIGHT"),
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
        ("GRID", (0, 0), (-1, -1), 0.5, GRID_COLOR),
        ("BOX", (0, 0), (-1, -1), 1, BRAND_COLOR),
    ]))
    elements.extend([items_table, Spacer(1, 0.2 * inch)])

    totals = Table(
        [
            ["Subtotal:", format_money(invoice.subtotal or 0)],
            ["Tax Total:", format_money(invoice.tax_total or 0)],
            ["Total Amount:", format_money(invoice.total or 0)],
        ],
        colWidths=[5.1 * inch, 1.5 * inch],
    )
    totals.setStyle(TableStyle([
        ("ALIGN", (0, 0), (-1, -1), "RIGHT"),
        ("FONTSIZE", (0, 0), (-1, -1), 10),
        ("FONTNAME", (0, -1), (-1, -1), "Helvetica-Bold"),
        ("LINEABOVE", (1, -1), (1, -1), 1, colors.black),
    ]))
    elements.extend([totals, Spacer(1, 0.3 * inch)])

    if invoice.notes:
        elements.append(Paragraph("Notes:", heading_style))
        elements.append(Paragraph(_text(invoice.notes), normal_style))
        elements.append(Spacer(1, 0.2 * inch))

    if invoice.terms:
        elements.append(Paragraph("Terms and Conditions:", heading_style))
        elements.append(Paragraph(_text(invoice.terms), normal_style))
        elements.append(Spacer(1, 0.2 * inch))

    if signature is not None:
        elements.append(Paragraph("Digital Signature:", heading_style))
        elements.append(signature)
        elements.append(Spacer(1, 0.2 * inch))

    if qr_image is not None:
        qr_image.hAlign = "RIGHT"
        elements.append(qr_image)
        elements.append(Paragraph("Scan to verify this invoice", right_style))

    try:
        doc.build(elements)
    except Exception as e:
        logger.error(
            "Invoice PDF layout failed",
            extra={"invoice_number": invoice.invoice_number, "error": type(e).__name__},
        )
        raise RenderError(f"Could not lay out invoice {invoice.invoice_number}") from e

    pdf = buffer.getvalue()
    logger.info(
        "Rendered invoice PDF",
        extra={"invoice_number": invoice.invoice_number, "size_bytes": len(pdf)},
    )
    return pdf


def pdf_filename(invoice) -> str:
    return f"{invoice.invoice_number}.pdf"
