"""
Invoice PDF Generator
Renders a branded invoice (FACTURA) with line items, IVA totals and page numbers
"""

import io
import logging
from datetime import date, datetime
from typing import Optional
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from ..config import (
    COMPANY_ADDRESS,
    COMPANY_EMAIL,
    COMPANY_NAME,
    COMPANY_PHONE,
    COMPANY_TAX_ID,
)
from ..domain.billing.pricing import format_currency

logger = logging.getLogger(__name__)

STATUS_LABELS = {
    "draft": "Borrador",
    "sent": "Enviada",
    "paid": "Pagada",
    "overdue": "Vencida",
    "cancelled": "Cancelada",
    "refunded": "Reembolsada",
}

TERMS_TEXT = (
    "Pago a 30 días a partir de la fecha de emisión. "
    "Los pagos se procesan de forma segura a través de nuestra plataforma."
)


def default_company_info() -> dict:
    return {
        "name": COMPANY_NAME,
        "address": COMPANY_ADDRESS,
        "email": COMPANY_EMAIL,
        "phone": COMPANY_PHONE,
        "tax_id": COMPANY_TAX_ID,
    }


def _format_date(value) -> str:
    if value is None:
        return "N/A"
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if isinstance(value, (datetime, date)):
        return value.strftime("%d/%m/%Y")
    return str(value)


def invoice_to_pdf_data(invoice) -> dict:
    """Flatten an Invoice ORM row (with items loaded) into the renderer's input"""
    return {
        "invoice_number": invoice.invoice_number,
        "status": invoice.status,
        "currency": invoice.currency,
        "subtotal": invoice.subtotal,
        "tax_amount": invoice.tax_amount,
        "total_amount": invoice.total_amount,
        "created_at": invoice.created_at,
        "due_date": invoice.due_date,
        "notes": invoice.notes,
        "customer_info": invoice.customer_info or {},
        "company_info": invoice.company_info or default_company_info(),
        "items": [
            {
                "description": item.description,
                "quantity": item.quantity,
                "unit_price": item.unit_price,
                "amount": item.amount,
            }
            for item in invoice.items
        ],
    }


class InvoicePDFGenerator:
    """Generate invoice PDFs from a plain invoice dict"""

    def __init__(self, invoice_data: dict):
        self.invoice = invoice_data
        self.currency = invoice_data.get("currency") or "MXN"

        # PDF settings
        self.page_width, self.page_height = letter
        self.margin = 0.75 * inch
        self.content_width = self.page_width - (2 * self.margin)

        # Brand color (blue)
        self.brand_color = colors.HexColor("#2563eb")
        self.dark_gray = colors.HexColor("#1e293b")
        self.light_gray = colors.HexColor("#f1f5f9")

    def generate(self) -> bytes:
        """Generate PDF and return bytes"""
        number = self.invoice.get("invoice_number", "")
        logger.info(f"📄 Generating invoice PDF {number}")

        buffer = io.BytesIO()

        # invariant keeps the output byte-identical for identical input
        doc = SimpleDocTemplate(
            buffer,
            pagesize=letter,
            rightMargin=self.margin,
            leftMargin=self.margin,
            topMargin=self.margin,
            bottomMargin=self.margin,
            title=f"Factura {number}",
            author=self._company().get("name") or COMPANY_NAME,
            subject="Factura",
            creator=COMPANY_NAME,
            invariant=1,
        )

        story = []
        styles = getSampleStyleSheet()

        title_style = ParagraphStyle(
            "InvoiceTitle",
            parent=styles["Heading1"],
            fontSize=24,
            textColor=self.brand_color,
            spaceAfter=12,
            alignment=2,  # Right
        )

        heading_style = ParagraphStyle(
            "InvoiceHeading",
            parent=styles["Heading2"],
            fontSize=12,
            textColor=self.dark_gray,
            spaceAfter=6,
            spaceBefore=14,
        )

        body_style = ParagraphStyle(
            "InvoiceBody",
            parent=styles["Normal"],
            fontSize=9,
            textColor=self.dark_gray,
            leading=12,
        )

        # Company header
        company = self._company()
        company_lines = [f"<b>{escape(company.get('name') or '')}</b>"]
        for key in ("address", "email", "phone"):
            if company.get(key):
                company_lines.append(escape(str(company[key])))
        if company.get("tax_id"):
            company_lines.append(f"RFC: {escape(str(company['tax_id']))}")

        header_table = Table(
            [[Paragraph("<br/>".join(company_lines), body_style), Paragraph("FACTURA", title_style)]],
            colWidths=[self.content_width * 0.6, self.content_width * 0.4],
        )
        header_table.setStyle(TableStyle([("VALIGN", (0, 0), (-1, -1), "TOP")]))
        story.append(header_table)
        story.append(Spacer(1, 0.25 * inch))

        # Invoice metadata
        status = self.invoice.get("status") or "draft"
        info_data = [
            ["Número de factura:", number],
            ["Fecha de emisión:", _format_date(self.invoice.get("created_at"))],
            ["Fecha de vencimiento:", _format_date(self.invoice.get("due_date"))],
            ["Estado:", STATUS_LABELS.get(status, status)],
        ]
        info_table = Table(info_data, colWidths=[1.8 * inch, 4.2 * inch])
        info_table.setStyle(
            TableStyle(
                [
                    ("FONT", (0, 0), (0, -1), "Helvetica-Bold", 10),
                    ("FONT", (1, 0), (1, -1), "Helvetica", 10),
                    ("TEXTCOLOR", (0, 0), (-1, -1), self.dark_gray),
                    ("VALIGN", (0, 0), (-1, -1), "TOP"),
                    ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
                ]
            )
        )
        story.append(info_table)

        # Customer block
        customer = self.invoice.get("customer_info") or {}
        story.append(Paragraph("FACTURAR A", heading_style))
        customer_lines = [f"<b>{escape(customer.get('name') or 'Cliente')}</b>"]
        for key in ("email", "phone", "address"):
            if customer.get(key):
                customer_lines.append(escape(str(customer[key])))
        story.append(Paragraph("<br/>".join(customer_lines), body_style))
        story.append(Spacer(1, 0.3 * inch))

        # Line items
        story.append(self._items_table(body_style))
        story.append(Spacer(1, 0.2 * inch))

        # Totals
        totals_data = [
            ["Subtotal:", format_currency(self.invoice.get("subtotal"), self.currency)],
            ["IVA (16%):", format_currency(self.invoice.get("tax_amount"), self.currency)],
            ["Total:", format_currency(self.invoice.get("total_amount"), self.currency)],
        ]
        totals_table = Table(
            totals_data,
            colWidths=[1.4 * inch, 1.8 * inch],
            hAlign="RIGHT",
        )
        totals_table.setStyle(
            TableStyle(
                [
                    ("FONT", (0, 0), (-1, -2), "Helvetica", 10),
                    ("FONT", (0, -1), (-1, -1), "Helvetica-Bold", 12),
                    ("TEXTCOLOR", (0, 0), (-1, -1), self.dark_gray),
                    ("TEXTCOLOR", (0, -1), (-1, -1), self.brand_color),
                    ("ALIGN", (0, 0), (-1, -1), "RIGHT"),
                    ("LINEABOVE", (0, -1), (-1, -1), 1, self.brand_color),
                    ("TOPPADDING", (0, 0), (-1, -1), 4),
                    ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
                ]
            )
        )
        story.append(totals_table)

        # Notes
        notes: Optional[str] = self.invoice.get("notes")
        if notes:
            story.append(Paragraph("NOTAS", heading_style))
            story.append(Paragraph(escape(notes), body_style))

        # Terms and footer
        story.append(Paragraph("TÉRMINOS Y CONDICIONES", heading_style))
        story.append(Paragraph(TERMS_TEXT, body_style))
        story.append(Spacer(1, 0.4 * inch))
        story.append(
            Paragraph(
                f"<i>Gracias por confiar en {escape(company.get('name') or COMPANY_NAME)}.</i>",
                ParagraphStyle(
                    "Footer",
                    parent=body_style,
                    fontSize=8,
                    textColor=colors.grey,
                    alignment=1,
                ),
            )
        )

        doc.build(story, onFirstPage=self._add_page_number, onLaterPages=self._add_page_number)

        pdf_bytes = buffer.getvalue()
        buffer.close()

        logger.info(f"✅ Generated invoice PDF {number} ({len(pdf_bytes)} bytes)")
        return pdf_bytes

    def _company(self) -> dict:
        return self.invoice.get("company_info") or default_company_info()

    def _items_table(self, body_style) -> Table:
        """Line item table; the header row repeats on every page"""
        table_data = [["Descripción", "Cantidad", "Precio Unitario", "Total"]]
        for item in self.invoice.get("items", []):
            table_data.append(
                [
                    Paragraph(escape(item.get("description") or ""), body_style),
                    str(item.get("quantity", 0)),
                    format_currency(item.get("unit_price"), self.currency),
                    format_currency(item.get("amount"), self.currency),
                ]
            )

        items_table = Table(
            table_data,
            colWidths=[3.0 * inch, 0.9 * inch, 1.5 * inch, 1.6 * inch],
            repeatRows=1,
        )
        items_table.setStyle(
            TableStyle(
                [
                    # Header row
                    ("BACKGROUND", (0, 0), (-1, 0), self.brand_color),
                    ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
                    ("FONT", (0, 0), (-1, 0), "Helvetica-Bold", 10),
                    ("BOTTOMPADDING", (0, 0), (-1, 0), 8),
                    ("TOPPADDING", (0, 0), (-1, 0), 8),
                    # Data rows
                    ("FONT", (0, 1), (-1, -1), "Helvetica", 9),
                    ("TEXTCOLOR", (0, 1), (-1, -1), self.dark_gray),
                    ("ALIGN", (1, 0), (-1, -1), "RIGHT"),
                    ("VALIGN", (0, 1), (-1, -1), "TOP"),
                    ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, self.light_gray]),
                    ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
                    ("LEFTPADDING", (0, 0), (-1, -1), 6),
                    ("RIGHTPADDING", (0, 0), (-1, -1), 6),
                ]
            )
        )
        return items_table

    def _add_page_number(self, canvas_obj, doc):
        """Add page numbers to PDF"""
        page_num = canvas_obj.getPageNumber()
        text = f"Página {page_num}"
        canvas_obj.setFont("Helvetica", 9)
        canvas_obj.setFillColor(colors.grey)
        canvas_obj.drawRightString(self.page_width - self.margin, self.margin / 2, text)
