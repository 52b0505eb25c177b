"""
PDF generation service for invoices and payment receipts.

WHAT: Generates the invoice document sent to clients and a receipt for
each recorded payment, using ReportLab.

WHY: The invoice PDF is the attachment of the Send action and the file an
admin downloads from the dashboard; receipts are handed to clients after a
payment is recorded.

HOW: Uses ReportLab platypus for layout:
- Header with company branding and document number
- Bill-to block and dates
- Line items table, totals table (subtotal, sales tax, shipping, total,
  amount paid, balance due)
- Terms footer
Returns bytes for direct download or email attachment. Nothing is stored.
"""

import io
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_RIGHT
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from billing.core.config import settings
from billing.core.exceptions import DocumentRenderError
from billing.models.invoice import Invoice, InvoiceStatus, Payment

logger = logging.getLogger(__name__)


# ============================================================================
# Configuration
# ============================================================================


@dataclass
class CompanyInfo:
    """Company branding printed on every document."""

    name: str = field(default_factory=lambda: settings.COMPANY_NAME)
    address: str = field(default_factory=lambda: settings.COMPANY_ADDRESS)
    city_state_zip: str = field(default_factory=lambda: settings.COMPANY_CITY_STATE_ZIP)
    country: str = field(default_factory=lambda: settings.COMPANY_COUNTRY)
    phone: str = field(default_factory=lambda: settings.COMPANY_PHONE)
    email: str = field(default_factory=lambda: settings.COMPANY_EMAIL)


STATUS_COLORS = {
    InvoiceStatus.SENT.value: '#3182ce',
    InvoiceStatus.PARTIALLY_PAID.value: '#dd6b20',
    InvoiceStatus.PAID.value: '#38a169',
    InvoiceStatus.DISPUTED.value: '#e53e3e',
    InvoiceStatus.CANCELLED.value: '#718096',
}


# ============================================================================
# PDF Styles
# ============================================================================


def get_styles():
    """
    Get PDF document styles.

    Returns:
        StyleSheet1 with the sample styles plus the billing styles
    """
    styles = getSampleStyleSheet()

    styles.add(ParagraphStyle(
        name='DocumentTitle',
        parent=styles['Heading1'],
        fontSize=24,
        spaceAfter=20,
        textColor=colors.HexColor('#1a365d'),
    ))

    styles.add(ParagraphStyle(
        name='SectionHeader',
        parent=styles['Heading2'],
        fontSize=14,
        spaceBefore=15,
        spaceAfter=10,
        textColor=colors.HexColor('#2d3748'),
    ))

    # 'BodyText' already exists in the sample sheet
    styles.add(ParagraphStyle(
        name='InvoiceBody',
        parent=styles['Normal'],
        fontSize=10,
        spaceBefore=5,
        spaceAfter=5,
    ))

    styles.add(ParagraphStyle(
        name='SmallText',
        parent=styles['Normal'],
        fontSize=8,
        textColor=colors.HexColor('#718096'),
    ))

    styles.add(ParagraphStyle(
        name='RightAlign',
        parent=styles['Normal'],
        fontSize=10,
        alignment=TA_RIGHT,
    ))

    return styles


# ============================================================================
# Helper Functions
# ============================================================================


def format_currency(amount: Any) -> str:
    """
    Format amount as USD currency.

    Args:
        amount: Amount to format (Decimal, float, int, str or None)

    Returns:
        Formatted currency string (e.g., "$1,234.56")
    """
    if amount is None:
        return "$0.00"

    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        return "$0.00"
    if not value.is_finite():
        return "$0.00"
    if value < 0:
        return f"-${-value:,.2f}"
    return f"${value:,.2f}"


def format_date(d: Any) -> str:
    """
    Format date for display.

    Returns:
        Formatted date string (e.g., "January 15, 2024")
    """
    if d is None:
        return ""

    if isinstance(d, datetime):
        d = d.date()

    if isinstance(d, date):
        return d.strftime("%B %d, %Y")

    return str(d)


def _text(value: Optional[str]) -> str:
    """Escape free text for Paragraph markup, keeping line breaks."""
    return escape(value or "").replace("\n", "<br/>")


# ============================================================================
# PDF Service
# ============================================================================


class PDFService:
    """
    Service for generating invoice and receipt PDFs.

    HOW: Uses ReportLab's platypus for document layout.
    """

    def __init__(self, company_info: Optional[CompanyInfo] = None):
        self.company = company_info or CompanyInfo()
        self.styles = get_styles()

    def _new_document(self, buffer: io.BytesIO, title: str) -> SimpleDocTemplate:
        return SimpleDocTemplate(
            buffer,
            pagesize=letter,
            rightMargin=0.75 * inch,
            leftMargin=0.75 * inch,
            topMargin=0.75 * inch,
            bottomMargin=0.75 * inch,
            title=title,
            author=self.company.name,
        )

    def _render(self, elements: List, title: str) -> bytes:
        buffer = io.BytesIO()
        try:
            self._new_document(buffer, title).build(elements)
            return buffer.getvalue()
        except Exception as e:
            logger.error(f"Failed to render PDF {title}: {e}", exc_info=True)
            raise DocumentRenderError(
                message=f"Failed to render {title}",
                document=title,
            ) from e
        finally:
            buffer.close()

    def _build_header(self, doc_type: str, doc_number: str) -> List:
        """
        Build document header with company info.

        Args:
            doc_type: "INVOICE" or "RECEIPT"
            doc_number: Document number for display
        """
        elements = []

        elements.append(Paragraph(escape(self.company.name), self.styles['DocumentTitle']))

        contact_text = (
            f"{escape(self.company.address)}<br/>"
            f"{escape(self.company.city_state_zip)}<br/>"
            f"{escape(self.company.country)}<br/>"
            f"{escape(self.company.phone)} | {escape(self.company.email)}"
        )
        elements.append(Paragraph(contact_text, self.styles['SmallText']))

        elements.append(Spacer(1, 20))

        header_table = Table([[doc_type, doc_number]], colWidths=[3 * inch, 4 * inch])
        header_table.setStyle(TableStyle([
            ('FONTNAME', (0, 0), (0, 0), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (0, 0), 18),
            ('TEXTCOLOR', (0, 0), (0, 0), colors.HexColor('#2563eb')),
            ('ALIGN', (0, 0), (0, 0), 'LEFT'),
            ('FONTNAME', (1, 0), (1, 0), 'Helvetica'),
            ('FONTSIZE', (1, 0), (1, 0), 12),
            ('ALIGN', (1, 0), (1, 0), 'RIGHT'),
            ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
        ]))
        elements.append(header_table)

        elements.append(Spacer(1, 15))

        return elements

    def _client_lines(self, invoice: Invoice) -> List[str]:
        lines = [invoice.client_name or ""]
        if invoice.client_email:
            lines.append(invoice.client_email)
        if invoice.client_phone:
            lines.append(invoice.client_phone)
        if invoice.client_address:
            lines.append(invoice.client_address)
        locality = ", ".join(
            part for part in (invoice.client_city, invoice.client_state, invoice.client_zip) if part
        )
        if locality:
            lines.append(locality)
        if invoice.client_country:
            lines.append(invoice.client_country)
        return lines

    def _build_client_info(self, client_lines: List[str], dates: List[tuple]) -> List:
        """
        Build the bill-to block (left) and the key dates (right).
        """
        left_content = [Paragraph("<b>Bill To:</b>", self.styles['InvoiceBody'])]
        for line in client_lines:
            left_content.append(Paragraph(escape(line), self.styles['InvoiceBody']))

        right_content = [
            Paragraph(f"<b>{label}:</b> {escape(value)}", self.styles['RightAlign'])
            for label, value in dates
        ]

        info_table = Table([[left_content, right_content]], colWidths=[3.5 * inch, 3.5 * inch])
        info_table.setStyle(TableStyle([
            ('VALIGN', (0, 0), (-1, -1), 'TOP'),
            ('ALIGN', (0, 0), (0, 0), 'LEFT'),
            ('ALIGN', (1, 0), (1, 0), 'RIGHT'),
        ]))

        return [info_table, Spacer(1, 20)]

    def _build_line_items_table(self, invoice: Invoice) -> Table:
        """Line items: description, quantity, unit price, amount."""
        data = [['Description', 'Qty', 'Unit Price', 'Amount']]

        for item in invoice.line_items:
            data.append([
                Paragraph(_text(item.description), self.styles['InvoiceBody']),
                str(item.quantity),
                format_currency(item.unit_price),
                format_currency(item.amount),
            ])

        table = Table(data, colWidths=[3.5 * inch, 0.75 * inch, 1.25 * inch, 1.5 * inch])
        table.setStyle(TableStyle([
            # Header row
            ('BACKGROUND', (0, 0), (-1, 0), colors.HexColor('#f7fafc')),
            ('TEXTCOLOR', (0, 0), (-1, 0), colors.HexColor('#2d3748')),
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (-1, 0), 10),
            ('BOTTOMPADDING', (0, 0), (-1, 0), 12),
            ('TOPPADDING', (0, 0), (-1, 0), 12),

            # Data rows
            ('FONTNAME', (0, 1), (-1, -1), 'Helvetica'),
            ('FONTSIZE', (0, 1), (-1, -1), 9),
            ('BOTTOMPADDING', (0, 1), (-1, -1), 8),
            ('TOPPADDING', (0, 1), (-1, -1), 8),

            ('ALIGN', (0, 0), (0, -1), 'LEFT'),
            ('ALIGN', (1, 0), (-1, -1), 'RIGHT'),
            ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),

            ('GRID', (0, 0), (-1, -1), 0.5, colors.HexColor('#e2e8f0')),
            ('ROWBACKGROUNDS', (0, 1), (-1, -1), [colors.white, colors.HexColor('#f7fafc')]),
        ]))

        return table

    def _build_totals_table(self, invoice: Invoice) -> Table:
        """Subtotal, sales tax, shipping, total and, once paid, the balance."""
        data = [
            ['Subtotal', format_currency(invoice.subtotal)],
            ['Sales Tax', format_currency(invoice.sales_tax)],
            ['Shipping', format_currency(invoice.shipping_cost)],
            ['Total', format_currency(invoice.total)],
        ]

        if invoice.amount_paid and invoice.amount_paid > 0:
            data.append(['Amount Paid', f"-{format_currency(invoice.amount_paid)}"])
        data.append(['Balance Due', format_currency(invoice.outstanding_balance)])

        table = Table(data, colWidths=[1.5 * inch, 1.5 * inch])

        style_commands = [
            ('ALIGN', (0, 0), (0, -1), 'RIGHT'),
            ('ALIGN', (1, 0), (1, -1), 'RIGHT'),
            ('FONTNAME', (0, 0), (-1, -1), 'Helvetica'),
            ('FONTSIZE', (0, 0), (-1, -1), 10),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 6),
            ('TOPPADDING', (0, 0), (-1, -1), 6),
        ]

        for i, row in enumerate(data):
            if row[0] in ['Total', 'Balance Due']:
                style_commands.extend([
                    ('FONTNAME', (0, i), (1, i), 'Helvetica-Bold'),
                    ('FONTSIZE', (0, i), (1, i), 12),
                    ('TEXTCOLOR', (0, i), (1, i), colors.HexColor('#1a365d')),
                    ('LINEABOVE', (0, i), (1, i), 1, colors.HexColor('#2d3748')),
                ])

        table.setStyle(TableStyle(style_commands))
        return table

    def _build_footer(self, terms: Optional[str] = None) -> List:
        """Terms and conditions, one paragraph per line."""
        elements = []
        if terms and terms.strip():
            elements.append(Paragraph("<b>Terms & Conditions:</b>", self.styles['SectionHeader']))
            for line in terms.splitlines():
                if line.strip():
                    elements.append(Paragraph(escape(line.strip()), self.styles['SmallText']))
        return elements

    # ========================================================================
    # Invoice PDF Generation
    # ========================================================================

    def generate_invoice_pdf(self, invoice: Invoice) -> bytes:
        """
        Generate the PDF for an invoice.

        Args:
            invoice: Invoice with line items loaded

        Returns:
            PDF file as bytes

        Raises:
            DocumentRenderError: If ReportLab fails to build the document
        """
        elements = []

        elements.extend(self._build_header("INVOICE", invoice.invoice_number))

        status = InvoiceStatus(invoice.status).value
        if status != InvoiceStatus.DRAFT.value:
            status_color = STATUS_COLORS.get(status, '#718096')
            elements.append(Paragraph(
                f"<font color='{status_color}'><b>STATUS: "
                f"{status.replace('_', ' ').upper()}</b></font>",
                self.styles['InvoiceBody'],
            ))
            elements.append(Spacer(1, 10))

        dates = [
            ('Invoice Date', format_date(invoice.invoice_date)),
            ('Due Date', format_date(invoice.due_date)),
        ]
        elements.extend(self._build_client_info(self._client_lines(invoice), dates))

        elements.append(self._build_line_items_table(invoice))
        elements.append(Spacer(1, 20))

        totals_layout = Table(
            [['', self._build_totals_table(invoice)]],
            colWidths=[4 * inch, 3 * inch],
        )
        totals_layout.setStyle(TableStyle([
            ('ALIGN', (1, 0), (1, 0), 'RIGHT'),
            ('VALIGN', (0, 0), (-1, -1), 'TOP'),
        ]))
        elements.append(totals_layout)
        elements.append(Spacer(1, 20))

        elements.extend(self._build_footer(terms=invoice.terms))

        pdf_bytes = self._render(elements, f"Invoice {invoice.invoice_number}")
        logger.info(f"Generated invoice PDF: {invoice.invoice_number}")
        return pdf_bytes

    # ========================================================================
    # Receipt PDF Generation
    # ========================================================================

    def generate_receipt_pdf(self, payment: Payment, invoice: Invoice) -> bytes:
        """
        Generate a payment receipt.

        Lists the invoice, client, payment date, method, amount paid, the
        invoice total and, when present, the payment reference and notes.
        """
        elements = []
        elements.extend(self._build_header("RECEIPT", invoice.invoice_number))
        elements.append(Paragraph("Payment Receipt", self.styles['SectionHeader']))

        rows = [
            ['Invoice', invoice.invoice_number],
            ['Client', invoice.client_name or ""],
            ['Payment Date', format_date(payment.payment_date)],
            ['Method', getattr(payment.method, "value", payment.method)],
            ['Amount Paid', format_currency(payment.amount)],
            ['Invoice Total', format_currency(invoice.total)],
        ]
        if payment.reference:
            rows.append(['Reference', payment.reference])
        if payment.notes:
            rows.append(['Notes', Paragraph(_text(payment.notes), self.styles['InvoiceBody'])])

        table = Table(rows, colWidths=[2 * inch, 5 * inch])
        table.setStyle(TableStyle([
            ('FONTNAME', (0, 0), (0, -1), 'Helvetica-Bold'),
            ('FONTNAME', (1, 0), (1, -1), 'Helvetica'),
            ('FONTSIZE', (0, 0), (-1, -1), 10),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 6),
            ('TOPPADDING', (0, 0), (-1, -1), 6),
            ('VALIGN', (0, 0), (-1, -1), 'TOP'),
            ('LINEBELOW', (0, 0), (-1, -1), 0.5, colors.HexColor('#e2e8f0')),
        ]))
        elements.append(table)
        elements.append(Spacer(1, 20))
        elements.append(Paragraph(
            f"Thank you for your payment. Questions? Contact {escape(self.company.email)}.",
            self.styles['SmallText'],
        ))

        pdf_bytes = self._render(elements, f"Receipt {invoice.invoice_number}")
        logger.info(f"Generated receipt PDF for payment {payment.id} on {invoice.invoice_number}")
        return pdf_bytes


# ============================================================================
# Module-level convenience functions
# ============================================================================


_pdf_service: Optional[PDFService] = None


def get_pdf_service() -> PDFService:
    """Get or create the global PDF service instance."""
    global _pdf_service

    if _pdf_service is None:
        _pdf_service = PDFService()

    return _pdf_service
