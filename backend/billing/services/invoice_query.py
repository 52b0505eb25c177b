"""
Invoice query service.

WHAT: Read side of the billing dashboard: invoice lists per tab, search,
per-tab counts, the payment history report, the paid-invoice CSV export
and payment receipts.

WHY: Every list is filtered by a view whose "overdue" tab is derived from
the due date at read time. Keeping the reads here leaves InvoiceService
with the writes only.

HOW: Filtering and pagination run in SQL through InvoiceDAO; tab counts
classify (status, due_date) pairs with the same lifecycle rule used for
display so each invoice is counted in exactly one tab.
"""

import csv
import io
import logging
import math
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from billing.core.config import settings
from billing.core.exceptions import PaymentNotFoundError
from billing.dao.invoice import InvoiceDAO
from billing.models.invoice import Invoice, InvoiceView, Payment
from billing.services.lifecycle import view_for
from billing.services.pdf_service import PDFService, get_pdf_service

logger = logging.getLogger(__name__)

PAID_CSV_COLUMNS = [
    "Invoice Number",
    "Client Name",
    "Client Email",
    "Invoice Date",
    "Due Date",
    "Total",
    "Amount Paid",
    "Outstanding Balance",
    "Payment Count",
    "Last Payment Date",
]


@dataclass(frozen=True)
class PaymentHistoryRow:
    """A payment flattened with the invoice it was recorded on."""

    payment: Payment
    invoice_id: int
    invoice_number: str
    client_name: str
    invoice_total: Decimal


@dataclass(frozen=True)
class PaymentHistoryPage:
    rows: List[PaymentHistoryRow]
    page: int
    page_size: int
    total: int
    total_pages: int


class InvoiceQueryService:
    """
    Read-only queries over active invoices and their payments.

    Example:
        query = InvoiceQueryService(db)
        invoices, total = await query.list_by_view(InvoiceView.OVERDUE)
    """

    def __init__(self, session: AsyncSession, pdf_service: Optional[PDFService] = None):
        self.session = session
        self.invoice_dao = InvoiceDAO(session)
        self.pdf_service = pdf_service or get_pdf_service()

    async def list_by_view(
        self,
        view: InvoiceView = InvoiceView.ALL,
        search: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
        today: Optional[date] = None,
    ) -> Tuple[List[Invoice], int]:
        """
        Invoices shown under a dashboard tab, optionally narrowed by search.

        Args:
            view: Dashboard tab
            search: Case-insensitive text matched against invoice number,
                client name and client email
            skip: Pagination offset
            limit: Pagination limit
            today: Reference date for the overdue tab (defaults to today)

        Returns:
            Tuple of (page of invoices newest first, total matching count)
        """
        return await self.invoice_dao.list_invoices(
            InvoiceView(view),
            today or date.today(),
            search=search,
            skip=skip,
            limit=limit,
        )

    async def search(self, query: str, skip: int = 0, limit: int = 100) -> List[Invoice]:
        """Search across all tabs."""
        invoices, _ = await self.list_by_view(InvoiceView.ALL, search=query, skip=skip, limit=limit)
        return invoices

    async def status_counts(self, today: Optional[date] = None) -> Dict[str, int]:
        """
        Number of invoices under each dashboard tab.

        Returns:
            Mapping of every view value ("all" included) to its count
        """
        today = today or date.today()
        counts = {view.value: 0 for view in InvoiceView}
        for status, due_date in await self.invoice_dao.get_status_and_due_dates():
            counts[view_for(status, due_date, today).value] += 1
            counts[InvoiceView.ALL.value] += 1
        return counts

    async def payment_history(
        self,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> PaymentHistoryPage:
        """
        Payments across all active invoices, most recent first.

        Args:
            page: 1-based page number (values below 1 are treated as 1)
            page_size: Rows per page (defaults to PAYMENT_HISTORY_PAGE_SIZE)
        """
        page_size = page_size or settings.PAYMENT_HISTORY_PAGE_SIZE
        page = max(page, 1)

        total = await self.invoice_dao.count_payments()
        rows = await self.invoice_dao.get_payment_history(
            skip=(page - 1) * page_size,
            limit=page_size,
        )
        return PaymentHistoryPage(
            rows=[
                PaymentHistoryRow(
                    payment=payment,
                    invoice_id=invoice.id,
                    invoice_number=invoice.invoice_number,
                    client_name=invoice.client_name,
                    invoice_total=invoice.total,
                )
                for payment, invoice in rows
            ],
            page=page,
            page_size=page_size,
            total=total,
            total_pages=math.ceil(total / page_size) if total else 0,
        )

    async def export_paid_csv(self) -> str:
        """
        CSV of every paid invoice with its payment summary.

        Returns:
            CSV text with a header row
        """
        invoices = await self.invoice_dao.list_paid()

        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(PAID_CSV_COLUMNS)
        for invoice in invoices:
            last_payment = invoice.last_payment
            writer.writerow(
                [
                    invoice.invoice_number,
                    invoice.client_name,
                    invoice.client_email,
                    invoice.invoice_date.isoformat(),
                    invoice.due_date.isoformat(),
                    f"{invoice.total:.2f}",
                    f"{invoice.amount_paid:.2f}",
                    f"{invoice.outstanding_balance:.2f}",
                    len(invoice.payments),
                    last_payment.payment_date.isoformat() if last_payment else "",
                ]
            )

        logger.info(f"Exported {len(invoices)} paid invoices to CSV")
        return buffer.getvalue()

    async def get_payment(self, payment_id: str) -> Tuple[Payment, Invoice]:
        found = await self.invoice_dao.get_payment(payment_id)
        if found is None:
            raise PaymentNotFoundError(payment_id=payment_id)
        return found

    async def get_receipt_pdf(self, payment_id: str) -> Tuple[Payment, Invoice, bytes]:
        """
        Render the receipt for a recorded payment.

        Raises:
            PaymentNotFoundError: If no active invoice holds the payment
            DocumentRenderError: If rendering fails
        """
        payment, invoice = await self.get_payment(payment_id)
        return payment, invoice, self.pdf_service.generate_receipt_pdf(payment, invoice)
