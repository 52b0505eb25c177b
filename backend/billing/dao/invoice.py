"""
Invoice Data Access Object (DAO).

WHAT: Database operations for invoices, their payments and the invoice
number counter.

WHY: Keeps the view filters, the full-text search and the payment-history
join in one place, so the services only deal with Invoice objects.

HOW: Extends BaseDAO with invoice-specific queries:
- Eager loading of line items and payments
- Dashboard view filters (overdue derived from the due date)
- Case-insensitive search over number, client name and email
- Flattened payment history across all active invoices
- Atomic per-month invoice number allocation
"""

from datetime import date
from typing import Any, List, Optional, Sequence, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from billing.dao.base import BaseDAO
from billing.models.invoice import (
    Invoice,
    InvoiceNumberSequence,
    InvoiceStatus,
    InvoiceView,
    Payment,
)
from billing.services.lifecycle import OVERDUE_ELIGIBLE


def view_clause(view: InvoiceView, today: date) -> Optional[Any]:
    """
    WHERE clause selecting the invoices shown under a dashboard tab.

    Returns None for ALL (no filter).
    """
    if view == InvoiceView.ALL:
        return None
    if view == InvoiceView.OVERDUE:
        return Invoice.status.in_(list(OVERDUE_ELIGIBLE)) & (Invoice.due_date < today)
    status = InvoiceStatus(view.value)
    if status in OVERDUE_ELIGIBLE:
        # Overdue invoices are shown only under the overdue tab
        return (Invoice.status == status) & (Invoice.due_date >= today)
    return Invoice.status == status


def search_clause(query: str) -> Any:
    """Case-insensitive substring match over number, client name and email."""
    needle = query.strip().lower()
    return or_(
        func.lower(Invoice.invoice_number).contains(needle, autoescape=True),
        func.lower(Invoice.client_name).contains(needle, autoescape=True),
        func.lower(Invoice.client_email).contains(needle, autoescape=True),
    )


class InvoiceDAO(BaseDAO[Invoice]):
    """
    Data Access Object for the Invoice aggregate.

    Line items and payments load eagerly (selectin) with every invoice.
    """

    def __init__(self, session: AsyncSession):
        super().__init__(Invoice, session)

    async def get_with_children(self, invoice_id: int) -> Optional[Invoice]:
        """
        Load an invoice with fresh line items and payments.

        WHY: After a flush that added payments or replaced items, the
        identity map may still hold the old collections; populate_existing
        reloads them from the database.
        """
        result = await self.session.execute(
            select(Invoice)
            .where(Invoice.id == invoice_id)
            .options(selectinload(Invoice.line_items), selectinload(Invoice.payments))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_invoices(
        self,
        view: InvoiceView,
        today: date,
        search: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> Tuple[List[Invoice], int]:
        """
        List invoices under a view tab, newest first.

        Args:
            view: Dashboard tab
            today: Reference date for the overdue split
            search: Optional search text (blank means no search)
            skip: Pagination offset
            limit: Pagination limit

        Returns:
            Tuple of (page of invoices, total matching count)
        """
        clauses = []
        clause = view_clause(view, today)
        if clause is not None:
            clauses.append(clause)
        if search and search.strip():
            clauses.append(search_clause(search))

        count_query = select(func.count()).select_from(Invoice)
        query = select(Invoice)
        for clause in clauses:
            count_query = count_query.where(clause)
            query = query.where(clause)

        total = int((await self.session.execute(count_query)).scalar_one())
        result = await self.session.execute(
            query.order_by(Invoice.created_at.desc(), Invoice.id.desc()).offset(skip).limit(limit)
        )
        return list(result.scalars().all()), total

    async def get_status_and_due_dates(self) -> Sequence[Tuple[InvoiceStatus, date]]:
        """(status, due_date) of every active invoice, for tab counting."""
        result = await self.session.execute(select(Invoice.status, Invoice.due_date))
        return [(row[0], row[1]) for row in result.all()]

    async def list_paid(self) -> List[Invoice]:
        """All paid invoices, newest first (CSV export)."""
        result = await self.session.execute(
            select(Invoice)
            .where(Invoice.status == InvoiceStatus.PAID)
            .order_by(Invoice.created_at.desc(), Invoice.id.desc())
        )
        return list(result.scalars().all())

    # ========================================================================
    # Payments
    # ========================================================================

    async def count_payments(self) -> int:
        result = await self.session.execute(select(func.count()).select_from(Payment))
        return int(result.scalar_one())

    async def get_payment_history(
        self,
        skip: int,
        limit: int,
    ) -> List[Tuple[Payment, Invoice]]:
        """
        Payments across all active invoices with their invoice.

        Sorted by payment date, most recent first; payments recorded on the
        same date are ordered by entry time, most recent first.
        """
        result = await self.session.execute(
            select(Payment, Invoice)
            .join(Invoice, Payment.invoice_id == Invoice.id)
            .order_by(
                Payment.payment_date.desc(),
                Payment.created_at.desc(),
                Payment.id.desc(),
            )
            .offset(skip)
            .limit(limit)
        )
        return [(row[0], row[1]) for row in result.all()]

    async def get_payment(self, payment_id: str) -> Optional[Tuple[Payment, Invoice]]:
        """A single payment and the invoice it belongs to."""
        result = await self.session.execute(
            select(Payment, Invoice)
            .join(Invoice, Payment.invoice_id == Invoice.id)
            .where(Payment.id == payment_id)
        )
        row = result.first()
        if row is None:
            return None
        return row[0], row[1]

    # ========================================================================
    # Invoice numbers
    # ========================================================================

    async def next_invoice_sequence(self, period: str) -> int:
        """
        Allocate the next sequence value for a YYYYMM period.

        HOW: A single INSERT ... ON CONFLICT DO UPDATE ... RETURNING
        statement: the first invoice of a month creates the counter row at
        1, later ones increment it. The database serializes concurrent
        callers on the row, so values are never handed out twice.
        """
        dialect = self.session.get_bind().dialect.name
        insert = pg_insert if dialect == "postgresql" else sqlite_insert

        stmt = insert(InvoiceNumberSequence).values(period=period, last_value=1)
        stmt = stmt.on_conflict_do_update(
            index_elements=[InvoiceNumberSequence.period],
            set_={"last_value": InvoiceNumberSequence.last_value + 1},
        ).returning(InvoiceNumberSequence.last_value)

        result = await self.session.execute(stmt)
        return int(result.scalar_one())
