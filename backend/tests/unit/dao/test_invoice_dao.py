"""
Invoice DAO tests.

WHAT: Tests for invoice loading, the per-month number counter and
payment lookups.

WHY: The counter must hand out each value once, and eager loading must
reflect payments added after the invoice was first read.
"""

from datetime import date, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from billing.dao.invoice import InvoiceDAO, view_clause
from billing.models.invoice import InvoiceStatus, InvoiceView, Payment, PaymentMethod
from billing.services.lifecycle import is_overdue
from tests.factories import InvoiceFactory


@pytest.mark.asyncio
class TestInvoiceNumberSequence:
    async def test_counter_starts_at_one_and_increments(self, db_session: AsyncSession):
        dao = InvoiceDAO(db_session)

        assert await dao.next_invoice_sequence("202603") == 1
        assert await dao.next_invoice_sequence("202603") == 2
        assert await dao.next_invoice_sequence("202603") == 3

    async def test_periods_are_independent(self, db_session: AsyncSession):
        dao = InvoiceDAO(db_session)

        await dao.next_invoice_sequence("202603")
        await dao.next_invoice_sequence("202603")

        assert await dao.next_invoice_sequence("202604") == 1


@pytest.mark.asyncio
class TestInvoiceLoading:
    async def test_get_with_children_reloads_payments(self, db_session: AsyncSession):
        invoice = await InvoiceFactory.create(db_session)
        dao = InvoiceDAO(db_session)

        db_session.add(
            Payment(
                invoice_id=invoice.id,
                amount=5,
                payment_date=date(2026, 3, 1),
                method=PaymentMethod.CASH,
            )
        )
        await db_session.flush()

        reloaded = await dao.get_with_children(invoice.id)
        assert len(reloaded.payments) == 1
        assert len(reloaded.line_items) == 1

    async def test_missing_invoice(self, db_session: AsyncSession):
        assert await InvoiceDAO(db_session).get_with_children(12345) is None

    async def test_get_payment(self, db_session: AsyncSession):
        invoice = await InvoiceFactory.create_with_payments(db_session, ["3"])
        payment_id = invoice.payments[0].id

        payment, owner = await InvoiceDAO(db_session).get_payment(payment_id)

        assert payment.id == payment_id
        assert owner.id == invoice.id
        assert await InvoiceDAO(db_session).get_payment("nope") is None


class TestViewClause:
    def test_all_has_no_filter(self):
        assert view_clause(InvoiceView.ALL, date(2026, 3, 1)) is None

    @pytest.mark.parametrize("view", [v for v in InvoiceView if v != InvoiceView.ALL])
    def test_other_views_filter(self, view):
        assert view_clause(view, date(2026, 3, 1)) is not None


@pytest.mark.asyncio
class TestOverdueView:
    async def test_query_agrees_with_lifecycle(self, db_session: AsyncSession):
        """The overdue tab lists exactly the invoices is_overdue flags."""
        today = date.today()
        past = today - timedelta(days=5)
        invoices = [
            await InvoiceFactory.create(
                db_session, status=status, invoice_date=past, due_date=past
            )
            for status in InvoiceStatus
        ]

        listed, total = await InvoiceDAO(db_session).list_invoices(InvoiceView.OVERDUE, today)

        expected = {invoice.id for invoice in invoices if is_overdue(invoice, today)}
        assert {invoice.id for invoice in listed} == expected
        assert total == 2
