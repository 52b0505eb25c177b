"""
Payment Ledger tests.

WHAT: Tests for recording payments and promoting invoice status.

WHY: The ledger is where concurrent writers meet. These tests ensure:
- Non-positive amounts are rejected with no mutation
- amount_paid is the sum of payment rows
- Status moves to partially_paid / paid, paid stays paid
- Overpayment is absorbed (outstanding floors at zero)
- A stale invoice version is rejected instead of overwriting
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import event, update
from sqlalchemy.ext.asyncio import AsyncSession

from billing.core.exceptions import (
    ConcurrencyConflictError,
    InvalidStateTransitionError,
    InvoiceNotFoundError,
    ValidationError,
)
from billing.models.invoice import Invoice, InvoiceStatus, PaymentMethod
from billing.services.payment_ledger import PaymentLedger
from tests.factories import InvoiceFactory


@pytest.mark.asyncio
class TestApplyPayment:
    """Tests for PaymentLedger.apply_payment."""

    async def test_partial_then_full_payment(self, db_session: AsyncSession):
        """
        $31.66 invoice: $10 leaves 21.66 partially paid, $21.66 pays it off.
        """
        invoice = await InvoiceFactory.create(db_session, status=InvoiceStatus.SENT)
        assert invoice.total == Decimal("31.66")
        ledger = PaymentLedger(db_session)

        invoice, payment = await ledger.apply_payment(invoice.id, "10", method=PaymentMethod.ZELLE)
        assert invoice.status == InvoiceStatus.PARTIALLY_PAID
        assert invoice.amount_paid == Decimal("10.00")
        assert invoice.outstanding_balance == Decimal("21.66")
        assert payment.method == PaymentMethod.ZELLE

        invoice, _ = await ledger.apply_payment(invoice.id, "21.66", method=PaymentMethod.ACH)
        assert invoice.status == InvoiceStatus.PAID
        assert invoice.amount_paid == Decimal("31.66")
        assert invoice.outstanding_balance == Decimal("0.00")
        assert len(invoice.payments) == 2

    async def test_payment_fields_are_recorded(self, db_session: AsyncSession):
        invoice = await InvoiceFactory.create(db_session, status=InvoiceStatus.SENT)
        invoice, payment = await PaymentLedger(db_session).apply_payment(
            invoice.id,
            Decimal("5.50"),
            method=PaymentMethod.WIRE,
            payment_date=date(2026, 1, 15),
            reference="  WIRE-778  ",
            notes="",
        )
        assert payment.payment_date == date(2026, 1, 15)
        assert payment.reference == "WIRE-778"
        assert payment.notes is None
        assert payment.invoice_id == invoice.id

    @pytest.mark.parametrize("amount", [0, "-5", "", "abc"])
    async def test_non_positive_amount_rejected(self, db_session: AsyncSession, amount):
        invoice = await InvoiceFactory.create(db_session, status=InvoiceStatus.SENT)
        version = invoice.version

        with pytest.raises(ValidationError):
            await PaymentLedger(db_session).apply_payment(invoice.id, amount)

        await db_session.refresh(invoice)
        assert invoice.amount_paid == Decimal("0.00")
        assert invoice.status == InvoiceStatus.SENT
        assert invoice.version == version

    async def test_draft_cannot_take_payment(self, db_session: AsyncSession):
        invoice = await InvoiceFactory.create(db_session, status=InvoiceStatus.DRAFT)
        with pytest.raises(InvalidStateTransitionError):
            await PaymentLedger(db_session).apply_payment(invoice.id, "10")

    async def test_cancelled_cannot_take_payment(self, db_session: AsyncSession):
        invoice = await InvoiceFactory.create(db_session, status=InvoiceStatus.CANCELLED)
        with pytest.raises(InvalidStateTransitionError):
            await PaymentLedger(db_session).apply_payment(invoice.id, "10")

    async def test_missing_invoice(self, db_session: AsyncSession):
        with pytest.raises(InvoiceNotFoundError):
            await PaymentLedger(db_session).apply_payment(999, "10")

    async def test_overpayment_is_absorbed(self, db_session: AsyncSession):
        invoice = await InvoiceFactory.create(db_session, status=InvoiceStatus.SENT)
        invoice, _ = await PaymentLedger(db_session).apply_payment(invoice.id, "40")

        assert invoice.status == InvoiceStatus.PAID
        assert invoice.amount_paid == Decimal("40.00")
        assert invoice.outstanding_balance == Decimal("0.00")
        assert invoice.credit_balance == Decimal("8.34")

    async def test_paid_invoice_stays_paid(self, db_session: AsyncSession):
        invoice = await InvoiceFactory.create_with_payments(db_session, ["31.66"])
        assert invoice.status == InvoiceStatus.PAID

        invoice, _ = await PaymentLedger(db_session).apply_payment(invoice.id, "1")
        assert invoice.status == InvoiceStatus.PAID
        assert invoice.amount_paid == Decimal("32.66")

    async def test_amount_paid_is_sum_of_rows(self, db_session: AsyncSession):
        """
        A stored amount_paid that drifted is corrected by the next payment.
        """
        invoice = await InvoiceFactory.create_with_payments(db_session, ["3", "4"])
        invoice.amount_paid = Decimal("100")
        await db_session.flush()

        invoice, _ = await PaymentLedger(db_session).apply_payment(invoice.id, "1")
        assert invoice.amount_paid == Decimal("8.00")
        assert invoice.outstanding_balance == Decimal("23.66")

    async def test_partial_payment_entry(self, db_session: AsyncSession):
        invoice = await InvoiceFactory.create(db_session, status=InvoiceStatus.SENT)
        invoice, payment = await PaymentLedger(db_session).record_partial_payment(invoice.id, "12")

        assert payment.method == PaymentMethod.OTHER
        assert payment.payment_date == date.today()
        assert invoice.status == InvoiceStatus.PARTIALLY_PAID


@pytest.mark.asyncio
class TestConcurrency:
    """Tests for lost-update protection."""

    async def test_stale_expected_version_rejected(self, db_session: AsyncSession):
        invoice = await InvoiceFactory.create(db_session, status=InvoiceStatus.SENT)
        seen_version = invoice.version
        ledger = PaymentLedger(db_session)

        await ledger.apply_payment(invoice.id, "10", expected_version=seen_version)

        with pytest.raises(ConcurrencyConflictError) as exc_info:
            await ledger.apply_payment(invoice.id, "10", expected_version=seen_version)
        assert exc_info.value.status_code == 409

    async def test_concurrent_write_during_flush_rejected(self, db_session: AsyncSession):
        """
        Another writer bumps the version between read and write; the
        guarded UPDATE matches no row and the payment is refused.
        """
        invoice = await InvoiceFactory.create(db_session, status=InvoiceStatus.SENT)
        invoice_id = invoice.id
        state = {"fired": False}

        def concurrent_writer(session, flush_context, instances):
            if state["fired"]:
                return
            state["fired"] = True
            session.execute(
                update(Invoice.__table__)
                .where(Invoice.__table__.c.id == invoice_id)
                .values(version=Invoice.__table__.c.version + 1)
            )

        event.listen(db_session.sync_session, "before_flush", concurrent_writer)
        try:
            with pytest.raises(ConcurrencyConflictError):
                await PaymentLedger(db_session).apply_payment(invoice_id, "10")
        finally:
            event.remove(db_session.sync_session, "before_flush", concurrent_writer)
