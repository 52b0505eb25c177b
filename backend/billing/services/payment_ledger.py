"""
Payment Ledger.

WHAT: Records payments against invoices and keeps the paid amount,
outstanding balance and status in step with them.

WHY: A payment is the one write that two admins may make on the same
invoice at the same time. Recomputing amount_paid from the payment rows
and guarding the invoice UPDATE with its version token means neither
payment can be lost: the second writer gets a ConcurrencyConflictError
and retries on fresh data.

HOW:
1. Reject non-positive amounts before touching anything
2. Check the invoice version the caller last saw (optional)
3. Check the lifecycle allows a payment
4. Append the Payment, recompute amount_paid = sum(payments)
5. Promote status to partially_paid / paid
6. Flush; a stale version surfaces as ConcurrencyConflictError
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from billing.core.exceptions import (
    ConcurrencyConflictError,
    InvoiceNotFoundError,
    ValidationError,
)
from billing.dao.invoice import InvoiceDAO
from billing.models.invoice import Invoice, InvoiceStatus, Payment, PaymentMethod
from billing.services.lifecycle import InvoiceAction, assert_transition, status_after_payment
from billing.services.totals import ZERO, coerce_decimal, quantize_money

logger = logging.getLogger(__name__)


def settle_payment(invoice: Invoice) -> Decimal:
    """
    Recompute amount_paid, outstanding balance and status from payments.

    A paid invoice stays paid. Money received beyond the total is kept in
    amount_paid; the outstanding balance floors at zero.

    Returns:
        The overpaid amount (zero when not overpaid)
    """
    paid = quantize_money(sum((p.amount for p in invoice.payments), ZERO))
    total = quantize_money(invoice.total or ZERO)
    outstanding = quantize_money(total - paid)
    overpaid = ZERO
    if outstanding < 0:
        overpaid = -outstanding
        outstanding = ZERO

    invoice.amount_paid = paid
    invoice.outstanding_balance = outstanding
    if InvoiceStatus(invoice.status) != InvoiceStatus.PAID:
        invoice.status = status_after_payment(outstanding)
    return overpaid


class PaymentLedger:
    """
    Append-only payment recording for invoices.

    Payments cannot be edited or removed once recorded.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.invoice_dao = InvoiceDAO(session)

    async def _require_invoice(self, invoice_id: int) -> Invoice:
        invoice = await self.invoice_dao.get_with_children(invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(invoice_id=invoice_id)
        return invoice

    async def apply_payment(
        self,
        invoice_id: int,
        amount: Any,
        method: PaymentMethod = PaymentMethod.OTHER,
        payment_date: Optional[date] = None,
        reference: Optional[str] = None,
        notes: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> Tuple[Invoice, Payment]:
        """
        Record a payment against an invoice.

        Args:
            invoice_id: Invoice being paid
            amount: Payment amount, must be > 0
            method: Zelle, ACH, Wire, Cash or Other
            payment_date: Date the money was received (defaults to today)
            reference: Bank / transfer reference
            notes: Free-text notes
            expected_version: Invoice version the caller last read

        Returns:
            Tuple of (updated invoice, recorded payment)

        Raises:
            ValidationError: If the amount is not positive
            InvoiceNotFoundError: If the invoice does not exist
            InvalidStateTransitionError: If the invoice cannot take payments
            ConcurrencyConflictError: If the invoice changed since it was read
        """
        value = quantize_money(coerce_decimal(amount))
        if value <= 0:
            raise ValidationError(
                message="Payment amount must be greater than zero",
                amount=str(amount),
            )

        invoice = await self._require_invoice(invoice_id)

        if expected_version is not None and invoice.version != expected_version:
            raise ConcurrencyConflictError(
                invoice_id=invoice_id,
                expected_version=expected_version,
                current_version=invoice.version,
            )

        assert_transition(invoice, InvoiceAction.APPLY_PAYMENT)

        previous_status = InvoiceStatus(invoice.status)
        payment = Payment(
            amount=value,
            payment_date=payment_date or date.today(),
            method=PaymentMethod(method),
            reference=(reference or "").strip() or None,
            notes=(notes or "").strip() or None,
        )
        invoice.payments.append(payment)
        overpaid = settle_payment(invoice)

        try:
            await self.session.flush()
        except StaleDataError as e:
            logger.warning(
                f"Concurrent update on invoice {invoice_id} while recording payment",
                extra={"invoice_id": invoice_id},
            )
            raise ConcurrencyConflictError(invoice_id=invoice_id) from e

        logger.info(
            f"Recorded {payment.method.value} payment of {value} on invoice "
            f"{invoice.invoice_number} ({previous_status.value} -> {invoice.status.value})",
            extra={
                "invoice_id": invoice.id,
                "payment_id": payment.id,
                "amount": str(value),
            },
        )
        if overpaid > 0:
            logger.warning(
                f"Invoice {invoice.invoice_number} overpaid by {overpaid}",
                extra={"invoice_id": invoice.id, "overpaid": str(overpaid)},
            )

        refreshed = await self.invoice_dao.get_with_children(invoice.id)
        return refreshed, payment

    async def record_partial_payment(
        self,
        invoice_id: int,
        amount: Any,
        expected_version: Optional[int] = None,
    ) -> Tuple[Invoice, Payment]:
        """
        Quick entry of a partial amount: method Other, dated today.
        """
        return await self.apply_payment(
            invoice_id,
            amount,
            method=PaymentMethod.OTHER,
            payment_date=date.today(),
            expected_version=expected_version,
        )
