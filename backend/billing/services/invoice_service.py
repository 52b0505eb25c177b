"""
Invoice Service.

WHAT: Business logic for the invoice lifecycle: create, edit, send,
payments, dispute, resolve and cancel.

WHY: The service layer:
1. Runs line items through the calculator and composer on every save
2. Checks every action against the lifecycle before writing
3. Delivers invoices by email before marking them sent
4. Records an audit event for each action

HOW: Orchestrates InvoiceDAO, PaymentLedger, PDFService and EmailService.
Every write flushes inside the request transaction, so a failure anywhere
rolls back the whole action.
"""

import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Iterable, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from billing.core.config import settings
from billing.core.deps import Actor
from billing.core.exceptions import (
    ConcurrencyConflictError,
    InvoiceNotFoundError,
    ValidationError,
)
from billing.dao.invoice import InvoiceDAO
from billing.models.audit_log import AuditAction
from billing.models.base import utcnow
from billing.models.invoice import (
    DisputeStatus,
    Invoice,
    InvoiceLineItem,
    InvoiceStatus,
    Payment,
    PaymentMethod,
    TaxMode,
    default_terms,
)
from billing.services.audit import AuditService
from billing.services.email import EmailAttachment, EmailService, get_email_service
from billing.services.lifecycle import InvoiceAction, assert_transition
from billing.services.payment_ledger import PaymentLedger
from billing.services.pdf_service import PDFService, get_pdf_service
from billing.services.totals import (
    Totals,
    calculate_line_items,
    compose_totals,
    compute_totals,
    resolve_tax_policy,
)

logger = logging.getLogger(__name__)

CLIENT_FIELDS = (
    "client_name",
    "client_email",
    "client_phone",
    "client_address",
    "client_city",
    "client_state",
    "client_zip",
    "client_country",
)


def format_invoice_number(period: str, sequence: int) -> str:
    """INV-YYYYMM-NNN; the sequence widens past 999."""
    return f"INV-{period}-{sequence:03d}"


def _status_value(invoice: Invoice) -> str:
    return InvoiceStatus(invoice.status).value


class InvoiceService:
    """
    Service for invoice lifecycle operations.

    Example:
        service = InvoiceService(db)
        invoice = await service.create_invoice(
            actor, line_items=[{"description": "Prep", "quantity": 1, "unit_price": "25"}],
            shipping_cost="5", client_name="Acme", client_email="ap@acme.test",
        )
        invoice = await service.send(invoice.id, actor=actor)
    """

    def __init__(
        self,
        session: AsyncSession,
        pdf_service: Optional[PDFService] = None,
        email_service: Optional[EmailService] = None,
    ):
        """
        Args:
            session: Async database session
            pdf_service: Invoice renderer (defaults to the global instance)
            email_service: Mail collaborator (defaults to the global instance)
        """
        self.session = session
        self.invoice_dao = InvoiceDAO(session)
        self.ledger = PaymentLedger(session)
        self.audit = AuditService(session)
        self.pdf_service = pdf_service or get_pdf_service()
        self.email_service = email_service or get_email_service()

    # ========================================================================
    # Reads
    # ========================================================================

    async def get_invoice(self, invoice_id: int) -> Invoice:
        """
        Raises:
            InvoiceNotFoundError: If the invoice is not in the active set
        """
        invoice = await self.invoice_dao.get_with_children(invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(invoice_id=invoice_id)
        return invoice

    @staticmethod
    def compute_totals(
        items: Iterable[Any],
        tax_override: Optional[Any] = None,
        shipping_cost: Any = 0,
    ) -> Totals:
        """Preview of the totals a save would persist."""
        return compute_totals(items, tax_override=tax_override, shipping_cost=shipping_cost)

    def render_pdf(self, invoice: Invoice) -> bytes:
        return self.pdf_service.generate_invoice_pdf(invoice)

    # ========================================================================
    # Create / edit
    # ========================================================================

    def _replace_line_items(self, invoice: Invoice, items: Iterable[Any]) -> Decimal:
        calculated, subtotal = calculate_line_items(items)
        invoice.line_items = [
            InvoiceLineItem(
                position=position,
                description=item.description,
                quantity=item.quantity,
                unit_price=item.unit_price,
                amount=item.amount,
            )
            for position, item in enumerate(calculated)
        ]
        return subtotal

    async def _flush(self, invoice_id: Optional[int]) -> None:
        try:
            await self.session.flush()
        except StaleDataError as e:
            raise ConcurrencyConflictError(invoice_id=invoice_id) from e

    @staticmethod
    def _check_version(invoice: Invoice, expected_version: Optional[int]) -> None:
        if expected_version is not None and invoice.version != expected_version:
            raise ConcurrencyConflictError(
                invoice_id=invoice.id,
                expected_version=expected_version,
                current_version=invoice.version,
            )

    async def next_invoice_number(self, on: Optional[date] = None) -> str:
        period = (on or date.today()).strftime("%Y%m")
        sequence = await self.invoice_dao.next_invoice_sequence(period)
        return format_invoice_number(period, sequence)

    async def create_invoice(
        self,
        actor: Actor,
        line_items: Optional[List[Any]] = None,
        shipping_cost: Any = 0,
        sales_tax: Optional[Any] = None,
        tax_mode: Optional[TaxMode] = None,
        invoice_date: Optional[date] = None,
        due_date: Optional[date] = None,
        terms: Optional[str] = None,
        send: bool = False,
        subject: Optional[str] = None,
        message: Optional[str] = None,
        **client: Any,
    ) -> Invoice:
        """
        Create a draft invoice, optionally sending it right away.

        Args:
            actor: Admin creating the invoice
            line_items: Raw items (description, quantity, unit_price)
            shipping_cost: Shipping charge
            sales_tax: Manual tax amount; omitted means the default rate
            tax_mode: Explicit tax mode ("auto" ignores sales_tax)
            invoice_date: Defaults to today
            due_date: Defaults to invoice_date + INVOICE_DUE_DAYS
            terms: Defaults to the standard terms
            send: Send immediately after saving
            **client: client_name, client_email and the other client fields

        Returns:
            The created invoice (sent if requested)
        """
        invoice_date = invoice_date or date.today()
        invoice = Invoice(
            invoice_number=await self.next_invoice_number(),
            status=InvoiceStatus.DRAFT,
            invoice_date=invoice_date,
            due_date=due_date or invoice_date + timedelta(days=settings.INVOICE_DUE_DAYS),
            terms=terms if terms is not None else default_terms(),
        )
        for name in CLIENT_FIELDS:
            value = client.get(name)
            if name in ("client_name", "client_email"):
                value = (value or "").strip()
            setattr(invoice, name, value)

        subtotal = self._replace_line_items(invoice, line_items or [])
        policy = resolve_tax_policy(TaxMode.AUTO, None, sales_tax, tax_mode)
        totals = compose_totals(subtotal, policy, shipping_cost)
        for name, value in totals.as_invoice_fields().items():
            setattr(invoice, name, value)

        self.session.add(invoice)
        await self.session.flush()

        await self.audit.log_invoice_event(
            AuditAction.CREATE,
            invoice.id,
            actor_id=actor.id,
            after_status=InvoiceStatus.DRAFT.value,
            extra_data={"invoice_number": invoice.invoice_number, "total": str(invoice.total)},
        )
        logger.info(
            f"Invoice {invoice.invoice_number} created",
            extra={"invoice_id": invoice.id, "total": str(invoice.total)},
        )

        if send:
            return await self.send(invoice.id, subject=subject, message=message, actor=actor)
        return await self.get_invoice(invoice.id)

    async def update_invoice(
        self,
        invoice_id: int,
        actor: Actor,
        line_items: Optional[List[Any]] = None,
        shipping_cost: Optional[Any] = None,
        sales_tax: Optional[Any] = None,
        tax_mode: Optional[TaxMode] = None,
        invoice_date: Optional[date] = None,
        due_date: Optional[date] = None,
        terms: Optional[str] = None,
        expected_version: Optional[int] = None,
        send: bool = False,
        subject: Optional[str] = None,
        message: Optional[str] = None,
        **client: Any,
    ) -> Invoice:
        """
        Save edits to a draft invoice. Omitted arguments keep their value.

        Tax stays manual once an amount was entered; only an explicit
        tax_mode="auto" goes back to the default rate.

        Raises:
            InvalidStateTransitionError: If the invoice is not a draft
            ConcurrencyConflictError: If the invoice changed since it was read
        """
        invoice = await self.get_invoice(invoice_id)
        self._check_version(invoice, expected_version)
        assert_transition(invoice, InvoiceAction.EDIT)

        if invoice_date is not None:
            invoice.invoice_date = invoice_date
        if due_date is not None:
            invoice.due_date = due_date
        if terms is not None:
            invoice.terms = terms
        for name in CLIENT_FIELDS:
            if name in client:
                value = client[name]
                if name in ("client_name", "client_email"):
                    value = (value or "").strip()
                setattr(invoice, name, value)

        if line_items is not None:
            subtotal = self._replace_line_items(invoice, line_items)
        else:
            subtotal = invoice.subtotal
        policy = resolve_tax_policy(invoice.tax_mode, invoice.sales_tax, sales_tax, tax_mode)
        totals = compose_totals(
            subtotal,
            policy,
            invoice.shipping_cost if shipping_cost is None else shipping_cost,
            invoice.amount_paid,
        )
        for name, value in totals.as_invoice_fields().items():
            setattr(invoice, name, value)

        await self._flush(invoice_id)
        await self.audit.log_invoice_event(
            AuditAction.UPDATE,
            invoice_id,
            actor_id=actor.id,
            extra_data={"total": str(invoice.total), "tax_mode": policy.mode.value},
        )
        logger.info(
            f"Invoice {invoice.invoice_number} saved",
            extra={"invoice_id": invoice_id, "total": str(invoice.total)},
        )

        if send:
            return await self.send(invoice_id, subject=subject, message=message, actor=actor)
        return await self.get_invoice(invoice_id)

    # ========================================================================
    # Lifecycle actions
    # ========================================================================

    async def send(
        self,
        invoice_id: int,
        subject: Optional[str] = None,
        message: Optional[str] = None,
        attachments: Optional[List[EmailAttachment]] = None,
        actor: Optional[Actor] = None,
        expected_version: Optional[int] = None,
    ) -> Invoice:
        """
        Email the invoice PDF to the client and mark the invoice sent.

        The status is written only after the mail provider accepted the
        message; a delivery failure leaves the invoice unchanged.

        Raises:
            ValidationError: If the client name or email is missing
            InvalidStateTransitionError: If the invoice cannot be sent
            DocumentRenderError: If the PDF cannot be rendered
            EmailServiceError: If delivery fails
        """
        invoice = await self.get_invoice(invoice_id)
        self._check_version(invoice, expected_version)
        assert_transition(invoice, InvoiceAction.SEND)

        missing = [
            name
            for name in ("client_name", "client_email")
            if not (getattr(invoice, name) or "").strip()
        ]
        if missing:
            raise ValidationError(
                message="Client name and email are required to send an invoice",
                invoice_id=invoice_id,
                missing=missing,
            )

        before = _status_value(invoice)
        pdf = self.render_pdf(invoice)
        result = await self.email_service.send_invoice_email(
            invoice,
            pdf,
            subject=subject,
            message=message,
            attachments=attachments,
        )

        invoice.status = InvoiceStatus.SENT
        if invoice.sent_at is None:
            invoice.sent_at = utcnow()
        await self._flush(invoice_id)

        await self.audit.log_invoice_event(
            AuditAction.SEND,
            invoice_id,
            actor_id=actor.id if actor else None,
            before_status=before,
            after_status=InvoiceStatus.SENT.value,
            extra_data={"to": invoice.client_email, "message_id": result.message_id},
        )
        logger.info(
            f"Invoice {invoice.invoice_number} sent to {invoice.client_email}",
            extra={"invoice_id": invoice_id, "message_id": result.message_id},
        )
        return await self.get_invoice(invoice_id)

    async def apply_payment(
        self,
        invoice_id: int,
        amount: Any,
        method: PaymentMethod = PaymentMethod.OTHER,
        payment_date: Optional[date] = None,
        reference: Optional[str] = None,
        notes: Optional[str] = None,
        actor: Optional[Actor] = None,
        expected_version: Optional[int] = None,
    ) -> Tuple[Invoice, Payment]:
        """Record a payment (see PaymentLedger.apply_payment)."""
        before = await self.get_invoice(invoice_id)
        before_status = _status_value(before)
        invoice, payment = await self.ledger.apply_payment(
            invoice_id,
            amount,
            method=method,
            payment_date=payment_date,
            reference=reference,
            notes=notes,
            expected_version=expected_version,
        )
        await self._log_payment(invoice, payment, before_status, actor)
        return invoice, payment

    async def record_partial_payment(
        self,
        invoice_id: int,
        amount: Any,
        actor: Optional[Actor] = None,
        expected_version: Optional[int] = None,
    ) -> Tuple[Invoice, Payment]:
        """Quick partial payment: method Other, dated today."""
        before = await self.get_invoice(invoice_id)
        before_status = _status_value(before)
        invoice, payment = await self.ledger.record_partial_payment(
            invoice_id, amount, expected_version=expected_version
        )
        await self._log_payment(invoice, payment, before_status, actor)
        return invoice, payment

    async def _log_payment(
        self,
        invoice: Invoice,
        payment: Payment,
        before_status: str,
        actor: Optional[Actor],
    ) -> None:
        await self.audit.log_invoice_event(
            AuditAction.PAYMENT,
            invoice.id,
            actor_id=actor.id if actor else None,
            before_status=before_status,
            after_status=_status_value(invoice),
            extra_data={
                "payment_id": payment.id,
                "amount": str(payment.amount),
                "method": PaymentMethod(payment.method).value,
            },
        )

    async def mark_disputed(
        self,
        invoice_id: int,
        reason: Optional[str],
        notes: Optional[str] = None,
        actor: Optional[Actor] = None,
        expected_version: Optional[int] = None,
    ) -> Invoice:
        """
        Record a client dispute. Disputed invoices never show as overdue.

        Raises:
            ValidationError: If the reason is blank
            InvalidStateTransitionError: Unless the invoice is sent or partially paid
        """
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError(message="A dispute reason is required", invoice_id=invoice_id)

        invoice = await self.get_invoice(invoice_id)
        self._check_version(invoice, expected_version)
        assert_transition(invoice, InvoiceAction.DISPUTE)

        before = _status_value(invoice)
        invoice.status = InvoiceStatus.DISPUTED
        invoice.dispute_reason = reason
        invoice.dispute_notes = (notes or "").strip() or None
        invoice.dispute_status = DisputeStatus.OPEN
        invoice.dispute_updated_at = utcnow()
        await self._flush(invoice_id)

        await self.audit.log_invoice_event(
            AuditAction.DISPUTE,
            invoice_id,
            actor_id=actor.id if actor else None,
            before_status=before,
            after_status=InvoiceStatus.DISPUTED.value,
            extra_data={"reason": reason},
        )
        logger.info(
            f"Invoice {invoice.invoice_number} disputed",
            extra={"invoice_id": invoice_id},
        )
        return await self.get_invoice(invoice_id)

    async def resolve_dispute(
        self,
        invoice_id: int,
        actor: Optional[Actor] = None,
        expected_version: Optional[int] = None,
    ) -> Invoice:
        """
        Close an open dispute; the invoice returns to sent.

        Raises:
            InvalidStateTransitionError: If the invoice is not disputed
        """
        invoice = await self.get_invoice(invoice_id)
        self._check_version(invoice, expected_version)
        assert_transition(invoice, InvoiceAction.RESOLVE_DISPUTE)

        invoice.status = InvoiceStatus.SENT
        invoice.dispute_status = DisputeStatus.RESOLVED
        invoice.dispute_updated_at = utcnow()
        await self._flush(invoice_id)

        await self.audit.log_invoice_event(
            AuditAction.RESOLVE,
            invoice_id,
            actor_id=actor.id if actor else None,
            before_status=InvoiceStatus.DISPUTED.value,
            after_status=InvoiceStatus.SENT.value,
        )
        logger.info(
            f"Dispute on invoice {invoice.invoice_number} resolved",
            extra={"invoice_id": invoice_id},
        )
        return await self.get_invoice(invoice_id)

    async def cancel(
        self,
        invoice_id: int,
        reason: Optional[str] = None,
        actor: Optional[Actor] = None,
        expected_version: Optional[int] = None,
    ) -> Invoice:
        """
        Void an invoice. Cancelled invoices leave the overdue tab for good.

        Raises:
            InvalidStateTransitionError: If the invoice is paid or already cancelled
        """
        invoice = await self.get_invoice(invoice_id)
        self._check_version(invoice, expected_version)
        assert_transition(invoice, InvoiceAction.CANCEL)

        before = _status_value(invoice)
        invoice.status = InvoiceStatus.CANCELLED
        invoice.cancel_reason = (reason or "").strip() or None
        invoice.cancelled_at = utcnow()
        await self._flush(invoice_id)

        await self.audit.log_invoice_event(
            AuditAction.CANCEL,
            invoice_id,
            actor_id=actor.id if actor else None,
            before_status=before,
            after_status=InvoiceStatus.CANCELLED.value,
            extra_data={"reason": invoice.cancel_reason},
        )
        logger.info(
            f"Invoice {invoice.invoice_number} cancelled",
            extra={"invoice_id": invoice_id},
        )
        return await self.get_invoice(invoice_id)
