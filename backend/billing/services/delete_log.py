"""
Invoice delete / restore service.

WHAT: Removes invoices from the active set into an append-only delete log,
and re-materializes them from that log on request.

WHY: Deleting an invoice must never lose business data. The log entry
keeps a full snapshot (line items and payments included) plus who deleted
it and why, so the delete can be audited and undone exactly once.

HOW:
- delete_invoice: snapshot -> DeleteLogEntry -> delete the invoice row
  (its line items and payments go with it)
- restore_invoice: claim the entry with a conditional UPDATE, then build a
  brand-new invoice from the snapshot with totals re-composed
"""

import logging
import uuid
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from billing.core.deps import Actor
from billing.core.exceptions import (
    AlreadyRestoredError,
    ConcurrencyConflictError,
    DeleteLogNotFoundError,
    InvoiceNotFoundError,
    ValidationError,
)
from billing.dao.delete_log import DeleteLogDAO
from billing.dao.invoice import InvoiceDAO
from billing.models.audit_log import AuditAction
from billing.models.base import utcnow
from billing.models.delete_log import DeleteLogEntry
from billing.models.invoice import (
    DisputeStatus,
    Invoice,
    InvoiceLineItem,
    InvoiceStatus,
    Payment,
    PaymentMethod,
    TaxMode,
)
from billing.services.audit import AuditService
from billing.services.lifecycle import InvoiceAction, assert_transition
from billing.services.totals import (
    ZERO,
    AutoTax,
    ManualTax,
    calculate_line_items,
    coerce_decimal,
    compose_totals,
    quantize_money,
)

logger = logging.getLogger(__name__)

# Scalar invoice columns carried verbatim through a snapshot
SNAPSHOT_TEXT_FIELDS = (
    "invoice_number",
    "client_name",
    "client_email",
    "client_phone",
    "client_address",
    "client_city",
    "client_state",
    "client_zip",
    "client_country",
    "terms",
    "dispute_reason",
    "dispute_notes",
    "cancel_reason",
)
SNAPSHOT_MONEY_FIELDS = (
    "subtotal",
    "sales_tax",
    "shipping_cost",
    "total",
    "amount_paid",
    "outstanding_balance",
)
SNAPSHOT_DATE_FIELDS = ("invoice_date", "due_date")
SNAPSHOT_DATETIME_FIELDS = (
    "dispute_updated_at",
    "cancelled_at",
    "sent_at",
    "created_at",
    "updated_at",
)


def _enum_value(value: Any) -> Optional[str]:
    if value is None:
        return None
    return getattr(value, "value", value)


def _iso(value: Any) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def snapshot_invoice(invoice: Invoice) -> Dict[str, Any]:
    """
    Serialize every field of an invoice to JSON-safe values.

    Money is stored as strings so no precision is lost, dates and
    datetimes as ISO 8601.
    """
    snapshot: Dict[str, Any] = {"id": invoice.id}
    for name in SNAPSHOT_TEXT_FIELDS:
        snapshot[name] = getattr(invoice, name)
    for name in SNAPSHOT_MONEY_FIELDS:
        snapshot[name] = str(getattr(invoice, name) or ZERO)
    for name in SNAPSHOT_DATE_FIELDS + SNAPSHOT_DATETIME_FIELDS:
        snapshot[name] = _iso(getattr(invoice, name))

    snapshot["status"] = _enum_value(invoice.status)
    snapshot["tax_mode"] = _enum_value(invoice.tax_mode)
    snapshot["dispute_status"] = _enum_value(invoice.dispute_status)
    snapshot["version"] = invoice.version
    snapshot["line_items"] = [
        {
            "id": item.id,
            "position": item.position,
            "description": item.description,
            "quantity": item.quantity,
            "unit_price": str(item.unit_price),
            "amount": str(item.amount),
        }
        for item in invoice.line_items
    ]
    snapshot["payments"] = [
        {
            "id": payment.id,
            "amount": str(payment.amount),
            "payment_date": _iso(payment.payment_date),
            "method": _enum_value(payment.method),
            "reference": payment.reference,
            "notes": payment.notes,
            "created_at": _iso(payment.created_at),
        }
        for payment in invoice.payments
    ]
    return snapshot


def invoice_from_snapshot(snapshot: Dict[str, Any]) -> Invoice:
    """
    Build a new, unsaved invoice from a delete-log snapshot.

    The invoice gets a new identity and fresh timestamps; status and
    business data are taken verbatim. Item amounts and invoice totals are
    recomputed so the restored invoice satisfies the totals invariants even
    if the snapshot was written by an older release.
    """
    items, subtotal = calculate_line_items(snapshot.get("line_items") or [])
    raw_items = snapshot.get("line_items") or []

    payments = [
        Payment(
            id=raw.get("id") or str(uuid.uuid4()),
            amount=quantize_money(coerce_decimal(raw.get("amount"))),
            payment_date=_parse_date(raw.get("payment_date")) or date.today(),
            method=PaymentMethod(raw.get("method") or PaymentMethod.OTHER.value),
            reference=raw.get("reference"),
            notes=raw.get("notes"),
            created_at=_parse_datetime(raw.get("created_at")) or utcnow(),
        )
        for raw in snapshot.get("payments") or []
    ]
    amount_paid = sum((p.amount for p in payments), ZERO)

    tax_mode = TaxMode(snapshot.get("tax_mode") or TaxMode.AUTO.value)
    if tax_mode == TaxMode.MANUAL:
        policy = ManualTax(coerce_decimal(snapshot.get("sales_tax")))
    else:
        policy = AutoTax()
    totals = compose_totals(subtotal, policy, snapshot.get("shipping_cost"), amount_paid)

    now = utcnow()
    dispute_status = snapshot.get("dispute_status")
    invoice = Invoice(
        invoice_number=snapshot["invoice_number"],
        status=InvoiceStatus(snapshot["status"]),
        invoice_date=_parse_date(snapshot.get("invoice_date")) or date.today(),
        due_date=_parse_date(snapshot.get("due_date")) or date.today(),
        terms=snapshot.get("terms"),
        dispute_status=DisputeStatus(dispute_status) if dispute_status else None,
        dispute_updated_at=_parse_datetime(snapshot.get("dispute_updated_at")),
        cancelled_at=_parse_datetime(snapshot.get("cancelled_at")),
        sent_at=_parse_datetime(snapshot.get("sent_at")),
        created_at=now,
        updated_at=now,
        **totals.as_invoice_fields(),
    )
    for name in SNAPSHOT_TEXT_FIELDS:
        if name in ("invoice_number", "terms"):
            continue
        value = snapshot.get(name)
        if name in ("client_name", "client_email"):
            value = value or ""
        setattr(invoice, name, value)

    invoice.line_items = [
        InvoiceLineItem(
            id=raw.get("id") or str(uuid.uuid4()),
            position=raw.get("position", index),
            description=calculated.description,
            quantity=calculated.quantity,
            unit_price=calculated.unit_price,
            amount=calculated.amount,
        )
        for index, (raw, calculated) in enumerate(zip(raw_items, items))
    ]
    invoice.payments = payments
    return invoice


class DeleteLogService:
    """
    Service for deleting and restoring invoices through the delete log.

    Example:
        service = DeleteLogService(db)
        entry = await service.delete_invoice(invoice.id, "duplicate", actor)
        restored = await service.restore_invoice(entry.id, actor)
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.invoice_dao = InvoiceDAO(session)
        self.log_dao = DeleteLogDAO(session)
        self.audit = AuditService(session)

    async def delete_invoice(
        self,
        invoice_id: int,
        reason: Optional[str],
        actor: Actor,
        expected_version: Optional[int] = None,
    ) -> DeleteLogEntry:
        """
        Move an invoice from the active set into the delete log.

        Args:
            invoice_id: Invoice to delete
            reason: Required justification
            actor: Admin performing the delete
            expected_version: Invoice version the caller last read, if any

        Returns:
            The new, not yet restored, log entry

        Raises:
            ValidationError: If the reason is blank
            InvoiceNotFoundError: If the invoice does not exist
            ConcurrencyConflictError: If the invoice changed since it was
                read (stale expected_version or a concurrent write)
        """
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError(
                message="A reason is required to delete an invoice",
                invoice_id=invoice_id,
            )

        invoice = await self.invoice_dao.get_with_children(invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(invoice_id=invoice_id)
        assert_transition(invoice, InvoiceAction.DELETE)
        if expected_version is not None and invoice.version != expected_version:
            raise ConcurrencyConflictError(
                invoice_id=invoice_id,
                expected_version=expected_version,
                current_version=invoice.version,
            )

        status = _enum_value(invoice.status)
        entry = await self.log_dao.create(
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
            status=status,
            snapshot=snapshot_invoice(invoice),
            deleted_by=actor.id,
            deleted_by_name=actor.name,
            deleted_at=utcnow(),
            reason=reason,
            restored=False,
        )

        # ORM delete so line items and payments cascade on every backend
        await self.session.delete(invoice)
        try:
            await self.session.flush()
        except StaleDataError as e:
            raise ConcurrencyConflictError(invoice_id=invoice_id) from e

        await self.audit.log_invoice_event(
            AuditAction.DELETE,
            invoice_id,
            actor_id=actor.id,
            before_status=status,
            extra_data={
                "invoice_number": entry.invoice_number,
                "delete_log_id": entry.id,
                "reason": reason,
            },
        )
        logger.info(
            f"Invoice {entry.invoice_number} deleted by {actor.id}",
            extra={"invoice_id": invoice_id, "delete_log_id": entry.id},
        )
        return entry

    async def restore_invoice(self, log_id: int, actor: Actor) -> Invoice:
        """
        Re-create an invoice from a delete-log entry.

        Each entry can be restored once. The restored invoice is a new
        record (new id, created now) with the snapshot's number, status,
        client data, line items and payments.

        Raises:
            DeleteLogNotFoundError: If the entry does not exist
            AlreadyRestoredError: If the entry was already restored
        """
        entry = await self.log_dao.get_by_id(log_id)
        if entry is None:
            raise DeleteLogNotFoundError(delete_log_id=log_id)

        claimed = await self.log_dao.claim_for_restore(log_id, utcnow())
        if not claimed:
            raise AlreadyRestoredError(
                delete_log_id=log_id,
                restored_invoice_id=entry.restored_invoice_id,
            )

        invoice = invoice_from_snapshot(entry.snapshot)
        self.session.add(invoice)
        await self.session.flush()
        await self.log_dao.set_restored_invoice(log_id, invoice.id)
        # The conditional UPDATEs bypass the identity map
        await self.session.refresh(entry)

        await self.audit.log_restore(log_id, invoice.id, actor_id=actor.id)
        logger.info(
            f"Invoice {invoice.invoice_number} restored from delete log {log_id} "
            f"as invoice {invoice.id}",
            extra={"delete_log_id": log_id, "invoice_id": invoice.id},
        )
        return await self.invoice_dao.get_with_children(invoice.id)

    async def get_entry(self, log_id: int) -> DeleteLogEntry:
        entry = await self.log_dao.get_by_id(log_id)
        if entry is None:
            raise DeleteLogNotFoundError(delete_log_id=log_id)
        return entry

    async def list_entries(
        self,
        pending_only: bool = False,
        skip: int = 0,
        limit: int = 100,
    ) -> List[DeleteLogEntry]:
        """All entries, or only those not restored yet, newest first."""
        return await self.log_dao.list_entries(pending_only=pending_only, skip=skip, limit=limit)
