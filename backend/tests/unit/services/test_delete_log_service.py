"""
Delete Log Service tests.

WHAT: Tests for deleting invoices into the delete log and restoring them.

WHY: Deletes must be auditable and reversible exactly once. These tests
ensure:
- A reason is mandatory
- The snapshot carries the whole invoice, items and payments included
- Deleted invoices disappear from the active set
- Restore re-creates the invoice with its number, status and payments
- A second restore of the same entry is refused
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import event, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from billing.core.exceptions import (
    AlreadyRestoredError,
    ConcurrencyConflictError,
    DeleteLogNotFoundError,
    InvoiceNotFoundError,
    ValidationError,
)
from billing.dao.invoice import InvoiceDAO
from billing.models.audit_log import AuditAction, AuditLog
from billing.models.invoice import Invoice, InvoiceStatus, TaxMode
from billing.services.delete_log import (
    DeleteLogService,
    invoice_from_snapshot,
    snapshot_invoice,
)
from tests.factories import InvoiceFactory


@pytest.mark.asyncio
class TestDeleteInvoice:
    """Tests for DeleteLogService.delete_invoice."""

    @pytest.mark.parametrize("reason", [None, "", "   "])
    async def test_reason_required(self, db_session: AsyncSession, admin_actor, reason):
        invoice = await InvoiceFactory.create(db_session)

        with pytest.raises(ValidationError):
            await DeleteLogService(db_session).delete_invoice(invoice.id, reason, admin_actor)

        assert await InvoiceDAO(db_session).get_with_children(invoice.id) is not None

    async def test_missing_invoice(self, db_session: AsyncSession, admin_actor):
        with pytest.raises(InvoiceNotFoundError):
            await DeleteLogService(db_session).delete_invoice(404, "duplicate", admin_actor)

    async def test_delete_writes_entry_and_removes_invoice(
        self, db_session: AsyncSession, admin_actor
    ):
        invoice = await InvoiceFactory.create_with_payments(
            db_session, ["10"], payment_date=date(2026, 2, 1)
        )
        invoice_id = invoice.id
        number = invoice.invoice_number

        entry = await DeleteLogService(db_session).delete_invoice(
            invoice_id, "  duplicate  ", admin_actor
        )

        assert entry.invoice_id == invoice_id
        assert entry.invoice_number == number
        assert entry.status == "partially_paid"
        assert entry.reason == "duplicate"
        assert entry.deleted_by == admin_actor.id
        assert entry.deleted_by_name == admin_actor.name
        assert entry.restored is False
        assert entry.snapshot["payments"][0]["amount"] == "10.00"
        assert entry.snapshot["line_items"][0]["description"] == "Pick and pack"

        assert await InvoiceDAO(db_session).get_with_children(invoice_id) is None

    async def test_delete_is_audited(self, db_session: AsyncSession, admin_actor):
        invoice = await InvoiceFactory.create(db_session)
        invoice_id = invoice.id
        entry = await DeleteLogService(db_session).delete_invoice(
            invoice_id, "wrong client", admin_actor
        )

        result = await db_session.execute(
            select(AuditLog).where(AuditLog.action == AuditAction.DELETE)
        )
        log = result.scalar_one()
        assert log.resource_id == invoice_id
        assert log.actor_id == admin_actor.id
        assert log.extra_data["delete_log_id"] == entry.id

    async def test_stale_version_refused(self, db_session: AsyncSession, admin_actor):
        invoice = await InvoiceFactory.create(db_session, status=InvoiceStatus.SENT)

        with pytest.raises(ConcurrencyConflictError):
            await DeleteLogService(db_session).delete_invoice(
                invoice.id, "duplicate", admin_actor, expected_version=invoice.version + 1
            )

        assert await InvoiceDAO(db_session).get_with_children(invoice.id) is not None

    async def test_concurrent_write_is_a_conflict(self, db_session: AsyncSession, admin_actor):
        """
        A payment committed between the read and the delete bumps the
        version; the delete must fail as a conflict, not a server error.
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
                await DeleteLogService(db_session).delete_invoice(
                    invoice_id, "duplicate", admin_actor
                )
        finally:
            event.remove(db_session.sync_session, "before_flush", concurrent_writer)


@pytest.mark.asyncio
class TestRestoreInvoice:
    """Tests for DeleteLogService.restore_invoice."""

    async def test_restore_recreates_invoice(self, db_session: AsyncSession, admin_actor):
        invoice = await InvoiceFactory.create_with_payments(db_session, ["10"])
        number = invoice.invoice_number
        service = DeleteLogService(db_session)
        entry = await service.delete_invoice(invoice.id, "duplicate", admin_actor)

        restored = await service.restore_invoice(entry.id, admin_actor)

        assert restored.invoice_number == number
        assert restored.status == InvoiceStatus.PARTIALLY_PAID
        assert restored.client_name == "Acme Supplies"
        assert restored.total == Decimal("31.66")
        assert restored.amount_paid == Decimal("10.00")
        assert restored.outstanding_balance == Decimal("21.66")
        assert len(restored.line_items) == 1
        assert len(restored.payments) == 1

        assert entry.restored is True
        assert entry.restored_at is not None
        assert entry.restored_invoice_id == restored.id

    async def test_second_restore_refused(self, db_session: AsyncSession, admin_actor):
        invoice = await InvoiceFactory.create(db_session)
        service = DeleteLogService(db_session)
        entry = await service.delete_invoice(invoice.id, "duplicate", admin_actor)
        await service.restore_invoice(entry.id, admin_actor)

        with pytest.raises(AlreadyRestoredError) as exc_info:
            await service.restore_invoice(entry.id, admin_actor)
        assert exc_info.value.status_code == 409

    async def test_missing_entry(self, db_session: AsyncSession, admin_actor):
        with pytest.raises(DeleteLogNotFoundError):
            await DeleteLogService(db_session).restore_invoice(999, admin_actor)

    async def test_pending_only_listing(self, db_session: AsyncSession, admin_actor):
        service = DeleteLogService(db_session)
        first = await InvoiceFactory.create(db_session)
        second = await InvoiceFactory.create(db_session)
        restored_entry = await service.delete_invoice(first.id, "duplicate", admin_actor)
        pending_entry = await service.delete_invoice(second.id, "test data", admin_actor)
        await service.restore_invoice(restored_entry.id, admin_actor)

        pending = await service.list_entries(pending_only=True)
        everything = await service.list_entries()

        assert [e.id for e in pending] == [pending_entry.id]
        assert {e.id for e in everything} == {restored_entry.id, pending_entry.id}


@pytest.mark.asyncio
class TestSnapshot:
    """Tests for snapshot_invoice / invoice_from_snapshot."""

    async def test_snapshot_is_json_safe(self, db_session: AsyncSession):
        invoice = await InvoiceFactory.create(db_session, sales_tax="2.00", client_city="Newark")
        snapshot = snapshot_invoice(invoice)

        assert snapshot["sales_tax"] == "2.00"
        assert snapshot["tax_mode"] == "manual"
        assert snapshot["status"] == "draft"
        assert snapshot["client_city"] == "Newark"
        assert snapshot["invoice_date"] == invoice.invoice_date.isoformat()

    async def test_manual_tax_survives_round_trip(self, db_session: AsyncSession):
        invoice = await InvoiceFactory.create(db_session, sales_tax="2.00")
        rebuilt = invoice_from_snapshot(snapshot_invoice(invoice))

        assert rebuilt.tax_mode == TaxMode.MANUAL
        assert rebuilt.sales_tax == Decimal("2.00")
        assert rebuilt.total == Decimal("32.00")

    async def test_totals_recomputed_from_items(self):
        """
        A snapshot with a stale total is rebuilt with consistent amounts.
        """
        rebuilt = invoice_from_snapshot(
            {
                "invoice_number": "INV-202601-007",
                "status": "sent",
                "invoice_date": "2026-01-05",
                "due_date": "2026-01-07",
                "client_name": "Acme Supplies",
                "client_email": "billing@acme.example",
                "tax_mode": "auto",
                "shipping_cost": "0",
                "total": "999.99",
                "line_items": [
                    {"description": "Storage", "quantity": 2, "unit_price": "50.00"}
                ],
                "payments": [],
            }
        )
        assert rebuilt.subtotal == Decimal("100.00")
        assert rebuilt.sales_tax == Decimal("6.63")
        assert rebuilt.total == Decimal("106.63")
        assert rebuilt.due_date == date(2026, 1, 7)
        assert rebuilt.line_items[0].id
