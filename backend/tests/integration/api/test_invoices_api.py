"""
Invoice API integration tests.

WHAT: End-to-end tests of the invoice, payment and deleted-invoice routes
through the FastAPI app.

WHY: These exercise auth, request validation, the lifecycle rules and the
error mapping together, the way the dashboard uses them.
"""

from datetime import date, timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from billing.models.invoice import InvoiceStatus
from billing.services.email import MockEmailProvider
from tests.factories import InvoiceFactory


INVOICE_PAYLOAD = {
    "client_name": "Acme Supplies",
    "client_email": "billing@acme.example",
    "line_items": [{"description": "Pick and pack", "quantity": 1, "unit_price": "25.00"}],
    "shipping_cost": "5.00",
}


async def _create(client: AsyncClient, headers: dict, **overrides) -> dict:
    response = await client.post(
        "/api/invoices", json={**INVOICE_PAYLOAD, **overrides}, headers=headers
    )
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.asyncio
class TestAuth:
    async def test_missing_token(self, client: AsyncClient):
        response = await client.get("/api/invoices")
        assert response.status_code == 401

    async def test_non_admin_forbidden(self, client: AsyncClient, client_role_headers: dict):
        response = await client.get("/api/invoices", headers=client_role_headers)
        assert response.status_code == 403
        assert response.json()["error"] == "AuthorizationError"


@pytest.mark.asyncio
class TestCalculate:
    async def test_preview_totals(self, client: AsyncClient, admin_headers: dict):
        response = await client.post(
            "/api/invoices/calculate",
            json={
                "line_items": INVOICE_PAYLOAD["line_items"],
                "shipping_cost": "5.00",
            },
            headers=admin_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["subtotal"] == 25.0
        assert data["sales_tax"] == 1.66
        assert data["total"] == 31.66
        assert data["tax_mode"] == "auto"
        assert data["line_items"][0]["amount"] == 25.0

    async def test_manual_tax(self, client: AsyncClient, admin_headers: dict):
        response = await client.post(
            "/api/invoices/calculate",
            json={"line_items": INVOICE_PAYLOAD["line_items"], "sales_tax": "0"},
            headers=admin_headers,
        )

        data = response.json()
        assert data["sales_tax"] == 0.0
        assert data["total"] == 25.0
        assert data["tax_mode"] == "manual"

    async def test_negative_shipping_rejected(self, client: AsyncClient, admin_headers: dict):
        response = await client.post(
            "/api/invoices/calculate",
            json={"line_items": [], "shipping_cost": "-1"},
            headers=admin_headers,
        )

        assert response.status_code == 400
        fields = [e["field"] for e in response.json()["details"]["errors"]]
        assert any(field.endswith("shipping_cost") for field in fields)


@pytest.mark.asyncio
class TestInvoiceLifecycle:
    async def test_create_send_and_pay(self, client: AsyncClient, admin_headers: dict):
        invoice = await _create(client, admin_headers)
        assert invoice["status"] == "draft"
        assert invoice["total"] == 31.66
        assert invoice["invoice_number"].startswith(f"INV-{date.today().strftime('%Y%m')}-")

        sent = await client.post(f"/api/invoices/{invoice['id']}/send", headers=admin_headers)
        assert sent.status_code == 200, sent.text
        assert sent.json()["status"] == "sent"
        assert len(MockEmailProvider.sent_emails) == 1

        first = await client.post(
            f"/api/invoices/{invoice['id']}/payments",
            json={"amount": "10.00", "method": "Zelle", "reference": "ZL-1"},
            headers=admin_headers,
        )
        assert first.status_code == 201, first.text
        assert first.json()["invoice"]["status"] == "partially_paid"
        assert first.json()["invoice"]["outstanding_balance"] == 21.66
        assert first.json()["payment"]["method"] == "Zelle"

        second = await client.post(
            f"/api/invoices/{invoice['id']}/payments/partial",
            json={"amount": "21.66"},
            headers=admin_headers,
        )
        assert second.status_code == 201, second.text
        paid = second.json()["invoice"]
        assert paid["status"] == "paid"
        assert paid["outstanding_balance"] == 0.0
        assert second.json()["payment"]["method"] == "Other"

    async def test_send_without_email_rejected(self, client: AsyncClient, admin_headers: dict):
        invoice = await _create(client, admin_headers, client_email=None)

        response = await client.post(f"/api/invoices/{invoice['id']}/send", headers=admin_headers)

        assert response.status_code == 400
        assert MockEmailProvider.sent_emails == []

    async def test_send_failure_keeps_draft(self, client: AsyncClient, admin_headers: dict):
        invoice = await _create(client, admin_headers)
        MockEmailProvider.fail_with = "mailbox full"

        response = await client.post(f"/api/invoices/{invoice['id']}/send", headers=admin_headers)
        assert response.status_code == 502

        MockEmailProvider.fail_with = None
        current = await client.get(f"/api/invoices/{invoice['id']}", headers=admin_headers)
        assert current.json()["status"] == "draft"

    async def test_payment_on_draft_rejected(self, client: AsyncClient, admin_headers: dict):
        invoice = await _create(client, admin_headers)

        response = await client.post(
            f"/api/invoices/{invoice['id']}/payments",
            json={"amount": "5"},
            headers=admin_headers,
        )

        assert response.status_code == 400
        assert response.json()["error"] == "InvalidStateTransitionError"

    async def test_zero_payment_rejected(
        self, client: AsyncClient, admin_headers: dict, db_session: AsyncSession
    ):
        invoice = await InvoiceFactory.create(db_session, status=InvoiceStatus.SENT)

        response = await client.post(
            f"/api/invoices/{invoice.id}/payments",
            json={"amount": "0"},
            headers=admin_headers,
        )

        assert response.status_code == 400

    async def test_stale_version_conflict(
        self, client: AsyncClient, admin_headers: dict, db_session: AsyncSession
    ):
        invoice = await InvoiceFactory.create(db_session, status=InvoiceStatus.SENT)

        response = await client.post(
            f"/api/invoices/{invoice.id}/payments",
            json={"amount": "5"},
            headers={**admin_headers, "If-Match": str(invoice.version + 5)},
        )

        assert response.status_code == 409
        assert response.json()["error"] == "ConcurrencyConflictError"

    async def test_update_paid_invoice_rejected(
        self, client: AsyncClient, admin_headers: dict, db_session: AsyncSession
    ):
        invoice = await InvoiceFactory.create_with_payments(db_session, ["31.66"])
        assert invoice.status == InvoiceStatus.PAID

        response = await client.put(
            f"/api/invoices/{invoice.id}",
            json={"client_name": "Someone Else"},
            headers=admin_headers,
        )

        assert response.status_code == 400

    async def test_unknown_invoice(self, client: AsyncClient, admin_headers: dict):
        response = await client.get("/api/invoices/9999", headers=admin_headers)
        assert response.status_code == 404


@pytest.mark.asyncio
class TestDisputeAndCancel:
    async def test_disputed_invoice_is_not_overdue(
        self, client: AsyncClient, admin_headers: dict, db_session: AsyncSession
    ):
        past = date.today() - timedelta(days=10)
        invoice = await InvoiceFactory.create(
            db_session, status=InvoiceStatus.SENT, invoice_date=past, due_date=past
        )

        before = await client.get(f"/api/invoices/{invoice.id}", headers=admin_headers)
        assert before.json()["is_overdue"] is True
        assert before.json()["view"] == "overdue"

        disputed = await client.post(
            f"/api/invoices/{invoice.id}/dispute",
            json={"reason": "Wrong quantity", "notes": "Client counted 9 pallets"},
            headers=admin_headers,
        )

        assert disputed.status_code == 200, disputed.text
        data = disputed.json()
        assert data["status"] == "disputed"
        assert data["is_overdue"] is False
        assert data["dispute"]["status"] == "Open"

        resolved = await client.post(
            f"/api/invoices/{invoice.id}/dispute/resolve", headers=admin_headers
        )
        assert resolved.json()["status"] == "sent"
        assert resolved.json()["dispute"]["status"] == "Resolved"

    async def test_dispute_requires_reason(
        self, client: AsyncClient, admin_headers: dict, db_session: AsyncSession
    ):
        invoice = await InvoiceFactory.create(db_session, status=InvoiceStatus.SENT)

        response = await client.post(
            f"/api/invoices/{invoice.id}/dispute", json={"reason": ""}, headers=admin_headers
        )

        assert response.status_code == 400

    async def test_cancel_removes_from_overdue(
        self, client: AsyncClient, admin_headers: dict, db_session: AsyncSession
    ):
        past = date.today() - timedelta(days=10)
        invoice = await InvoiceFactory.create(
            db_session, status=InvoiceStatus.SENT, invoice_date=past, due_date=past
        )

        cancelled = await client.post(
            f"/api/invoices/{invoice.id}/cancel",
            json={"reason": "Order withdrawn"},
            headers=admin_headers,
        )
        assert cancelled.status_code == 200, cancelled.text
        assert cancelled.json()["status"] == "cancelled"

        overdue = await client.get("/api/invoices?view=overdue", headers=admin_headers)
        assert overdue.json()["total"] == 0

        again = await client.post(f"/api/invoices/{invoice.id}/cancel", headers=admin_headers)
        assert again.status_code == 400


@pytest.mark.asyncio
class TestDeleteAndRestore:
    async def test_delete_then_restore_once(
        self, client: AsyncClient, admin_headers: dict, db_session: AsyncSession
    ):
        invoice = await InvoiceFactory.create_with_payments(db_session, ["10"])

        deleted = await client.request(
            "DELETE",
            f"/api/invoices/{invoice.id}",
            json={"reason": "duplicate"},
            headers=admin_headers,
        )
        assert deleted.status_code == 200, deleted.text
        log = deleted.json()
        assert log["reason"] == "duplicate"
        assert log["restored"] is False
        assert log["invoice_number"] == invoice.invoice_number

        gone = await client.get(f"/api/invoices/{invoice.id}", headers=admin_headers)
        assert gone.status_code == 404

        pending = await client.get(
            "/api/invoice-delete-logs?pending_only=true", headers=admin_headers
        )
        assert [entry["id"] for entry in pending.json()["items"]] == [log["id"]]

        restored = await client.post(
            f"/api/invoice-delete-logs/{log['id']}/restore", headers=admin_headers
        )
        assert restored.status_code == 200, restored.text
        data = restored.json()
        assert data["invoice_number"] == invoice.invoice_number
        assert data["status"] == "partially_paid"
        assert data["amount_paid"] == 10.0
        assert len(data["payments"]) == 1

        second = await client.post(
            f"/api/invoice-delete-logs/{log['id']}/restore", headers=admin_headers
        )
        assert second.status_code == 409

    async def test_delete_requires_reason(
        self, client: AsyncClient, admin_headers: dict, db_session: AsyncSession
    ):
        invoice = await InvoiceFactory.create(db_session)

        response = await client.request(
            "DELETE", f"/api/invoices/{invoice.id}", json={"reason": ""}, headers=admin_headers
        )

        assert response.status_code == 400

    async def test_delete_with_stale_version(
        self, client: AsyncClient, admin_headers: dict, db_session: AsyncSession
    ):
        invoice = await InvoiceFactory.create(db_session, status=InvoiceStatus.SENT)

        response = await client.request(
            "DELETE",
            f"/api/invoices/{invoice.id}",
            json={"reason": "duplicate"},
            headers={**admin_headers, "If-Match": str(invoice.version + 1)},
        )

        assert response.status_code == 409
        assert response.json()["error"] == "ConcurrencyConflictError"

        still_there = await client.get(f"/api/invoices/{invoice.id}", headers=admin_headers)
        assert still_there.status_code == 200

    async def test_unknown_log(self, client: AsyncClient, admin_headers: dict):
        response = await client.post(
            "/api/invoice-delete-logs/404/restore", headers=admin_headers
        )
        assert response.status_code == 404


@pytest.mark.asyncio
class TestReports:
    async def test_counts_per_tab(
        self, client: AsyncClient, admin_headers: dict, db_session: AsyncSession
    ):
        await InvoiceFactory.create(db_session)
        await InvoiceFactory.create(db_session, status=InvoiceStatus.SENT)
        await InvoiceFactory.create_with_payments(db_session, ["31.66"])

        response = await client.get("/api/invoices/counts", headers=admin_headers)

        counts = response.json()["counts"]
        assert counts["all"] == 3
        assert counts["draft"] == 1
        assert counts["sent"] == 1
        assert counts["paid"] == 1
        assert counts["overdue"] == 0

    async def test_search(self, client: AsyncClient, admin_headers: dict, db_session: AsyncSession):
        await InvoiceFactory.create(db_session, client_name="Globex Storage")
        await InvoiceFactory.create(db_session)

        response = await client.get("/api/invoices?q=globex", headers=admin_headers)

        items = response.json()["items"]
        assert [item["client_name"] for item in items] == ["Globex Storage"]

    async def test_paid_csv_export(
        self, client: AsyncClient, admin_headers: dict, db_session: AsyncSession
    ):
        paid = await InvoiceFactory.create_with_payments(db_session, ["31.66"])
        await InvoiceFactory.create(db_session, status=InvoiceStatus.SENT)

        response = await client.get("/api/invoices/export/paid.csv", headers=admin_headers)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        lines = response.text.strip().splitlines()
        assert lines[0].startswith("Invoice Number,Client Name")
        assert len(lines) == 2
        assert lines[1].startswith(paid.invoice_number)

    async def test_payment_history_and_receipt(
        self, client: AsyncClient, admin_headers: dict, db_session: AsyncSession
    ):
        invoice = await InvoiceFactory.create_with_payments(db_session, ["10", "5"])

        history = await client.get("/api/payments/history", headers=admin_headers)

        data = history.json()
        assert data["total"] == 2
        assert data["page"] == 1
        assert {item["invoice_number"] for item in data["items"]} == {invoice.invoice_number}

        receipt = await client.get(
            f"/api/payments/{data['items'][0]['payment_id']}/receipt", headers=admin_headers
        )
        assert receipt.status_code == 200
        assert receipt.headers["content-type"] == "application/pdf"
        assert receipt.content.startswith(b"%PDF")

    async def test_invoice_pdf(
        self, client: AsyncClient, admin_headers: dict, db_session: AsyncSession
    ):
        invoice = await InvoiceFactory.create(db_session)

        response = await client.get(f"/api/invoices/{invoice.id}/pdf", headers=admin_headers)

        assert response.status_code == 200
        assert invoice.invoice_number in response.headers["content-disposition"]
        assert response.content.startswith(b"%PDF")

    async def test_audit_trail(self, client: AsyncClient, admin_headers: dict):
        invoice = await _create(client, admin_headers)
        await client.post(f"/api/invoices/{invoice['id']}/send", headers=admin_headers)

        response = await client.get(f"/api/invoices/{invoice['id']}/audit", headers=admin_headers)

        assert response.status_code == 200
        entries = response.json()
        assert [entry["action"] for entry in entries] == ["CREATE", "SEND"]
        assert entries[1]["changes"] == {"status": {"before": "draft", "after": "sent"}}
        assert entries[0]["actor_id"] == "admin-1"
