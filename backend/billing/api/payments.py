"""
Payment report API endpoints.

WHAT: Payment history across all invoices and per-payment receipts.

HOW: FastAPI router over InvoiceQueryService, ADMIN only.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from billing.core.deps import Actor, require_admin
from billing.db.session import get_db
from billing.schemas.payment import PaymentHistoryItem, PaymentHistoryResponse
from billing.services.invoice_query import InvoiceQueryService


router = APIRouter(prefix="/payments", tags=["payments"])


@router.get(
    "/history",
    response_model=PaymentHistoryResponse,
    summary="Payment history",
    description="All payments on active invoices, most recent payment date first",
)
async def payment_history(
    page: int = Query(1, ge=1),
    page_size: Optional[int] = Query(None, ge=1, le=100),
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> PaymentHistoryResponse:
    history = await InvoiceQueryService(db).payment_history(page=page, page_size=page_size)
    return PaymentHistoryResponse(
        items=[
            PaymentHistoryItem(
                payment_id=row.payment.id,
                invoice_id=row.invoice_id,
                invoice_number=row.invoice_number,
                client_name=row.client_name,
                invoice_total=float(row.invoice_total),
                amount=float(row.payment.amount),
                payment_date=row.payment.payment_date,
                method=row.payment.method,
                reference=row.payment.reference,
                notes=row.payment.notes,
                created_at=row.payment.created_at,
            )
            for row in history.rows
        ],
        page=history.page,
        page_size=history.page_size,
        total=history.total,
        total_pages=history.total_pages,
    )


@router.get(
    "/{payment_id}/receipt",
    summary="Download payment receipt",
)
async def download_receipt(
    payment_id: str,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> Response:
    payment, invoice, pdf_bytes = await InvoiceQueryService(db).get_receipt_pdf(payment_id)
    filename = f"receipt-{invoice.invoice_number}-{payment.payment_date.isoformat()}.pdf"
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
