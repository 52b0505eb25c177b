"""
Invoice management API endpoints.

WHAT: RESTful API for the invoice lifecycle and its reports.

WHY: The billing dashboard drives everything through these routes:
1. Creating and editing drafts (with a live totals preview)
2. Sending invoices to clients
3. Recording payments, disputes and cancellations
4. Listing by tab, searching, counting and exporting

HOW: FastAPI router with:
- ADMIN-only access (bearer JWT)
- Optional If-Match header carrying the invoice version
- InvoiceService for writes, InvoiceQueryService for reads
"""

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from billing.core.deps import Actor, get_expected_version, require_admin
from billing.db.session import get_db
from billing.models.invoice import Invoice, InvoiceView
from billing.schemas.audit_log import AuditLogResponse
from billing.schemas.delete_log import DeleteLogResponse
from billing.schemas.invoice import (
    CancelInfo,
    CancelRequest,
    DeleteRequest,
    DisputeInfo,
    DisputeRequest,
    InvoiceCounts,
    InvoiceCreate,
    InvoiceListResponse,
    InvoiceResponse,
    InvoiceUpdate,
    LineItemResponse,
    PartialPaymentCreate,
    PaymentCreate,
    PaymentResponse,
    PaymentResult,
    SendRequest,
    TotalsRequest,
    TotalsResponse,
)
from billing.services.audit import AuditService
from billing.services.delete_log import DeleteLogService
from billing.services.invoice_query import InvoiceQueryService
from billing.services.invoice_service import CLIENT_FIELDS, InvoiceService
from billing.services.lifecycle import derive_view, is_overdue


router = APIRouter(prefix="/invoices", tags=["invoices"])


def _payment_to_response(payment) -> PaymentResponse:
    return PaymentResponse(
        id=payment.id,
        invoice_id=payment.invoice_id,
        amount=float(payment.amount),
        payment_date=payment.payment_date,
        method=payment.method,
        reference=payment.reference,
        notes=payment.notes,
        created_at=payment.created_at,
    )


def invoice_to_response(invoice: Invoice, today: Optional[date] = None) -> InvoiceResponse:
    """
    Convert Invoice model to InvoiceResponse schema.

    WHY: Centralized conversion keeps the derived view and the decimal to
    float conversion consistent across endpoints.
    """
    today = today or date.today()
    dispute = None
    if invoice.dispute_status is not None:
        dispute = DisputeInfo(
            reason=invoice.dispute_reason,
            notes=invoice.dispute_notes,
            status=invoice.dispute_status,
            updated_at=invoice.dispute_updated_at,
        )
    cancellation = None
    if invoice.cancelled_at is not None:
        cancellation = CancelInfo(reason=invoice.cancel_reason, cancelled_at=invoice.cancelled_at)

    return InvoiceResponse(
        id=invoice.id,
        invoice_number=invoice.invoice_number,
        status=invoice.status,
        view=derive_view(invoice, today),
        is_overdue=is_overdue(invoice, today),
        version=invoice.version,
        invoice_date=invoice.invoice_date,
        due_date=invoice.due_date,
        client_name=invoice.client_name,
        client_email=invoice.client_email,
        client_phone=invoice.client_phone,
        client_address=invoice.client_address,
        client_city=invoice.client_city,
        client_state=invoice.client_state,
        client_zip=invoice.client_zip,
        client_country=invoice.client_country,
        terms=invoice.terms,
        line_items=[
            LineItemResponse(
                id=item.id,
                position=item.position,
                description=item.description,
                quantity=item.quantity,
                unit_price=float(item.unit_price),
                amount=float(item.amount),
            )
            for item in invoice.line_items
        ],
        payments=[_payment_to_response(p) for p in invoice.payments],
        subtotal=float(invoice.subtotal),
        sales_tax=float(invoice.sales_tax),
        shipping_cost=float(invoice.shipping_cost),
        total=float(invoice.total),
        amount_paid=float(invoice.amount_paid),
        outstanding_balance=float(invoice.outstanding_balance),
        credit_balance=float(invoice.credit_balance),
        tax_mode=invoice.tax_mode,
        dispute=dispute,
        cancellation=cancellation,
        sent_at=invoice.sent_at,
        created_at=invoice.created_at,
        updated_at=invoice.updated_at,
        is_editable=invoice.is_editable,
    )


def _client_fields(data, only_set: bool = False) -> dict:
    return data.model_dump(include=set(CLIENT_FIELDS), exclude_unset=only_set)


# ============================================================================
# Totals preview, reports
# ============================================================================


@router.post(
    "/calculate",
    response_model=TotalsResponse,
    summary="Preview invoice totals",
)
async def calculate_totals(
    data: TotalsRequest,
    actor: Actor = Depends(require_admin),
) -> TotalsResponse:
    """
    Compute item amounts, tax and total without saving anything.
    """
    totals = InvoiceService.compute_totals(
        [item.model_dump() for item in data.line_items],
        tax_override=data.sales_tax,
        shipping_cost=data.shipping_cost,
    )
    return TotalsResponse(
        line_items=[
            {
                "description": item.description,
                "quantity": item.quantity,
                "unit_price": float(item.unit_price),
                "amount": float(item.amount),
            }
            for item in totals.line_items
        ],
        subtotal=float(totals.subtotal),
        sales_tax=float(totals.sales_tax),
        shipping_cost=float(totals.shipping_cost),
        total=float(totals.total),
        tax_mode=totals.tax_mode,
    )


@router.get(
    "",
    response_model=InvoiceListResponse,
    summary="List invoices",
    description="List invoices under a dashboard tab, optionally filtered by search text",
)
async def list_invoices(
    view: InvoiceView = Query(InvoiceView.ALL, description="Dashboard tab"),
    q: Optional[str] = Query(None, description="Search invoice number, client name or email"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> InvoiceListResponse:
    today = date.today()
    invoices, total = await InvoiceQueryService(db).list_by_view(
        view, search=q, skip=skip, limit=limit, today=today
    )
    return InvoiceListResponse(
        items=[invoice_to_response(invoice, today) for invoice in invoices],
        total=total,
        skip=skip,
        limit=limit,
        view=view,
    )


@router.get(
    "/counts",
    response_model=InvoiceCounts,
    summary="Invoice count per tab",
)
async def invoice_counts(
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> InvoiceCounts:
    return InvoiceCounts(counts=await InvoiceQueryService(db).status_counts())


@router.get(
    "/export/paid.csv",
    summary="Export paid invoices",
    description="CSV of all paid invoices with their payment summary",
)
async def export_paid_invoices(
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> Response:
    content = await InvoiceQueryService(db).export_paid_csv()
    filename = f"paid-invoices-{date.today().isoformat()}.csv"
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get(
    "/{invoice_id}/audit",
    response_model=List[AuditLogResponse],
    summary="Invoice audit trail",
)
async def invoice_audit_trail(
    invoice_id: int,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> List[AuditLogResponse]:
    """Who did what to this invoice, oldest first (also after deletion)."""
    entries = await AuditService(db).invoice_history(invoice_id, skip=skip, limit=limit)
    return [AuditLogResponse.model_validate(entry) for entry in entries]


# ============================================================================
# Invoice CRUD Endpoints
# ============================================================================


@router.post(
    "",
    response_model=InvoiceResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create invoice",
    description="Create a draft invoice, optionally sending it right away",
)
async def create_invoice(
    data: InvoiceCreate,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> InvoiceResponse:
    """
    Create a new invoice.

    Raises:
        ValidationError (400): Invalid input, or send requested without
            client name / email
        EmailServiceError (502): Send requested and delivery failed
    """
    invoice = await InvoiceService(db).create_invoice(
        actor,
        line_items=[item.model_dump() for item in data.line_items],
        shipping_cost=data.shipping_cost,
        sales_tax=data.sales_tax,
        tax_mode=data.tax_mode,
        invoice_date=data.invoice_date,
        due_date=data.due_date,
        terms=data.terms,
        send=data.send,
        subject=data.subject,
        message=data.message,
        **_client_fields(data),
    )
    return invoice_to_response(invoice)


@router.get(
    "/{invoice_id}",
    response_model=InvoiceResponse,
    summary="Get invoice",
)
async def get_invoice(
    invoice_id: int,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> InvoiceResponse:
    invoice = await InvoiceService(db).get_invoice(invoice_id)
    return invoice_to_response(invoice)


@router.put(
    "/{invoice_id}",
    response_model=InvoiceResponse,
    summary="Save draft invoice",
)
async def update_invoice(
    invoice_id: int,
    data: InvoiceUpdate,
    actor: Actor = Depends(require_admin),
    expected_version: Optional[int] = Depends(get_expected_version),
    db: AsyncSession = Depends(get_db),
) -> InvoiceResponse:
    """
    Save edits to a draft.

    Raises:
        InvalidStateTransitionError (400): If the invoice is not a draft
        ConcurrencyConflictError (409): If If-Match is stale
    """
    line_items = None
    if data.line_items is not None:
        line_items = [item.model_dump() for item in data.line_items]
    invoice = await InvoiceService(db).update_invoice(
        invoice_id,
        actor,
        line_items=line_items,
        shipping_cost=data.shipping_cost,
        sales_tax=data.sales_tax,
        tax_mode=data.tax_mode,
        invoice_date=data.invoice_date,
        due_date=data.due_date,
        terms=data.terms,
        expected_version=expected_version,
        send=data.send,
        subject=data.subject,
        message=data.message,
        **_client_fields(data, only_set=True),
    )
    return invoice_to_response(invoice)


@router.delete(
    "/{invoice_id}",
    response_model=DeleteLogResponse,
    summary="Delete invoice",
    description="Remove an invoice into the delete log (restorable once)",
)
async def delete_invoice(
    invoice_id: int,
    data: DeleteRequest,
    actor: Actor = Depends(require_admin),
    expected_version: Optional[int] = Depends(get_expected_version),
    db: AsyncSession = Depends(get_db),
) -> DeleteLogResponse:
    """
    Raises:
        ValidationError (400): Blank reason
        ConcurrencyConflictError (409): Invoice changed since it was read
    """
    entry = await DeleteLogService(db).delete_invoice(
        invoice_id, data.reason, actor, expected_version=expected_version
    )
    return DeleteLogResponse.model_validate(entry)


@router.get(
    "/{invoice_id}/pdf",
    status_code=status.HTTP_200_OK,
    summary="Download invoice PDF",
)
async def download_invoice_pdf(
    invoice_id: int,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> Response:
    service = InvoiceService(db)
    invoice = await service.get_invoice(invoice_id)
    pdf_bytes = service.render_pdf(invoice)

    filename = f"{invoice.invoice_number}.pdf"
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ============================================================================
# Lifecycle actions
# ============================================================================


@router.post(
    "/{invoice_id}/send",
    response_model=InvoiceResponse,
    summary="Send invoice",
    description="Email the invoice PDF to the client and mark it sent",
)
async def send_invoice(
    invoice_id: int,
    data: Optional[SendRequest] = None,
    actor: Actor = Depends(require_admin),
    expected_version: Optional[int] = Depends(get_expected_version),
    db: AsyncSession = Depends(get_db),
) -> InvoiceResponse:
    """
    Raises:
        ValidationError (400): Client name or email missing
        InvalidStateTransitionError (400): Invoice is not draft or sent
        EmailServiceError (502): Delivery failed, invoice unchanged
    """
    data = data or SendRequest()
    invoice = await InvoiceService(db).send(
        invoice_id,
        subject=data.subject,
        message=data.message,
        actor=actor,
        expected_version=expected_version,
    )
    return invoice_to_response(invoice)


@router.post(
    "/{invoice_id}/payments",
    response_model=PaymentResult,
    status_code=status.HTTP_201_CREATED,
    summary="Record payment",
)
async def record_payment(
    invoice_id: int,
    data: PaymentCreate,
    actor: Actor = Depends(require_admin),
    expected_version: Optional[int] = Depends(get_expected_version),
    db: AsyncSession = Depends(get_db),
) -> PaymentResult:
    """
    Record a payment received for an invoice.

    Raises:
        InvalidStateTransitionError (400): Invoice cannot take payments
        ConcurrencyConflictError (409): Invoice changed concurrently
    """
    invoice, payment = await InvoiceService(db).apply_payment(
        invoice_id,
        data.amount,
        method=data.method,
        payment_date=data.payment_date,
        reference=data.reference,
        notes=data.notes,
        actor=actor,
        expected_version=expected_version,
    )
    return PaymentResult(
        invoice=invoice_to_response(invoice),
        payment=_payment_to_response(payment),
    )


@router.post(
    "/{invoice_id}/payments/partial",
    response_model=PaymentResult,
    status_code=status.HTTP_201_CREATED,
    summary="Record partial payment",
    description="Quick entry: method Other, dated today",
)
async def record_partial_payment(
    invoice_id: int,
    data: PartialPaymentCreate,
    actor: Actor = Depends(require_admin),
    expected_version: Optional[int] = Depends(get_expected_version),
    db: AsyncSession = Depends(get_db),
) -> PaymentResult:
    invoice, payment = await InvoiceService(db).record_partial_payment(
        invoice_id, data.amount, actor=actor, expected_version=expected_version
    )
    return PaymentResult(
        invoice=invoice_to_response(invoice),
        payment=_payment_to_response(payment),
    )


@router.post(
    "/{invoice_id}/dispute",
    response_model=InvoiceResponse,
    summary="Mark invoice disputed",
)
async def dispute_invoice(
    invoice_id: int,
    data: DisputeRequest,
    actor: Actor = Depends(require_admin),
    expected_version: Optional[int] = Depends(get_expected_version),
    db: AsyncSession = Depends(get_db),
) -> InvoiceResponse:
    invoice = await InvoiceService(db).mark_disputed(
        invoice_id,
        data.reason,
        notes=data.notes,
        actor=actor,
        expected_version=expected_version,
    )
    return invoice_to_response(invoice)


@router.post(
    "/{invoice_id}/dispute/resolve",
    response_model=InvoiceResponse,
    summary="Resolve dispute",
)
async def resolve_dispute(
    invoice_id: int,
    actor: Actor = Depends(require_admin),
    expected_version: Optional[int] = Depends(get_expected_version),
    db: AsyncSession = Depends(get_db),
) -> InvoiceResponse:
    invoice = await InvoiceService(db).resolve_dispute(
        invoice_id, actor=actor, expected_version=expected_version
    )
    return invoice_to_response(invoice)


@router.post(
    "/{invoice_id}/cancel",
    response_model=InvoiceResponse,
    summary="Cancel invoice",
)
async def cancel_invoice(
    invoice_id: int,
    data: Optional[CancelRequest] = None,
    actor: Actor = Depends(require_admin),
    expected_version: Optional[int] = Depends(get_expected_version),
    db: AsyncSession = Depends(get_db),
) -> InvoiceResponse:
    data = data or CancelRequest()
    invoice = await InvoiceService(db).cancel(
        invoice_id,
        reason=data.reason,
        actor=actor,
        expected_version=expected_version,
    )
    return invoice_to_response(invoice)
