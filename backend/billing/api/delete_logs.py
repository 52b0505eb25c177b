"""
Deleted invoice log API endpoints.

WHAT: Lists deleted invoices and restores them.

WHY: Deletes are reversible once. Admins review who deleted what and why
and bring an invoice back if the delete was a mistake.

HOW: FastAPI router over DeleteLogService, ADMIN only.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from billing.api.invoices import invoice_to_response
from billing.core.deps import Actor, require_admin
from billing.db.session import get_db
from billing.schemas.delete_log import DeleteLogListResponse, DeleteLogResponse
from billing.schemas.invoice import InvoiceResponse
from billing.services.delete_log import DeleteLogService


router = APIRouter(prefix="/invoice-delete-logs", tags=["invoice-delete-logs"])


@router.get(
    "",
    response_model=DeleteLogListResponse,
    summary="List deleted invoices",
)
async def list_delete_logs(
    pending_only: bool = Query(False, description="Only entries not restored yet"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> DeleteLogListResponse:
    entries = await DeleteLogService(db).list_entries(
        pending_only=pending_only, skip=skip, limit=limit
    )
    return DeleteLogListResponse(
        items=[DeleteLogResponse.model_validate(entry) for entry in entries],
        pending_only=pending_only,
    )


@router.get(
    "/{log_id}",
    response_model=DeleteLogResponse,
    summary="Get deleted invoice entry",
)
async def get_delete_log(
    log_id: int,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> DeleteLogResponse:
    entry = await DeleteLogService(db).get_entry(log_id)
    return DeleteLogResponse.model_validate(entry)


@router.post(
    "/{log_id}/restore",
    response_model=InvoiceResponse,
    summary="Restore deleted invoice",
    description="Re-create the invoice from its snapshot; allowed once per entry",
)
async def restore_invoice(
    log_id: int,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> InvoiceResponse:
    """
    Raises:
        DeleteLogNotFoundError (404): Unknown entry
        AlreadyRestoredError (409): Entry was already restored
    """
    invoice = await DeleteLogService(db).restore_invoice(log_id, actor)
    return invoice_to_response(invoice)
