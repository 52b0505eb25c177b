"""
Audit logging service.

WHAT: Service layer for creating audit log entries with request context.

WHY: Each invoice action (create, edit, send, payment, dispute, resolve,
cancel, delete, restore) is recorded with the acting admin, the request
IP and user agent. Auditing must never break the business operation it
describes.

HOW: Uses the AuditLogDAO for persistence and the RequestContext
middleware for automatic IP/user-agent capture.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from billing.dao.audit_log import AuditLogDAO
from billing.middleware.request_context import get_request_context
from billing.models.audit_log import AuditAction, AuditLog

# Logger for audit service errors (not audit events themselves)
logger = logging.getLogger(__name__)

INVOICE_RESOURCE = "invoice"
DELETE_LOG_RESOURCE = "invoice_delete_log"


class AuditService:
    """
    Service for creating audit log entries.

    Example:
        audit = AuditService(db)
        await audit.log_invoice_event(
            AuditAction.PAYMENT, invoice.id, actor_id=actor.id,
            extra_data={"amount": "10.00"},
        )
    """

    def __init__(self, session: AsyncSession):
        self.dao = AuditLogDAO(session)

    def _get_context(self) -> tuple[Optional[str], Optional[str]]:
        """(ip_address, user_agent) of the current request, if any."""
        ctx = get_request_context()
        if ctx:
            return ctx.ip_address, ctx.user_agent
        return None, None

    async def log_event(
        self,
        action: AuditAction,
        resource_type: str,
        actor_id: Optional[str] = None,
        resource_id: Optional[int] = None,
        changes: Optional[Dict[str, Any]] = None,
        extra_data: Optional[Dict[str, Any]] = None,
    ) -> Optional[AuditLog]:
        """
        Log a generic audit event.

        Returns:
            Created AuditLog or None if logging failed

        Note:
            This method never raises. Errors are logged to the application
            logger instead.
        """
        try:
            ip_address, user_agent = self._get_context()
            return await self.dao.create(
                action=action,
                resource_type=resource_type,
                actor_id=actor_id,
                resource_id=resource_id,
                changes=changes,
                extra_data=extra_data,
                ip_address=ip_address,
                user_agent=user_agent,
            )
        except Exception as e:
            # Audit failures must not block invoice operations
            logger.error(f"Failed to create audit log: {e}", exc_info=True)
            return None

    async def log_invoice_event(
        self,
        action: AuditAction,
        invoice_id: int,
        actor_id: Optional[str] = None,
        before_status: Optional[str] = None,
        after_status: Optional[str] = None,
        extra_data: Optional[Dict[str, Any]] = None,
    ) -> Optional[AuditLog]:
        """
        Log an action on an invoice, recording the status change if any.
        """
        changes = None
        if before_status != after_status and after_status is not None:
            changes = {"status": {"before": before_status, "after": after_status}}
        return await self.log_event(
            action=action,
            resource_type=INVOICE_RESOURCE,
            actor_id=actor_id,
            resource_id=invoice_id,
            changes=changes,
            extra_data=extra_data,
        )

    async def log_restore(
        self,
        log_id: int,
        restored_invoice_id: int,
        actor_id: Optional[str] = None,
    ) -> Optional[AuditLog]:
        return await self.log_event(
            action=AuditAction.RESTORE,
            resource_type=DELETE_LOG_RESOURCE,
            actor_id=actor_id,
            resource_id=log_id,
            extra_data={"restored_invoice_id": restored_invoice_id},
        )

    async def invoice_history(
        self,
        invoice_id: int,
        skip: int = 0,
        limit: int = 100,
    ) -> List[AuditLog]:
        """
        Audit trail of one invoice id, oldest first.

        Entries outlive the invoice, so the trail of a deleted invoice
        stays readable under its old id.
        """
        return await self.dao.get_for_resource(
            INVOICE_RESOURCE, invoice_id, skip=skip, limit=limit
        )
