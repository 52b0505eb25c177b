"""
Audit Log Data Access Object (DAO).

WHAT: Data access layer for audit log operations.

WHY: Every invoice mutation leaves an audit row. This DAO writes them and
answers "what happened to invoice N", while refusing updates and deletes.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from billing.core.exceptions import AuditLogImmutableError
from billing.models.audit_log import AuditAction, AuditLog


class AuditLogDAO:
    """
    Data Access Object for audit log operations.

    HOW: Uses SQLAlchemy async session for all operations. Not a BaseDAO:
    the generic update/delete must not exist for audit rows.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        action: AuditAction,
        resource_type: str,
        actor_id: Optional[str] = None,
        resource_id: Optional[int] = None,
        changes: Optional[Dict[str, Any]] = None,
        extra_data: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> AuditLog:
        """
        Create a new audit log entry.

        Args:
            action: Type of event (from AuditAction enum)
            resource_type: Category of affected resource
            actor_id: Admin who performed the action
            resource_id: Specific resource ID
            changes: Before/after values for mutations
            extra_data: Additional context
            ip_address: Client IP address
            user_agent: Client browser/application info

        Returns:
            The created AuditLog entry
        """
        log = AuditLog(
            actor_id=actor_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            changes=changes,
            extra_data=extra_data,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        self.session.add(log)
        await self.session.flush()
        await self.session.refresh(log)
        return log

    async def get_for_resource(
        self,
        resource_type: str,
        resource_id: int,
        skip: int = 0,
        limit: int = 100,
    ) -> List[AuditLog]:
        """Audit history of one resource, oldest first."""
        result = await self.session.execute(
            select(AuditLog)
            .where(
                AuditLog.resource_type == resource_type,
                AuditLog.resource_id == resource_id,
            )
            .order_by(AuditLog.created_at.asc(), AuditLog.id.asc())
            .offset(skip)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def update(self, log_id: int, **kwargs: Any) -> None:
        """
        Attempt to update an audit log (BLOCKED).

        Raises:
            AuditLogImmutableError: Always raised - updates not allowed
        """
        raise AuditLogImmutableError("Audit logs are immutable and cannot be updated.")

    async def delete(self, log_id: int) -> None:
        """
        Attempt to delete an audit log (BLOCKED).

        Raises:
            AuditLogImmutableError: Always raised - deletions not allowed
        """
        raise AuditLogImmutableError("Audit logs cannot be deleted.")
