"""
Delete Log Data Access Object (DAO).

WHAT: Persistence for invoice delete-log entries.

WHY: Entries are append-only except for the restore flag. The flag is
flipped with a conditional UPDATE so two concurrent restores of the same
entry cannot both succeed.
"""

from datetime import datetime
from typing import Any, List

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from billing.core.exceptions import DeleteLogImmutableError
from billing.dao.base import BaseDAO
from billing.models.delete_log import DeleteLogEntry


class DeleteLogDAO(BaseDAO[DeleteLogEntry]):
    """Data Access Object for DeleteLogEntry."""

    def __init__(self, session: AsyncSession):
        super().__init__(DeleteLogEntry, session)

    async def list_entries(
        self,
        pending_only: bool = False,
        skip: int = 0,
        limit: int = 100,
    ) -> List[DeleteLogEntry]:
        """
        List log entries, most recently deleted first.

        Args:
            pending_only: Only entries that have not been restored yet
        """
        query = select(DeleteLogEntry)
        if pending_only:
            query = query.where(DeleteLogEntry.restored.is_(False))
        query = query.order_by(DeleteLogEntry.deleted_at.desc(), DeleteLogEntry.id.desc())
        result = await self.session.execute(query.offset(skip).limit(limit))
        return list(result.scalars().all())

    async def claim_for_restore(self, log_id: int, restored_at: datetime) -> bool:
        """
        Atomically mark an entry as restored.

        Returns:
            True if this call flipped the flag, False if the entry was
            already restored (or does not exist)
        """
        result = await self.session.execute(
            update(DeleteLogEntry)
            .where(DeleteLogEntry.id == log_id, DeleteLogEntry.restored.is_(False))
            .values(restored=True, restored_at=restored_at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def set_restored_invoice(self, log_id: int, invoice_id: int) -> None:
        await self.session.execute(
            update(DeleteLogEntry)
            .where(DeleteLogEntry.id == log_id)
            .values(restored_invoice_id=invoice_id)
            .execution_options(synchronize_session=False)
        )

    async def update(self, log_id: int, **kwargs: Any) -> None:
        """
        Attempt to edit a log entry (BLOCKED).

        Raises:
            DeleteLogImmutableError: Always; use claim_for_restore
        """
        raise DeleteLogImmutableError(log_id=log_id)

    async def delete(self, log_id: int) -> None:
        """
        Attempt to remove a log entry (BLOCKED).

        Raises:
            DeleteLogImmutableError: Always raised - entries are never removed
        """
        raise DeleteLogImmutableError("Delete log entries cannot be removed.", log_id=log_id)
