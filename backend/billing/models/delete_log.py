"""
Delete log model.

WHAT: Append-only record of deleted invoices, one entry per delete.

WHY: Deleting an invoice removes it from every list and total, but the
business must be able to audit who deleted what and why, and undo the
delete. Each entry stores a full snapshot of the invoice (line items and
payments included) so a restore can rebuild it.

HOW: The entry is written once at delete time. The only later change is
the restore flag (restored, restored_at, restored_invoice_id), flipped by
a conditional UPDATE so an entry can be restored at most once.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import Boolean, Column, DateTime, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped

from billing.models.base import Base, PrimaryKeyMixin, utcnow


class DeleteLogEntry(Base, PrimaryKeyMixin):
    """
    A deleted invoice and the context of its deletion.

    Fields:
    - invoice_id: Id the invoice had (no FK, the row is gone)
    - invoice_number, status: Copied for listing without opening the snapshot
    - snapshot: Every invoice field as JSON (money as strings, dates ISO)
    - deleted_by / deleted_by_name: Actor who deleted it
    - reason: Required free-text justification
    - restored / restored_at / restored_invoice_id: Set once on restore
    """

    __tablename__ = "invoice_delete_logs"

    invoice_id: Mapped[int] = Column(Integer, nullable=False, index=True)
    invoice_number: Mapped[str] = Column(String(50), nullable=False, index=True)
    status: Mapped[str] = Column(String(32), nullable=False)
    snapshot: Mapped[Dict[str, Any]] = Column(JSON, nullable=False)

    deleted_by: Mapped[str] = Column(String(255), nullable=False)
    deleted_by_name: Mapped[Optional[str]] = Column(String(255), nullable=True)
    deleted_at: Mapped[datetime] = Column(DateTime, nullable=False, default=utcnow, index=True)
    reason: Mapped[str] = Column(Text, nullable=False)

    restored: Mapped[bool] = Column(Boolean, nullable=False, default=False, index=True)
    restored_at: Mapped[Optional[datetime]] = Column(DateTime, nullable=True)
    restored_invoice_id: Mapped[Optional[int]] = Column(Integer, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<DeleteLogEntry(id={self.id}, invoice={self.invoice_number}, "
            f"restored={self.restored})>"
        )
