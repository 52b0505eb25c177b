"""
Audit Log Model.

WHAT: SQLAlchemy model for recording who did what to which invoice.

WHY: Financial records need an audit trail beyond application logs:
every send, payment, dispute, cancel, delete and restore is stored with
the acting admin and the request origin.

HOW: Append-only table. JSON columns hold before/after changes and extra
context (PostgreSQL JSON, SQLite JSON for tests).
"""

import enum
from sqlalchemy import Column, Integer, String, Enum, Text, JSON

from billing.models.base import Base, TimestampMixin, PrimaryKeyMixin


class AuditAction(str, enum.Enum):
    """Auditable invoice actions."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    SEND = "SEND"
    PAYMENT = "PAYMENT"
    DISPUTE = "DISPUTE"
    RESOLVE = "RESOLVE"
    CANCEL = "CANCEL"
    DELETE = "DELETE"
    RESTORE = "RESTORE"
    EXPORT_DATA = "EXPORT_DATA"


class AuditLog(Base, PrimaryKeyMixin, TimestampMixin):
    """
    Immutable audit log entry.

    Fields:
    - actor_id: Who performed the action (token subject)
    - action: What happened (AuditAction)
    - resource_type: Category of affected resource ("invoice", "delete_log")
    - resource_id: Specific resource ID
    - changes: Before/after values for mutations
    - extra_data: Additional context (payment amount, delete reason, ...)
    - ip_address / user_agent: Request origin
    """

    __tablename__ = "audit_logs"

    actor_id = Column(String(255), nullable=True, index=True)
    action = Column(Enum(AuditAction, native_enum=False, length=32), nullable=False, index=True)
    resource_type = Column(String(100), nullable=False, index=True)
    resource_id = Column(Integer, nullable=True, index=True)

    # Example: {"status": {"before": "sent", "after": "paid"}}
    changes = Column(JSON, nullable=True)
    # NOTE: Named 'extra_data' because 'metadata' is reserved by SQLAlchemy
    extra_data = Column(JSON, nullable=True)

    ip_address = Column(String(45), nullable=True, index=True)  # IPv6 max length
    user_agent = Column(Text, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<AuditLog(id={self.id}, action={self.action.value}, "
            f"actor_id={self.actor_id}, resource_type={self.resource_type})>"
        )
