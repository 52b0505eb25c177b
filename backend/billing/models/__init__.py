"""
Database models package.

WHY: Centralizing model imports ensures Alembic can discover all models
for migration generation and makes it easier to import models elsewhere.
"""

from billing.models.base import Base, TimestampMixin, PrimaryKeyMixin, utcnow
from billing.models.audit_log import AuditLog, AuditAction
from billing.models.invoice import (
    Invoice,
    InvoiceLineItem,
    InvoiceNumberSequence,
    InvoiceStatus,
    InvoiceView,
    DisputeStatus,
    Payment,
    PaymentMethod,
    TaxMode,
    default_terms,
)
from billing.models.delete_log import DeleteLogEntry

__all__ = [
    "Base",
    "TimestampMixin",
    "PrimaryKeyMixin",
    "utcnow",
    "AuditLog",
    "AuditAction",
    "Invoice",
    "InvoiceLineItem",
    "InvoiceNumberSequence",
    "InvoiceStatus",
    "InvoiceView",
    "DisputeStatus",
    "Payment",
    "PaymentMethod",
    "TaxMode",
    "default_terms",
    "DeleteLogEntry",
]
