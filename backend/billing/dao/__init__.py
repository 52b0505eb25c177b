"""
Data Access Object (DAO) package.

WHY: DAOs provide a clean separation between database operations and business logic,
making the codebase more testable and maintainable.
"""

from billing.dao.base import BaseDAO
from billing.dao.audit_log import AuditLogDAO
from billing.dao.invoice import InvoiceDAO
from billing.dao.delete_log import DeleteLogDAO

__all__ = [
    "BaseDAO",
    "AuditLogDAO",
    "InvoiceDAO",
    "DeleteLogDAO",
]
