"""
Audit log schemas.

WHAT: Response shape of audit trail entries.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict

from billing.models.audit_log import AuditAction


class AuditLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    action: AuditAction
    actor_id: Optional[str]
    resource_type: str
    resource_id: Optional[int]
    changes: Optional[Dict[str, Any]]
    extra_data: Optional[Dict[str, Any]]
    ip_address: Optional[str]
    created_at: datetime
