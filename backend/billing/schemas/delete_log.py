"""
Delete log schemas.

WHAT: Response shapes for deleted-invoice log entries.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict


class DeleteLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    invoice_id: int
    invoice_number: str
    status: str
    reason: str
    deleted_by: str
    deleted_by_name: Optional[str]
    deleted_at: datetime
    restored: bool
    restored_at: Optional[datetime]
    restored_invoice_id: Optional[int]
    snapshot: Dict[str, Any]


class DeleteLogListResponse(BaseModel):
    items: List[DeleteLogResponse]
    pending_only: bool
