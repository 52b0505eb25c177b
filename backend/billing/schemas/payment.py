"""
Payment history schemas.

WHAT: The paginated payment-history report across all active invoices.
"""

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel

from billing.models.invoice import PaymentMethod


class PaymentHistoryItem(BaseModel):
    """A payment with the invoice it belongs to."""

    payment_id: str
    invoice_id: int
    invoice_number: str
    client_name: str
    invoice_total: float
    amount: float
    payment_date: date
    method: PaymentMethod
    reference: Optional[str]
    notes: Optional[str]
    created_at: datetime


class PaymentHistoryResponse(BaseModel):
    items: List[PaymentHistoryItem]
    page: int
    page_size: int
    total: int
    total_pages: int
