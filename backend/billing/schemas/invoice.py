"""
Invoice schemas for API request/response validation.

WHAT: Pydantic schemas for invoices, line items, payments and the
lifecycle actions.

WHY: Schemas provide:
1. Type-safe request/response handling
2. Automatic validation with clear error messages
3. OpenAPI documentation generation

HOW: Uses Pydantic v2 with Field constraints and model_config. Line item
numbers are forgiving (blank or non-numeric input counts as 0), matching
the dashboard form; payment amounts and shipping are strict.
"""

from datetime import datetime, date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from billing.models.invoice import (
    DisputeStatus,
    InvoiceStatus,
    InvoiceView,
    PaymentMethod,
    TaxMode,
)
from billing.services.totals import coerce_decimal, coerce_quantity


# ============================================================================
# Line items and totals
# ============================================================================


class LineItemInput(BaseModel):
    """
    A line item as entered on the invoice form.

    WHY: The amount is never accepted from the client; it is recomputed
    from quantity x unit price on every save.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    description: str = Field(default="", max_length=2000)
    quantity: int = Field(default=0, description="Whole units, fractions truncated")
    unit_price: Decimal = Field(default=Decimal("0"), description="Price per unit")

    @field_validator("quantity", mode="before")
    @classmethod
    def _coerce_quantity(cls, value: Any) -> int:
        return coerce_quantity(value)

    @field_validator("unit_price", mode="before")
    @classmethod
    def _coerce_unit_price(cls, value: Any) -> Decimal:
        return coerce_decimal(value)


class LineItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    position: int
    description: str
    quantity: int
    unit_price: float
    amount: float


class TotalsRequest(BaseModel):
    """Preview request: the totals a save would persist."""

    line_items: List[LineItemInput] = Field(default_factory=list)
    shipping_cost: Decimal = Field(default=Decimal("0"), ge=0)
    sales_tax: Optional[Decimal] = Field(
        default=None,
        ge=0,
        description="Manual tax amount; omit to apply the default rate",
    )


class TotalsResponse(BaseModel):
    line_items: List[Dict[str, Any]]
    subtotal: float
    sales_tax: float
    shipping_cost: float
    total: float
    tax_mode: TaxMode


# ============================================================================
# Create / update
# ============================================================================


class ClientFields(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    client_name: Optional[str] = Field(default=None, max_length=255)
    client_email: Optional[str] = Field(default=None, max_length=255)
    client_phone: Optional[str] = Field(default=None, max_length=50)
    client_address: Optional[str] = Field(default=None, max_length=255)
    client_city: Optional[str] = Field(default=None, max_length=100)
    client_state: Optional[str] = Field(default=None, max_length=100)
    client_zip: Optional[str] = Field(default=None, max_length=20)
    client_country: Optional[str] = Field(default=None, max_length=100)


class SendOptions(BaseModel):
    subject: Optional[str] = Field(default=None, max_length=255)
    message: Optional[str] = Field(default=None, max_length=5000)


class InvoiceCreate(ClientFields, SendOptions):
    """
    Schema for creating an invoice.

    A new invoice is a draft; ``send=true`` sends it in the same request.
    """

    line_items: List[LineItemInput] = Field(default_factory=list)
    shipping_cost: Decimal = Field(default=Decimal("0"), ge=0)
    sales_tax: Optional[Decimal] = Field(default=None, ge=0)
    tax_mode: Optional[TaxMode] = None
    invoice_date: Optional[date] = None
    due_date: Optional[date] = None
    terms: Optional[str] = None
    send: bool = False


class InvoiceUpdate(ClientFields, SendOptions):
    """
    Schema for saving a draft invoice.

    All fields optional. Sending ``sales_tax`` switches the invoice to
    manual tax; ``tax_mode="auto"`` switches it back.
    """

    line_items: Optional[List[LineItemInput]] = None
    shipping_cost: Optional[Decimal] = Field(default=None, ge=0)
    sales_tax: Optional[Decimal] = Field(default=None, ge=0)
    tax_mode: Optional[TaxMode] = None
    invoice_date: Optional[date] = None
    due_date: Optional[date] = None
    terms: Optional[str] = None
    send: bool = False


# ============================================================================
# Actions
# ============================================================================


class SendRequest(SendOptions):
    pass


class PaymentCreate(BaseModel):
    """Full payment entry (mark paid form)."""

    model_config = ConfigDict(str_strip_whitespace=True)

    amount: Decimal = Field(..., gt=0, description="Amount received")
    method: PaymentMethod = PaymentMethod.OTHER
    payment_date: Optional[date] = Field(default=None, description="Defaults to today")
    reference: Optional[str] = Field(default=None, max_length=255)
    notes: Optional[str] = None


class PartialPaymentCreate(BaseModel):
    amount: Decimal = Field(..., gt=0)


class DisputeRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    reason: str = Field(..., min_length=1)
    notes: Optional[str] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = None


class DeleteRequest(BaseModel):
    reason: str = Field(..., min_length=1, description="Why the invoice is deleted")


# ============================================================================
# Responses
# ============================================================================


class PaymentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    invoice_id: int
    amount: float
    payment_date: date
    method: PaymentMethod
    reference: Optional[str]
    notes: Optional[str]
    created_at: datetime


class DisputeInfo(BaseModel):
    reason: Optional[str]
    notes: Optional[str]
    status: Optional[DisputeStatus]
    updated_at: Optional[datetime]


class CancelInfo(BaseModel):
    reason: Optional[str]
    cancelled_at: Optional[datetime]


class InvoiceResponse(BaseModel):
    """
    Schema for invoice response data.

    WHY: Complete invoice data for display including the derived view
    (``overdue`` is computed at read time, never stored) and the version
    token clients echo in If-Match.
    """

    id: int
    invoice_number: str
    status: InvoiceStatus
    view: InvoiceView
    is_overdue: bool
    version: int

    invoice_date: date
    due_date: date

    client_name: str
    client_email: str
    client_phone: Optional[str]
    client_address: Optional[str]
    client_city: Optional[str]
    client_state: Optional[str]
    client_zip: Optional[str]
    client_country: Optional[str]
    terms: Optional[str]

    line_items: List[LineItemResponse]
    payments: List[PaymentResponse]

    # Amounts
    subtotal: float
    sales_tax: float
    shipping_cost: float
    total: float
    amount_paid: float
    outstanding_balance: float
    credit_balance: float
    tax_mode: TaxMode

    dispute: Optional[DisputeInfo]
    cancellation: Optional[CancelInfo]

    sent_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime
    is_editable: bool


class InvoiceListResponse(BaseModel):
    """
    Paginated list response for invoices.
    """

    items: List[InvoiceResponse]
    total: int
    skip: int
    limit: int
    view: InvoiceView


class InvoiceCounts(BaseModel):
    """Invoice count per dashboard tab ("all" included)."""

    counts: Dict[str, int]


class PaymentResult(BaseModel):
    invoice: InvoiceResponse
    payment: PaymentResponse
