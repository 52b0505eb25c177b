"""
Invoice aggregate: invoices, their line items and their payments.

WHAT: SQLAlchemy models for billing fulfillment clients.

WHY: The invoice is the unit of billing. It owns:
1. Line items whose amounts always equal quantity x unit price
2. An append-only list of payments whose sum is amount_paid
3. Denormalized totals (subtotal, tax, shipping, total, outstanding)
4. A persisted lifecycle status, plus dispute and cancel records

HOW: Uses SQLAlchemy 2.0 with:
- Line items and payments as owned children (cascade delete-orphan)
- Money as Numeric(12, 2), read back as Decimal
- A version column (version_id_col) so concurrent writers of the same
  invoice row cannot silently overwrite each other
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional
import uuid

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    Enum as SQLEnum,
)
from sqlalchemy.orm import Mapped, relationship

from billing.core.config import settings
from billing.models.base import Base, PrimaryKeyMixin, TimestampMixin, utcnow


MONEY = Numeric(12, 2)
UNIT_PRICE = Numeric(12, 4)


def _enum_column_type(enum_cls: type, name: str) -> SQLEnum:
    # WHY: values_callable stores the value ("partially_paid"), not the name
    return SQLEnum(
        enum_cls,
        name=name,
        native_enum=False,
        length=32,
        values_callable=lambda enum: [e.value for e in enum],
    )


def _new_uuid() -> str:
    return str(uuid.uuid4())


def default_terms() -> str:
    """Standard terms printed on every invoice unless the admin edits them."""
    return "\n".join(
        [
            "Invoices must be paid in full before work begins unless written credit "
            "terms are approved by management.",
            "Unpaid invoices after the due time may incur a $19 late fee per invoice.",
            f"{settings.COMPANY_NAME} may pause receiving, prep, storage, and shipments "
            "until payment is completed.",
            "All completed labor services are non-refundable.",
            "Client is responsible for product compliance, labeling accuracy, and "
            "marketplace requirements.",
            "Any billing concern must be reported within 48 hours of invoice receipt. "
            "Unauthorized chargebacks may result in service suspension.",
        ]
    )


class InvoiceStatus(str, Enum):
    """
    Persisted invoice lifecycle status.

    WHY: Tracks the invoice through the billing process:
    - DRAFT: Being prepared, freely editable
    - SENT: Delivered to the client, awaiting payment
    - PARTIALLY_PAID: Some payment received, balance due
    - PAID: Outstanding balance reached zero
    - DISPUTED: Client contested the invoice
    - CANCELLED: Voided

    "overdue" is never stored; it is derived at read time from the due date.
    """

    DRAFT = "draft"
    SENT = "sent"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    DISPUTED = "disputed"
    CANCELLED = "cancelled"


class InvoiceView(str, Enum):
    """
    Dashboard tabs an invoice list can be filtered by.

    Every invoice falls in exactly one tab besides ALL: OVERDUE takes
    precedence over SENT and PARTIALLY_PAID.
    """

    ALL = "all"
    DRAFT = "draft"
    SENT = "sent"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    OVERDUE = "overdue"
    DISPUTED = "disputed"
    CANCELLED = "cancelled"


class TaxMode(str, Enum):
    """How sales tax is determined on recomputation."""

    AUTO = "auto"
    MANUAL = "manual"


class DisputeStatus(str, Enum):
    OPEN = "Open"
    RESOLVED = "Resolved"


class PaymentMethod(str, Enum):
    """Channels the business accepts payment through."""

    ZELLE = "Zelle"
    ACH = "ACH"
    WIRE = "Wire"
    CASH = "Cash"
    OTHER = "Other"


class Invoice(Base, PrimaryKeyMixin, TimestampMixin):
    """
    Invoice aggregate root.

    Attributes:
        id: System identifier
        invoice_number: Human-readable number (INV-YYYYMM-NNN). Not unique:
            a restored invoice keeps the number of the deleted one.
        status: Persisted lifecycle status

        Client:
        client_name, client_email, client_phone, client_address,
        client_city, client_state, client_zip, client_country

        Amounts (all Decimal, cents):
        subtotal: Sum of line item amounts
        sales_tax: Rate-derived or manually entered tax
        shipping_cost: Shipping charge (>= 0)
        total: subtotal + sales_tax + shipping_cost
        amount_paid: Sum of recorded payments
        outstanding_balance: max(0, total - amount_paid)
        tax_mode: auto (rate x subtotal) or manual (sticky override)

        Dispute / cancel records:
        dispute_reason, dispute_notes, dispute_status, dispute_updated_at
        cancel_reason, cancelled_at

        version: Optimistic concurrency token, bumped on every UPDATE
    """

    __tablename__ = "invoices"

    invoice_number: Mapped[str] = Column(
        String(50),
        nullable=False,
        index=True,
        comment="Human-readable invoice number (e.g., INV-202401-001)",
    )

    status: Mapped[InvoiceStatus] = Column(
        _enum_column_type(InvoiceStatus, "invoicestatus"),
        nullable=False,
        default=InvoiceStatus.DRAFT,
        index=True,
    )

    # Dates
    invoice_date: Mapped[date] = Column(Date, nullable=False, default=date.today)
    due_date: Mapped[date] = Column(Date, nullable=False, index=True)

    # Client
    client_name: Mapped[str] = Column(String(255), nullable=False, default="")
    client_email: Mapped[str] = Column(String(255), nullable=False, default="")
    client_phone: Mapped[Optional[str]] = Column(String(50), nullable=True)
    client_address: Mapped[Optional[str]] = Column(String(255), nullable=True)
    client_city: Mapped[Optional[str]] = Column(String(100), nullable=True)
    client_state: Mapped[Optional[str]] = Column(String(100), nullable=True)
    client_zip: Mapped[Optional[str]] = Column(String(20), nullable=True)
    client_country: Mapped[Optional[str]] = Column(String(100), nullable=True)

    terms: Mapped[Optional[str]] = Column(Text, nullable=True, default=default_terms)

    # Amounts
    subtotal: Mapped[Decimal] = Column(MONEY, nullable=False, default=Decimal("0.00"))
    sales_tax: Mapped[Decimal] = Column(MONEY, nullable=False, default=Decimal("0.00"))
    shipping_cost: Mapped[Decimal] = Column(MONEY, nullable=False, default=Decimal("0.00"))
    total: Mapped[Decimal] = Column(MONEY, nullable=False, default=Decimal("0.00"))
    amount_paid: Mapped[Decimal] = Column(MONEY, nullable=False, default=Decimal("0.00"))
    outstanding_balance: Mapped[Decimal] = Column(
        MONEY, nullable=False, default=Decimal("0.00")
    )
    tax_mode: Mapped[TaxMode] = Column(
        _enum_column_type(TaxMode, "taxmode"),
        nullable=False,
        default=TaxMode.AUTO,
    )

    # Dispute record
    dispute_reason: Mapped[Optional[str]] = Column(Text, nullable=True)
    dispute_notes: Mapped[Optional[str]] = Column(Text, nullable=True)
    dispute_status: Mapped[Optional[DisputeStatus]] = Column(
        _enum_column_type(DisputeStatus, "disputestatus"),
        nullable=True,
    )
    dispute_updated_at: Mapped[Optional[datetime]] = Column(DateTime, nullable=True)

    # Cancel record
    cancel_reason: Mapped[Optional[str]] = Column(Text, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = Column(DateTime, nullable=True)

    sent_at: Mapped[Optional[datetime]] = Column(
        DateTime,
        nullable=True,
        comment="First successful delivery to the client",
    )

    version: Mapped[int] = Column(Integer, nullable=False, default=1)

    line_items: Mapped[List["InvoiceLineItem"]] = relationship(
        "InvoiceLineItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceLineItem.position",
        lazy="selectin",
    )
    payments: Mapped[List["Payment"]] = relationship(
        "Payment",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="Payment.created_at",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Invoice(id={self.id}, number={self.invoice_number}, status={self.status})>"

    @property
    def is_editable(self) -> bool:
        """Only drafts accept edits to items, client details and amounts."""
        return self.status == InvoiceStatus.DRAFT

    @property
    def credit_balance(self) -> Decimal:
        """
        Amount paid beyond the total.

        WHY: Overpayments are absorbed (outstanding floors at zero); this
        exposes the surplus so it is not silently lost.
        """
        surplus = (self.amount_paid or Decimal("0")) - (self.total or Decimal("0"))
        return surplus if surplus > 0 else Decimal("0.00")

    @property
    def last_payment(self) -> Optional["Payment"]:
        if not self.payments:
            return None
        return max(self.payments, key=lambda p: (p.payment_date, p.created_at))


class InvoiceLineItem(Base):
    """
    A billed service or product on an invoice.

    ``amount`` is derived (quantity x unit_price) and never taken from input.
    """

    __tablename__ = "invoice_line_items"

    id: Mapped[str] = Column(String(36), primary_key=True, default=_new_uuid)
    invoice_id: Mapped[int] = Column(
        Integer,
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position: Mapped[int] = Column(Integer, nullable=False, default=0)
    description: Mapped[str] = Column(Text, nullable=False, default="")
    quantity: Mapped[int] = Column(Integer, nullable=False, default=0)
    unit_price: Mapped[Decimal] = Column(UNIT_PRICE, nullable=False, default=Decimal("0"))
    amount: Mapped[Decimal] = Column(MONEY, nullable=False, default=Decimal("0.00"))

    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="line_items")

    def __repr__(self) -> str:
        return f"<InvoiceLineItem(id={self.id}, qty={self.quantity}, amount={self.amount})>"


class Payment(Base):
    """
    A recorded payment against an invoice.

    Payments are append-only: there is no update or delete path. They are
    removed only together with their invoice (and kept in the delete-log
    snapshot).
    """

    __tablename__ = "invoice_payments"

    id: Mapped[str] = Column(String(36), primary_key=True, default=_new_uuid)
    invoice_id: Mapped[int] = Column(
        Integer,
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    amount: Mapped[Decimal] = Column(MONEY, nullable=False)
    payment_date: Mapped[date] = Column(Date, nullable=False, index=True)
    method: Mapped[PaymentMethod] = Column(
        _enum_column_type(PaymentMethod, "paymentmethod"),
        nullable=False,
        default=PaymentMethod.OTHER,
    )
    reference: Mapped[Optional[str]] = Column(String(255), nullable=True)
    notes: Mapped[Optional[str]] = Column(Text, nullable=True)
    created_at: Mapped[datetime] = Column(DateTime, nullable=False, default=utcnow)

    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="payments")

    def __repr__(self) -> str:
        return f"<Payment(id={self.id}, amount={self.amount}, method={self.method})>"


class InvoiceNumberSequence(Base):
    """
    Per-month counter for invoice numbers.

    WHY: Numbers are INV-{period}-{NNN}; the counter row for a period is
    advanced with a single atomic UPDATE so two concurrent creates never
    receive the same number.
    """

    __tablename__ = "invoice_number_sequences"

    period: Mapped[str] = Column(String(6), primary_key=True, comment="YYYYMM")
    last_value: Mapped[int] = Column(Integer, nullable=False, default=0)
