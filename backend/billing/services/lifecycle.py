"""
Invoice lifecycle rules.

WHAT: Which actions are allowed from which status, and how the derived
"overdue" view is computed.

WHY: Sending, paying, disputing and cancelling all change the persisted
status. One table of allowed source states keeps those rules consistent
across the services and makes illegal moves (paying a draft, disputing a
paid invoice, reviving a cancelled one) fail before anything is written.

HOW:
- ALLOWED_SOURCES maps each InvoiceAction to the statuses it may start from
- assert_transition raises InvalidStateTransitionError otherwise
- status_after_payment promotes to partially_paid / paid
- is_overdue / derive_view compute the read-time view; overdue is never stored
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, FrozenSet

from billing.core.exceptions import InvalidStateTransitionError
from billing.models.invoice import InvoiceStatus, InvoiceView


class InvoiceAction(str, Enum):
    EDIT = "edit"
    SEND = "send"
    APPLY_PAYMENT = "apply_payment"
    DISPUTE = "dispute"
    RESOLVE_DISPUTE = "resolve_dispute"
    CANCEL = "cancel"
    DELETE = "delete"


ALLOWED_SOURCES: Dict[InvoiceAction, FrozenSet[InvoiceStatus]] = {
    InvoiceAction.EDIT: frozenset({InvoiceStatus.DRAFT}),
    # Re-sending a sent invoice is allowed (reminders); sent_at keeps the first send
    InvoiceAction.SEND: frozenset({InvoiceStatus.DRAFT, InvoiceStatus.SENT}),
    # Payments on a paid invoice are absorbed as overpayment
    InvoiceAction.APPLY_PAYMENT: frozenset(
        {InvoiceStatus.SENT, InvoiceStatus.PARTIALLY_PAID, InvoiceStatus.PAID}
    ),
    InvoiceAction.DISPUTE: frozenset({InvoiceStatus.SENT, InvoiceStatus.PARTIALLY_PAID}),
    InvoiceAction.RESOLVE_DISPUTE: frozenset({InvoiceStatus.DISPUTED}),
    InvoiceAction.CANCEL: frozenset(
        {
            InvoiceStatus.DRAFT,
            InvoiceStatus.SENT,
            InvoiceStatus.PARTIALLY_PAID,
            InvoiceStatus.DISPUTED,
        }
    ),
    InvoiceAction.DELETE: frozenset(InvoiceStatus),
}

OVERDUE_ELIGIBLE = frozenset({InvoiceStatus.SENT, InvoiceStatus.PARTIALLY_PAID})


def can_transition(status: InvoiceStatus, action: InvoiceAction) -> bool:
    return InvoiceStatus(status) in ALLOWED_SOURCES[action]


def assert_transition(invoice: Any, action: InvoiceAction) -> None:
    """
    Ensure an action may be applied to an invoice in its current status.

    Raises:
        InvalidStateTransitionError: If the status does not allow the action
    """
    status = InvoiceStatus(invoice.status)
    if status not in ALLOWED_SOURCES[action]:
        raise InvalidStateTransitionError(
            message=f"Invoice status '{status.value}' does not allow {action.value.replace('_', ' ')}",
            invoice_id=getattr(invoice, "id", None),
            status=status.value,
            action=action.value,
        )


def status_after_payment(outstanding_balance: Decimal) -> InvoiceStatus:
    """Paid once nothing is outstanding, otherwise partially paid."""
    if outstanding_balance <= 0:
        return InvoiceStatus.PAID
    return InvoiceStatus.PARTIALLY_PAID


def is_overdue(invoice: Any, today: date) -> bool:
    """
    Whether an invoice shows as overdue on a given day.

    Only sent and partially paid invoices can be overdue: paid, disputed,
    cancelled and draft invoices never are. Comparison is by date only, so
    an invoice due today is not yet overdue.
    """
    return _is_overdue(InvoiceStatus(invoice.status), invoice.due_date, today)


def _is_overdue(status: InvoiceStatus, due_date: date, today: date) -> bool:
    return status in OVERDUE_ELIGIBLE and due_date is not None and due_date < today


def view_for(status: InvoiceStatus, due_date: date, today: date) -> InvoiceView:
    """Dashboard tab for a (status, due date) pair."""
    status = InvoiceStatus(status)
    if _is_overdue(status, due_date, today):
        return InvoiceView.OVERDUE
    return InvoiceView(status.value)


def derive_view(invoice: Any, today: date) -> InvoiceView:
    """The single dashboard tab an invoice is displayed under."""
    return view_for(invoice.status, invoice.due_date, today)
