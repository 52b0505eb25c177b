"""
Line item and invoice totals calculation.

WHAT: Pure functions turning raw line item input into item amounts, a
subtotal, and the composed invoice totals.

WHY: Totals are recomputed on every save, payment and restore; keeping the
arithmetic in one side-effect-free module keeps the invariants in one place:
- item amount = quantity x unit price
- subtotal = sum of quantity x unit price over the items
- total = subtotal + sales tax + shipping
- outstanding = max(0, total - amount paid)

HOW: All money is Decimal, rounded half-up to cents. Unit prices keep four
decimal places (sub-cent rates such as $0.125 per unit) and only the
products are rounded. Input coming from forms is forgiving: blank,
non-numeric or non-finite values count as 0.
"""

import math
from dataclasses import dataclass, field, replace
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable, List, Optional, Tuple, Union

from billing.core.config import settings
from billing.models.invoice import TaxMode

CENT = Decimal("0.01")
PRICE_STEP = Decimal("0.0001")
ZERO = Decimal("0.00")


def quantize_money(value: Decimal) -> Decimal:
    """Round to cents, half away from zero (1.655 -> 1.66)."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def quantize_unit_price(value: Decimal) -> Decimal:
    """Round a unit price to the four places it is stored with."""
    return value.quantize(PRICE_STEP, rounding=ROUND_HALF_UP)


def coerce_decimal(value: Any) -> Decimal:
    """
    Interpret form input as a number.

    None, booleans, blank strings, non-numeric text, NaN and infinities all
    become 0. Negative numbers pass through unchanged.
    """
    if value is None or isinstance(value, bool):
        return ZERO
    if isinstance(value, Decimal):
        number = value
    elif isinstance(value, int):
        number = Decimal(value)
    elif isinstance(value, float):
        if not math.isfinite(value):
            return ZERO
        number = Decimal(str(value))
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return ZERO
        try:
            number = Decimal(text)
        except InvalidOperation:
            return ZERO
    else:
        return ZERO
    if not number.is_finite():
        return ZERO
    return number


def coerce_quantity(value: Any) -> int:
    """Quantity as a whole number; fractional input is truncated."""
    return int(coerce_decimal(value))


def _field(item: Any, name: str) -> Any:
    if isinstance(item, dict):
        return item.get(name)
    return getattr(item, name, None)


@dataclass(frozen=True)
class LineItemAmounts:
    """A line item with its computed amount."""

    description: str
    quantity: int
    unit_price: Decimal
    amount: Decimal
    id: Optional[str] = None


def calculate_line_items(items: Iterable[Any]) -> Tuple[List[LineItemAmounts], Decimal]:
    """
    Compute each item's amount and the subtotal.

    Args:
        items: Mappings or objects with description, quantity, unit_price
            (and optionally id). Any amount supplied by the caller is ignored.

    Returns:
        Tuple of (items with amounts, in input order; subtotal)
    """
    calculated: List[LineItemAmounts] = []
    subtotal = Decimal("0")
    for item in items:
        quantity = coerce_quantity(_field(item, "quantity"))
        unit_price = quantize_unit_price(coerce_decimal(_field(item, "unit_price")))
        extended = Decimal(quantity) * unit_price
        amount = quantize_money(extended)
        calculated.append(
            LineItemAmounts(
                description=str(_field(item, "description") or ""),
                quantity=quantity,
                unit_price=unit_price,
                amount=amount,
                id=_field(item, "id"),
            )
        )
        subtotal += extended
    return calculated, quantize_money(subtotal)


# ============================================================================
# Tax policy
# ============================================================================


@dataclass(frozen=True)
class AutoTax:
    """Tax derived from the subtotal at a flat rate."""

    rate: Decimal = field(default_factory=lambda: settings.SALES_TAX_RATE)

    @property
    def mode(self) -> TaxMode:
        return TaxMode.AUTO

    def tax_for(self, subtotal: Decimal) -> Decimal:
        return quantize_money(subtotal * coerce_decimal(self.rate))


@dataclass(frozen=True)
class ManualTax:
    """A tax amount entered by an admin, kept across later edits."""

    amount: Decimal

    @property
    def mode(self) -> TaxMode:
        return TaxMode.MANUAL

    def tax_for(self, subtotal: Decimal) -> Decimal:
        return quantize_money(coerce_decimal(self.amount))


TaxPolicy = Union[AutoTax, ManualTax]


def resolve_tax_policy(
    current_mode: TaxMode,
    current_tax: Optional[Decimal],
    requested_tax: Optional[Any] = None,
    requested_mode: Optional[TaxMode] = None,
) -> TaxPolicy:
    """
    Decide the tax policy for a save.

    Supplying a tax amount switches the invoice to manual tax. Manual tax
    sticks through later item and shipping edits until auto mode is
    requested explicitly.
    """
    if requested_mode == TaxMode.AUTO:
        return AutoTax()
    if requested_tax is not None:
        return ManualTax(coerce_decimal(requested_tax))
    if requested_mode == TaxMode.MANUAL or current_mode == TaxMode.MANUAL:
        return ManualTax(coerce_decimal(current_tax))
    return AutoTax()


# ============================================================================
# Totals
# ============================================================================


@dataclass(frozen=True)
class Totals:
    """Composed monetary fields of an invoice."""

    subtotal: Decimal
    sales_tax: Decimal
    shipping_cost: Decimal
    total: Decimal
    amount_paid: Decimal
    outstanding_balance: Decimal
    tax_mode: TaxMode
    line_items: Tuple[LineItemAmounts, ...] = ()

    def as_invoice_fields(self) -> dict:
        """Column values to assign to an Invoice."""
        return {
            "subtotal": self.subtotal,
            "sales_tax": self.sales_tax,
            "shipping_cost": self.shipping_cost,
            "total": self.total,
            "amount_paid": self.amount_paid,
            "outstanding_balance": self.outstanding_balance,
            "tax_mode": self.tax_mode,
        }


def compose_totals(
    subtotal: Any,
    tax_policy: TaxPolicy,
    shipping_cost: Any = ZERO,
    amount_paid: Any = ZERO,
) -> Totals:
    """
    Compose tax, total and outstanding balance from a subtotal.

    Negative shipping is treated as 0. An amount paid above the total
    leaves an outstanding balance of 0.
    """
    subtotal = quantize_money(coerce_decimal(subtotal))
    shipping = quantize_money(coerce_decimal(shipping_cost))
    if shipping < 0:
        shipping = ZERO
    paid = quantize_money(coerce_decimal(amount_paid))

    sales_tax = tax_policy.tax_for(subtotal)
    total = quantize_money(subtotal + sales_tax + shipping)
    outstanding = quantize_money(total - paid)
    if outstanding < 0:
        outstanding = ZERO

    return Totals(
        subtotal=subtotal,
        sales_tax=sales_tax,
        shipping_cost=shipping,
        total=total,
        amount_paid=paid,
        outstanding_balance=outstanding,
        tax_mode=tax_policy.mode,
    )


def compute_totals(
    items: Iterable[Any],
    tax_override: Optional[Any] = None,
    shipping_cost: Any = ZERO,
    amount_paid: Any = ZERO,
) -> Totals:
    """
    Calculate items and compose totals in one step.

    Args:
        items: Raw line item input
        tax_override: Manual tax amount; None applies the default rate
        shipping_cost: Shipping charge
        amount_paid: Payments already received

    Example:
        >>> totals = compute_totals([{"quantity": 1, "unit_price": "25"}], shipping_cost=5)
        >>> (totals.sales_tax, totals.total)
        (Decimal('1.66'), Decimal('31.66'))
    """
    calculated, subtotal = calculate_line_items(items)
    policy: TaxPolicy = AutoTax() if tax_override is None else ManualTax(
        coerce_decimal(tax_override)
    )
    totals = compose_totals(subtotal, policy, shipping_cost, amount_paid)
    return replace(totals, line_items=tuple(calculated))
