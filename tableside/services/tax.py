"""
Tax Calculator

All rates are simple percentages of the pre-tax subtotal (non-compounding),
so the order in which they are applied does not change the result.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Sequence

from tableside.models import ItemStatus
from tableside.schemas import OrderItem, TaxLine, TaxRate

ZERO = Decimal("0")
CENT = Decimal("0.01")


def compute_total(subtotal: Decimal, rates: Sequence[TaxRate]) -> Decimal:
    """
    Return ``subtotal`` plus ``subtotal * rate.percentage`` for every rate.

    No rounding is applied; see ``quantize_money`` for display.

    Example:
        >>> compute_total(Decimal("100"), [TaxRate(name="GST", percentage=Decimal("0.05"))])
        Decimal('105.00')
    """
    subtotal = Decimal(subtotal)
    total = subtotal
    for rate in rates:
        total += subtotal * rate.percentage
    return total


def tax_breakdown(subtotal: Decimal, rates: Sequence[TaxRate]) -> list[TaxLine]:
    """Per-rate tax amounts, in rate order, for receipts."""
    subtotal = Decimal(subtotal)
    return [
        TaxLine(name=rate.name, percentage=rate.percentage, amount=subtotal * rate.percentage)
        for rate in rates
    ]


def line_subtotal(lines: Iterable[OrderItem]) -> Decimal:
    """Sum of price x quantity over ``lines``."""
    return sum((line.line_total for line in lines), ZERO)


def order_total(lines: Iterable[OrderItem], rates: Sequence[TaxRate]) -> Decimal:
    """
    Tax-inclusive total of every line that still counts towards the order.

    Cancelled lines are excluded. Recomputed from the lines on every write so
    the stored total can never drift from the item list.
    """
    billable = [line for line in lines if line.status != ItemStatus.CANCELLED]
    return compute_total(line_subtotal(billable), rates)


def quantize_money(value: Decimal) -> Decimal:
    """Round to cents for presentation."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)
