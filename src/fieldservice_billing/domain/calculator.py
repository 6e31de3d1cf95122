"""Line item arithmetic.

Pure functions over line items and a tax rate. Everything is computed in
exact Decimal; rounding to cents happens once, in DocumentTotals.settled(),
when totals are stored on a document or shown to a user.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING

from fieldservice_billing.domain.value_objects import Money, to_decimal

if TYPE_CHECKING:
    from fieldservice_billing.domain.documents import LineItem

HUNDRED = Decimal("100")


@dataclass(frozen=True, slots=True)
class DocumentTotals:
    subtotal: Money
    tax_total: Money
    total: Money
    margin: Money
    margin_percent: Decimal

    def settled(self) -> DocumentTotals:
        """Round subtotal and tax to cents and re-sum, so total == subtotal + tax holds."""
        subtotal = self.subtotal.rounded()
        tax_total = self.tax_total.rounded()
        return DocumentTotals(
            subtotal=subtotal,
            tax_total=tax_total,
            total=subtotal + tax_total,
            margin=self.margin.rounded(),
            margin_percent=self.margin_percent,
        )


def line_total(item: LineItem) -> Money:
    discount_factor = Decimal("1") - item.discount_percent / HUNDRED
    return item.unit_price * (item.quantity * discount_factor)


def subtotal(items: Iterable[LineItem]) -> Money:
    total = Money.zero()
    for item in items:
        total = total + line_total(item)
    return total


def tax_total(items: Iterable[LineItem], tax_rate: Decimal | int | str) -> Money:
    rate = to_decimal(tax_rate) / HUNDRED
    total = Money.zero()
    for item in items:
        if item.taxable:
            total = total + line_total(item) * rate
    return total


def grand_total(items: Iterable[LineItem], tax_rate: Decimal | int | str) -> Money:
    items = list(items)
    return subtotal(items) + tax_total(items, tax_rate)


def margin(item: LineItem) -> Money:
    return line_total(item) - item.our_cost * item.quantity


def margin_percent(items: Iterable[LineItem]) -> Decimal:
    items = list(items)
    sub = subtotal(items)
    if sub.is_zero:
        return Decimal("0")
    total_margin = Money.zero()
    for item in items:
        total_margin = total_margin + margin(item)
    return total_margin.amount / sub.amount * HUNDRED


def calculate_totals(
    items: Iterable[LineItem], tax_rate: Decimal | int | str
) -> DocumentTotals:
    """Exact totals for a document. Call .settled() before storing."""
    items = list(items)
    sub = subtotal(items)
    tax = tax_total(items, tax_rate)
    total_margin = Money.zero()
    for item in items:
        total_margin = total_margin + margin(item)
    return DocumentTotals(
        subtotal=sub,
        tax_total=tax,
        total=sub + tax,
        margin=total_margin,
        margin_percent=margin_percent(items),
    )
