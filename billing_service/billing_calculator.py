from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any, Iterable, List, Optional

from .errors import InvalidInputError

ZERO = Decimal("0.00")
CENT = Decimal("0.01")


def to_decimal(value: Any) -> Decimal:
    """Convert a number or numeric string to Decimal without going through binary floats"""
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidInputError(f"Not a number: {value!r}") from exc


def round_currency(amount: Any) -> Decimal:
    """Round to 2 decimal places, half away from zero"""
    return to_decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def line_total(quantity: Any, unit_price: Any) -> Decimal:
    """Total for a single line item (quantity * unit_price)"""
    quantity = to_decimal(quantity)
    unit_price = to_decimal(unit_price)
    if quantity <= 0:
        raise InvalidInputError("Quantity must be greater than 0")
    if unit_price < 0:
        raise InvalidInputError("Unit price cannot be negative")
    return round_currency(quantity * unit_price)


def subtotal(items: Iterable[Any]) -> Decimal:
    """Sum of line totals; accepts objects or mappings exposing line_total"""
    total = ZERO
    for item in items:
        value = item.get("line_total") if isinstance(item, dict) else item.line_total
        total += to_decimal(value)
    return round_currency(total)


def grand_total(subtotal_amount: Any, discount: Any) -> Decimal:
    """Subtotal minus discount, never below zero"""
    total = round_currency(to_decimal(subtotal_amount) - to_decimal(discount))
    return max(ZERO, total)


@dataclass
class PricedItem:
    id: str
    description: str
    quantity: Decimal
    unit_price: Decimal
    line_total: Decimal


@dataclass
class BillingTotals:
    items: List[PricedItem] = field(default_factory=list)
    subtotal: Decimal = ZERO
    discount: Decimal = ZERO
    grand_total: Decimal = ZERO


def calculate_totals(items: Iterable[Any], discount: Optional[Any] = None) -> BillingTotals:
    """Price every item and compute subtotal and grand total.

    Items are objects with ``id``, ``description``, ``quantity`` and ``unit_price``;
    they must already have passed validation.
    """
    priced = []
    for item in items:
        # Stored prices have 2 decimal places, so the line total is taken from the rounded price
        unit_price = round_currency(item.unit_price)
        priced.append(
            PricedItem(
                id=item.id,
                description=item.description.strip(),
                quantity=to_decimal(item.quantity),
                unit_price=unit_price,
                line_total=line_total(item.quantity, unit_price),
            )
        )
    discount_amount = round_currency(discount if discount is not None else ZERO)
    sub = subtotal(priced)
    return BillingTotals(
        items=priced,
        subtotal=sub,
        discount=discount_amount,
        grand_total=grand_total(sub, discount_amount),
    )
