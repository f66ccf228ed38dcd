from decimal import Decimal
from types import SimpleNamespace

import pytest

from billing_service.billing_calculator import (
    calculate_totals,
    grand_total,
    line_total,
    round_currency,
    subtotal,
)
from billing_service.errors import InvalidInputError


def make_item(quantity, unit_price, description="Polo shirts", item_id="1"):
    return SimpleNamespace(id=item_id, description=description, quantity=quantity, unit_price=unit_price)


def test_line_total_multiplies_quantity_and_price():
    assert line_total(10, Decimal("50.00")) == Decimal("500.00")


def test_line_total_rounds_half_away_from_zero():
    assert line_total(3, Decimal("0.335")) == Decimal("1.01")
    assert round_currency(Decimal("2.675")) == Decimal("2.68")


@pytest.mark.parametrize("quantity, unit_price", [(0, "10.00"), (-1, "10.00"), (1, "-0.01")])
def test_line_total_rejects_invalid_input(quantity, unit_price):
    with pytest.raises(InvalidInputError):
        line_total(quantity, Decimal(unit_price))


def test_subtotal_of_no_items_is_zero():
    assert subtotal([]) == Decimal("0.00")


def test_subtotal_accepts_mappings_and_objects():
    items = [{"line_total": Decimal("10.10")}, SimpleNamespace(line_total=Decimal("0.20"))]
    assert subtotal(items) == Decimal("10.30")


def test_grand_total_is_never_negative():
    assert grand_total(Decimal("100.00"), Decimal("150.00")) == Decimal("0.00")


def test_calculate_totals_example_invoice():
    totals = calculate_totals([make_item(10, Decimal("50.00"))], Decimal("25.00"))

    assert totals.subtotal == Decimal("500.00")
    assert totals.discount == Decimal("25.00")
    assert totals.grand_total == Decimal("475.00")
    assert totals.items[0].line_total == Decimal("500.00")


def test_calculate_totals_has_no_binary_float_drift():
    items = [make_item(1, 0.1, item_id=str(n)) for n in range(3)]
    totals = calculate_totals(items)

    assert totals.subtotal == Decimal("0.30")
    assert totals.grand_total == Decimal("0.30")


def test_discount_equal_to_subtotal_gives_zero_grand_total():
    totals = calculate_totals([make_item(2, Decimal("12.50"))], Decimal("25.00"))
    assert totals.grand_total == Decimal("0.00")


def test_line_total_uses_stored_unit_price():
    totals = calculate_totals([make_item(3, Decimal("1.005"))])

    item = totals.items[0]
    assert item.unit_price == Decimal("1.01")
    assert item.line_total == round_currency(item.quantity * item.unit_price)


def test_descriptions_are_trimmed():
    totals = calculate_totals([make_item(1, Decimal("5"), description="  Hoodies  ")])
    assert totals.items[0].description == "Hoodies"
