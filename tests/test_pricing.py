"""Unit tests for product and cart price calculation."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

import pytest

from services.pricing import (
    CartLine,
    PricingError,
    SpecialItem,
    SpecialTerms,
    cart_totals,
    line_total,
    money_to_wire,
    parse_selection,
    selection_to_json,
    special_original_price,
    to_money,
    unit_price,
    validate_selection,
)


def _cabinet(**overrides: Any) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": 3,
        "name": "Base cabinet 60",
        "base_price": Decimal("250000.00"),
        "parameter_groups": [
            {
                "parameter_group_id": 1,
                "name": "Color",
                "default_parameter_id": 4,
                "parameters": [
                    {"id": 4, "name": "White", "description": None, "price_modifier": Decimal("0")},
                    {"id": 5, "name": "Oak", "description": "veneer", "price_modifier": Decimal("35000")},
                    {"id": 6, "name": "Walnut", "price_modifier": Decimal("50000"), "status": "inactive"},
                ],
            },
            {
                "parameter_group_id": 2,
                "name": "Handle",
                "default_parameter_id": None,
                "parameters": [
                    {"id": 8, "name": "Steel", "price_modifier": Decimal("-5000")},
                ],
            },
        ],
    }
    data.update(overrides)
    return data


def _drawer() -> dict[str, Any]:
    return {"id": 9, "name": "Drawer", "base_price": Decimal("80000"), "parameter_groups": []}


def test_to_money_quantizes_half_up() -> None:
    assert to_money("10.005") == Decimal("10.01")
    assert to_money(0.1) == Decimal("0.10")
    assert to_money(None) == Decimal("0.00")
    assert money_to_wire(Decimal("12.345")) == 12.35


@pytest.mark.parametrize("raw", ["abc", "NaN", True])
def test_to_money_rejects_non_amounts(raw: Any) -> None:
    with pytest.raises(ValueError):
        to_money(raw)


def test_parse_selection_accepts_string_keys_and_json_text() -> None:
    assert parse_selection({"1": "5", "2": None}) == {1: 5}
    assert parse_selection('{"2": 8}') == {2: 8}
    assert parse_selection(None) == {}
    assert selection_to_json({2: 8, 1: 5}) == {"1": 5, "2": 8}


def test_parse_selection_rejects_non_objects() -> None:
    with pytest.raises(ValueError, match="selected_parameters"):
        parse_selection([1, 2])
    with pytest.raises(ValueError):
        parse_selection({"color": 5})


def test_unit_price_adds_selected_modifiers() -> None:
    """Base price plus every selected parameter's modifier (negative allowed)."""
    product = _cabinet()
    assert unit_price(product, {}) == Decimal("250000.00")
    assert unit_price(product, {1: 5, 2: 8}) == Decimal("280000.00")


def test_unit_price_ignores_selections_the_product_no_longer_carries() -> None:
    product = _cabinet()
    assert unit_price(product, {1: 99, 77: 5}) == Decimal("250000.00")


def test_line_total_multiplies_by_quantity() -> None:
    assert line_total(_cabinet(), {1: 5}, 2) == Decimal("570000.00")
    with pytest.raises(ValueError, match="quantity"):
        line_total(_cabinet(), {}, 0)


def test_validate_selection_fills_defaults() -> None:
    assert validate_selection(_cabinet(), {2: 8}) == {1: 4, 2: 8}
    assert validate_selection(_cabinet(), {}, apply_defaults=False) == {}


@pytest.mark.parametrize(
    "selection,match",
    [
        ({7: 4}, "not available for product"),
        ({1: 8}, "does not belong"),
        ({1: 6}, "is not available"),
    ],
)
def test_validate_selection_rejects_bad_choices(selection: dict[int, int], match: str) -> None:
    with pytest.raises(PricingError, match=match):
        validate_selection(_cabinet(), selection)


def test_cart_totals_without_specials() -> None:
    lines = [
        CartLine(item_id=1, product_id=3, quantity=2, selection={1: 5}, product=_cabinet()),
        CartLine(item_id=2, product_id=9, quantity=1, product=_drawer()),
    ]
    totals = cart_totals(lines, {})

    assert totals.subtotal == Decimal("650000.00")
    assert totals.discount == Decimal("0.00")
    assert totals.total == Decimal("650000.00")
    assert totals.as_dict() == {"subtotal": 650000.0, "discount": 0.0, "tax": 0.0, "total": 650000.0}


def _kitchen_special(status: str = "available") -> SpecialTerms:
    return SpecialTerms(
        special_id=11,
        name="Starter kitchen",
        discounted_price=Decimal("300000"),
        items=(SpecialItem(product_id=3, quantity=1), SpecialItem(product_id=9, quantity=1)),
        status=status,
    )


def test_cart_totals_discounts_complete_bundles_only() -> None:
    """Each complete bundle saves list price minus the bundle price; extras pay list."""
    lines = [
        CartLine(item_id=1, product_id=3, quantity=2, product=_cabinet(), special_id=11),
        CartLine(item_id=2, product_id=9, quantity=1, product=_drawer(), special_id=11),
    ]
    totals = cart_totals(lines, {11: _kitchen_special()})

    # one bundle: 250000 + 80000 - 300000
    assert totals.subtotal == Decimal("580000.00")
    assert totals.discount == Decimal("30000.00")
    assert totals.total == Decimal("550000.00")


def test_cart_totals_skips_unavailable_special() -> None:
    lines = [
        CartLine(item_id=1, product_id=3, quantity=1, product=_cabinet(), special_id=11),
        CartLine(item_id=2, product_id=9, quantity=1, product=_drawer(), special_id=11),
    ]
    totals = cart_totals(lines, {11: _kitchen_special(status="unavailable")})

    assert totals.discount == Decimal("0.00")
    assert totals.total == totals.subtotal


def test_cart_totals_deleted_product_contributes_nothing() -> None:
    lines = [CartLine(item_id=1, product_id=3, quantity=4, product=None)]
    totals = cart_totals(lines, {})
    assert totals.total == Decimal("0.00")


def test_special_original_price_sums_list_prices() -> None:
    items = [(_cabinet(), {1: 5}, 1), (_drawer(), {}, 2), (None, {}, 3)]
    assert special_original_price(items) == Decimal("445000.00")


def test_cart_totals_prices_each_bundle_item_from_its_own_line() -> None:
    """A special holding one product in two colours uses both lines' unit prices."""
    oak, white = {1: 5}, {1: 4}
    terms = SpecialTerms(
        special_id=12,
        name="Two-tone pair",
        discounted_price=Decimal("500000"),
        items=(
            SpecialItem(product_id=3, quantity=1, selection=white),
            SpecialItem(product_id=3, quantity=1, selection=oak),
        ),
    )
    lines = [
        CartLine(item_id=1, product_id=3, quantity=1, selection=oak, product=_cabinet(), special_id=12),
        CartLine(item_id=2, product_id=3, quantity=1, selection=white, product=_cabinet(), special_id=12),
    ]

    totals = cart_totals(lines, {12: terms})

    # list price 285000 + 250000, bundle price 500000
    assert totals.subtotal == Decimal("535000.00")
    assert totals.discount == Decimal("35000.00")
    assert totals.total == Decimal("500000.00")


def test_cart_totals_items_without_selection_use_distinct_lines() -> None:
    terms = SpecialTerms(
        special_id=12,
        name="Pair",
        discounted_price=Decimal("500000"),
        items=(SpecialItem(product_id=3, quantity=1), SpecialItem(product_id=3, quantity=1)),
    )
    lines = [
        CartLine(item_id=1, product_id=3, quantity=1, selection={1: 5}, product=_cabinet(), special_id=12),
        CartLine(item_id=2, product_id=3, quantity=1, selection={1: 4}, product=_cabinet(), special_id=12),
    ]

    assert cart_totals(lines, {12: terms}).total == Decimal("500000.00")
