"""Unit tests for order snapshot building and admin line-item edits."""

from __future__ import annotations

import itertools
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

import pytest

from services.pricing import CartLine, SpecialItem, SpecialTerms
from services.snapshot import (
    add_line_item,
    build_snapshot,
    recompute_totals,
    remove_line_item,
    snapshot_total,
    update_line_item,
    validate_snapshot,
)

_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _ids() -> Any:
    counter = itertools.count(1)
    return lambda: f"item-{next(counter)}"


def _cabinet() -> dict[str, Any]:
    return {
        "id": 3,
        "name": "Base cabinet 60",
        "description": "600 mm base unit",
        "base_price": Decimal("250000"),
        "category": {"id": 1, "name": "Cabinets"},
        "primary_image_id": "img-1",
        "parameter_groups": [
            {
                "parameter_group_id": 1,
                "name": "Color",
                "default_parameter_id": 4,
                "parameters": [
                    {"id": 5, "name": "Oak", "description": "veneer", "price_modifier": Decimal("35000")},
                ],
            }
        ],
    }


def _snapshot() -> dict[str, Any]:
    lines = [
        CartLine(item_id=1, product_id=3, quantity=2, selection={1: 5}, product=_cabinet()),
        CartLine(item_id=2, product_id=42, quantity=1, product=None),
    ]
    return build_snapshot(lines, now=_NOW, id_factory=_ids())


def test_build_snapshot_freezes_names_prices_and_parameters() -> None:
    snap = _snapshot()

    first = snap["items"][0]
    assert first["id"] == "item-1"
    assert first["product_name"] == "Base cabinet 60"
    assert first["category_name"] == "Cabinets"
    assert first["image_url"] == "/api/images/img-1"
    assert first["unit_price"] == 285000.0
    assert first["line_total"] == 570000.0
    assert first["parameters"] == [{"group": "Color", "name": "Oak", "value": "veneer"}]
    assert snap["totals"] == {"subtotal": 570000.0, "discount": 0.0, "tax": 0.0, "total": 570000.0}
    assert snap["metadata"]["created_at"] == "2026-03-01T12:00:00Z"
    assert "backfilled" not in snap["metadata"]
    assert validate_snapshot(snap) == []


def test_build_snapshot_uses_placeholder_for_deleted_product() -> None:
    deleted = _snapshot()["items"][1]
    assert deleted["product_name"] == "[Deleted Product #42]"
    assert deleted["unit_price"] == 0.0
    assert deleted["parameters"] == []


def test_build_snapshot_records_special_and_backfill_marker() -> None:
    terms = SpecialTerms(
        special_id=7,
        name="Starter set",
        discounted_price=Decimal("200000"),
        items=(SpecialItem(product_id=3, quantity=1),),
    )
    lines = [CartLine(item_id=1, product_id=3, quantity=1, product=_cabinet(), special_id=7)]
    snap = build_snapshot(lines, {7: terms}, now=_NOW, backfilled=True, id_factory=_ids())

    assert snap["items"][0]["special_id"] == 7
    assert snap["items"][0]["special_name"] == "Starter set"
    assert snap["totals"]["discount"] == 50000.0
    assert snap["totals"]["total"] == 200000.0
    assert snap["metadata"]["backfilled"] is True
    assert snapshot_total(snap) == Decimal("200000.00")


def test_update_line_item_recomputes_and_leaves_input_untouched() -> None:
    snap = _snapshot()
    updated, item = update_line_item(snap, "item-1", {"quantity": 3, "unit_price": "100000"}, now=_NOW)

    assert item["line_total"] == 300000.0
    assert updated["totals"]["subtotal"] == 300000.0
    assert updated["metadata"]["edited_at"] == "2026-03-01T12:00:00Z"
    assert snap["items"][0]["quantity"] == 2


def test_update_line_item_rejects_unknown_fields_and_missing_item() -> None:
    snap = _snapshot()
    with pytest.raises(ValueError, match="cannot be edited"):
        update_line_item(snap, "item-1", {"product_id": 9})
    with pytest.raises(ValueError, match="quantity"):
        update_line_item(snap, "item-1", {"quantity": 0})
    with pytest.raises(LookupError):
        update_line_item(snap, "nope", {"quantity": 1})


def test_add_and_remove_line_item() -> None:
    snap = _snapshot()
    added, item = add_line_item(
        snap,
        product_id=9,
        product_name="Installation",
        quantity=1,
        unit_price="50000",
        parameters=[{"group": "Service", "name": "On site"}],
        now=_NOW,
        id_factory=lambda: "manual-1",
    )
    assert item["id"] == "manual-1"
    assert added["totals"]["total"] == 620000.0

    removed_snap, removed = remove_line_item(added, "manual-1", now=_NOW)
    assert removed["product_name"] == "Installation"
    assert removed_snap["totals"]["total"] == 570000.0


def test_recompute_totals_caps_discount_at_subtotal() -> None:
    snap = {
        "items": [{"id": "a", "quantity": 1, "unit_price": 100.0, "line_total": 0.0}],
        "totals": {"subtotal": 0.0, "discount": 500.0, "tax": 0.0, "total": 0.0},
    }
    out = recompute_totals(snap)
    assert out["totals"] == {"subtotal": 100.0, "discount": 100.0, "tax": 0.0, "total": 0.0}


def test_validate_snapshot_reports_structural_problems() -> None:
    assert validate_snapshot("x") == ["snapshot is not an object"]
    problems = validate_snapshot(
        {"items": [{"id": "a", "quantity": 1}], "totals": {"subtotal": 99.0}}
    )
    assert any("missing" in p for p in problems)
    assert any("subtotal mismatch" in p for p in problems)
