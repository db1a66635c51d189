"""Order snapshots: the immutable JSON copy of a cart stored on the order row.

A snapshot freezes names, prices and parameter labels at checkout so that
later catalog edits never change what a historical order shows::

    {
      "items": [
        {
          "id": "7c1e...",              # UUID of the line inside the snapshot
          "product_id": 3,
          "product_name": "Base cabinet 60",
          "product_description": "...",
          "category_name": "Cabinets",
          "image_url": "/api/images/<uuid>",
          "quantity": 2,
          "unit_price": 285000.0,
          "line_total": 570000.0,
          "parameters": [{"group": "Color", "name": "Oak", "value": "veneer"}],
          "special_id": 4,              # only for lines added through a special
          "special_name": "Starter set"
        }
      ],
      "totals": {"subtotal": ..., "discount": ..., "tax": 0.0, "total": ...},
      "metadata": {"snapshot_version": 1, "created_at": "...Z"}
    }

Admin line-item edits go through :func:`add_line_item`,
:func:`update_line_item` and :func:`remove_line_item`; each returns a new
snapshot with recomputed totals and leaves its input untouched.
"""

from __future__ import annotations

import copy
import uuid
from collections.abc import Callable, Mapping, Sequence
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from services.pricing import (
    ZERO,
    CartLine,
    SpecialTerms,
    cart_totals,
    money_to_wire,
    resolve_parameters,
    to_money,
)
from version import SNAPSHOT_VERSION

DELETED_PRODUCT_NAME = "[Deleted Product #{product_id}]"
EDITABLE_ITEM_FIELDS = ("product_name", "product_description", "quantity", "unit_price", "parameters")
TOTAL_MISMATCH_TOLERANCE = Decimal("1")


def _new_item_id() -> str:
    return str(uuid.uuid4())


def _iso_z(dt: datetime) -> str:
    return dt.astimezone(UTC).isoformat(timespec="seconds").replace("+00:00", "Z")


def product_image_url(image_id: Any) -> str | None:
    """Public URL of a stored product image (served by ``GET /api/images/<id>``)."""
    if not image_id:
        return None
    return f"/api/images/{image_id}"


def _snapshot_item(
    line: CartLine,
    specials: Mapping[int, SpecialTerms],
    id_factory: Callable[[], str],
) -> dict[str, Any]:
    product = line.product
    if product is None:
        item: dict[str, Any] = {
            "id": id_factory(),
            "product_id": line.product_id,
            "product_name": DELETED_PRODUCT_NAME.format(product_id=line.product_id),
            "product_description": None,
            "category_name": None,
            "image_url": None,
            "quantity": int(line.quantity),
            "unit_price": 0.0,
            "line_total": 0.0,
            "parameters": [],
        }
    else:
        category = product.get("category") or {}
        item = {
            "id": id_factory(),
            "product_id": int(product["id"]),
            "product_name": str(product.get("name") or ""),
            "product_description": product.get("description"),
            "category_name": category.get("name"),
            "image_url": product_image_url(product.get("primary_image_id")),
            "quantity": int(line.quantity),
            "unit_price": money_to_wire(line.unit_price),
            "line_total": money_to_wire(line.line_total),
            "parameters": [p.as_snapshot() for p in resolve_parameters(product, line.selection)],
        }

    if line.special_id is not None:
        item["special_id"] = int(line.special_id)
        terms = specials.get(int(line.special_id))
        if terms is not None:
            item["special_name"] = terms.name
    return item


def build_snapshot(
    lines: Sequence[CartLine],
    specials: Mapping[int, SpecialTerms] | None = None,
    *,
    now: datetime | None = None,
    backfilled: bool = False,
    id_factory: Callable[[], str] = _new_item_id,
) -> dict[str, Any]:
    """Freeze cart lines into a snapshot document."""
    specials = specials or {}
    created_at = _iso_z(now or datetime.now(UTC))
    metadata: dict[str, Any] = {"snapshot_version": SNAPSHOT_VERSION, "created_at": created_at}
    if backfilled:
        metadata["backfilled"] = True
        metadata["backfilled_at"] = created_at
    return {
        "items": [_snapshot_item(line, specials, id_factory) for line in lines],
        "totals": cart_totals(lines, specials).as_dict(),
        "metadata": metadata,
    }


def recompute_totals(snapshot: Mapping[str, Any]) -> dict[str, Any]:
    """Recalculate every ``line_total`` and the totals block.

    The stored discount is kept but never exceeds the new subtotal.
    """
    out = copy.deepcopy(dict(snapshot))
    items = list(out.get("items") or [])
    subtotal = ZERO
    for item in items:
        unit = to_money(item.get("unit_price"))
        line = to_money(unit * int(item.get("quantity") or 0))
        item["unit_price"] = money_to_wire(unit)
        item["line_total"] = money_to_wire(line)
        subtotal += line
    out["items"] = items

    totals = dict(out.get("totals") or {})
    discount = min(to_money(totals.get("discount")), subtotal)
    tax = to_money(totals.get("tax"))
    total = max(ZERO, subtotal - discount + tax)
    out["totals"] = {
        "subtotal": money_to_wire(subtotal),
        "discount": money_to_wire(discount),
        "tax": money_to_wire(tax),
        "total": money_to_wire(total),
    }
    return out


def _mark_edited(snapshot: dict[str, Any], now: datetime | None) -> dict[str, Any]:
    metadata = dict(snapshot.get("metadata") or {})
    metadata["edited_at"] = _iso_z(now or datetime.now(UTC))
    snapshot["metadata"] = metadata
    return snapshot


def _checked_quantity(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError("quantity must be an integer")
    try:
        qty = int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError("quantity must be an integer") from exc
    if qty <= 0:
        raise ValueError("quantity must be > 0")
    return qty


def _checked_unit_price(value: Any) -> Decimal:
    price = to_money(value)
    if price < 0:
        raise ValueError("unit_price must be >= 0")
    return price


def _checked_parameters(value: Any) -> list[dict[str, Any]]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError("parameters must be a list")
    params: list[dict[str, Any]] = []
    for raw in value:
        if not isinstance(raw, Mapping) or not raw.get("group") or not raw.get("name"):
            raise ValueError("each parameter needs group and name")
        param = {"group": str(raw["group"]), "name": str(raw["name"])}
        if raw.get("value"):
            param["value"] = str(raw["value"])
        params.append(param)
    return params


def add_line_item(
    snapshot: Mapping[str, Any],
    *,
    product_id: int,
    product_name: str,
    quantity: Any,
    unit_price: Any,
    product_description: str | None = None,
    category_name: str | None = None,
    image_url: str | None = None,
    parameters: Any = None,
    now: datetime | None = None,
    id_factory: Callable[[], str] = _new_item_id,
) -> tuple[dict[str, Any], dict[str, Any]]:
    """Append a manual line; returns ``(new_snapshot, new_item)``."""
    name = str(product_name or "").strip()
    if not name:
        raise ValueError("product_name is required")
    item = {
        "id": id_factory(),
        "product_id": int(product_id),
        "product_name": name,
        "product_description": product_description,
        "category_name": category_name,
        "image_url": image_url,
        "quantity": _checked_quantity(quantity),
        "unit_price": money_to_wire(_checked_unit_price(unit_price)),
        "line_total": 0.0,
        "parameters": _checked_parameters(parameters),
    }
    out = copy.deepcopy(dict(snapshot))
    out["items"] = list(out.get("items") or []) + [item]
    out = _mark_edited(recompute_totals(out), now)
    return out, next(i for i in out["items"] if i["id"] == item["id"])


def update_line_item(
    snapshot: Mapping[str, Any],
    item_id: str,
    changes: Mapping[str, Any],
    *,
    now: datetime | None = None,
) -> tuple[dict[str, Any], dict[str, Any]]:
    """Apply ``changes`` (restricted to :data:`EDITABLE_ITEM_FIELDS`) to one line."""
    unknown = sorted(set(changes) - set(EDITABLE_ITEM_FIELDS))
    if unknown:
        raise ValueError(f"fields cannot be edited: {', '.join(unknown)}")
    if not changes:
        raise ValueError(f"at least one of {', '.join(EDITABLE_ITEM_FIELDS)} must be provided")

    out = copy.deepcopy(dict(snapshot))
    items = list(out.get("items") or [])
    target = next((i for i in items if str(i.get("id")) == str(item_id)), None)
    if target is None:
        raise LookupError(f"order item not found: {item_id}")

    if "quantity" in changes:
        target["quantity"] = _checked_quantity(changes["quantity"])
    if "unit_price" in changes:
        target["unit_price"] = money_to_wire(_checked_unit_price(changes["unit_price"]))
    if "product_name" in changes:
        name = str(changes["product_name"] or "").strip()
        if not name:
            raise ValueError("product_name cannot be empty")
        target["product_name"] = name
    if "product_description" in changes:
        target["product_description"] = changes["product_description"]
    if "parameters" in changes:
        target["parameters"] = _checked_parameters(changes["parameters"])

    out["items"] = items
    out = _mark_edited(recompute_totals(out), now)
    return out, next(i for i in out["items"] if str(i["id"]) == str(item_id))


def remove_line_item(
    snapshot: Mapping[str, Any],
    item_id: str,
    *,
    now: datetime | None = None,
) -> tuple[dict[str, Any], dict[str, Any]]:
    """Drop one line; returns ``(new_snapshot, removed_item)``."""
    out = copy.deepcopy(dict(snapshot))
    items = list(out.get("items") or [])
    removed = next((i for i in items if str(i.get("id")) == str(item_id)), None)
    if removed is None:
        raise LookupError(f"order item not found: {item_id}")
    out["items"] = [i for i in items if i is not removed]
    return _mark_edited(recompute_totals(out), now), removed


def snapshot_total(snapshot: Mapping[str, Any] | None) -> Decimal:
    if not snapshot:
        return ZERO
    return to_money((snapshot.get("totals") or {}).get("total"))


def validate_snapshot(snapshot: Any) -> list[str]:
    """Structural checks used by the backfill verification and tests."""
    if not isinstance(snapshot, Mapping):
        return ["snapshot is not an object"]
    problems: list[str] = []
    items = snapshot.get("items")
    if not isinstance(items, list):
        problems.append("items array missing")
        items = []
    totals = snapshot.get("totals")
    if not isinstance(totals, Mapping):
        problems.append("totals missing")
        totals = {}

    required = ("id", "product_id", "product_name", "quantity", "unit_price", "line_total")
    for idx, item in enumerate(items):
        if not isinstance(item, Mapping):
            problems.append(f"item {idx} is not an object")
            continue
        missing = [k for k in required if k not in item]
        if missing:
            problems.append(f"item {idx} missing {', '.join(missing)}")
        if not isinstance(item.get("parameters", []), list):
            problems.append(f"item {idx} parameters is not a list")

    if totals:
        try:
            computed = sum((to_money(i.get("line_total")) for i in items if isinstance(i, Mapping)), ZERO)
            stored = to_money(totals.get("subtotal"))
        except ValueError as exc:
            problems.append(f"invalid amount: {exc}")
        else:
            if abs(computed - stored) > TOTAL_MISMATCH_TOLERANCE:
                problems.append(f"subtotal mismatch: stored {stored}, items sum {computed}")
    return problems
