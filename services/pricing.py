"""Price calculation for configurable products and bundle specials.

Everything in this module is pure: callers hand in product mappings (as built
by :func:`apps.backend.catalog.load_product_details`) and parameter selections,
and get Decimal amounts back. Money is always quantized to cents.

Product mapping shape::

    {
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
          ],
        },
      ],
    }

A selection maps parameter-group id to parameter id (``{1: 5}``).
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

_CENT = Decimal("0.01")
ZERO = Decimal("0.00")

ACTIVE_STATUS = "active"
SPECIAL_AVAILABLE = "available"


class PricingError(ValueError):
    """Raised when a parameter selection does not fit the product."""


def to_money(value: Any) -> Decimal:
    """Convert a DB/JSON amount to a cent-quantized Decimal."""
    if value is None or value == "":
        return ZERO
    if isinstance(value, bool):
        raise ValueError(f"invalid money amount: {value!r}")
    try:
        if isinstance(value, Decimal):
            amount = value
        elif isinstance(value, float):
            amount = Decimal(repr(value))
        else:
            amount = Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise ValueError(f"invalid money amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"invalid money amount: {value!r}")
    return amount.quantize(_CENT, rounding=ROUND_HALF_UP)


def money_to_wire(value: Any) -> float:
    """Render an amount for JSON payloads and snapshots."""
    return float(to_money(value))


def parse_selection(raw: Any) -> dict[int, int]:
    """Normalize a ``selected_parameters`` value to ``{group_id: parameter_id}``.

    JSON object keys arrive as strings; JSONB columns may arrive as text.
    Empty or null values mean "nothing selected".
    """
    if raw is None or raw == "":
        return {}
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValueError("selected_parameters must be a JSON object") from exc
    if not isinstance(raw, Mapping):
        raise ValueError("selected_parameters must be an object mapping group id to parameter id")

    selection: dict[int, int] = {}
    for key, value in raw.items():
        if value is None or value == "":
            continue
        if isinstance(value, bool) or isinstance(key, bool):
            raise ValueError(f"invalid parameter selection {key!r}: {value!r}")
        try:
            group_id = int(key)
            parameter_id = int(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"invalid parameter selection {key!r}: {value!r}") from exc
        selection[group_id] = parameter_id
    return selection


def selection_to_json(selection: Mapping[int, int]) -> dict[str, int]:
    """Render a selection with string keys, the way it is stored in JSONB."""
    return {str(k): int(v) for k, v in sorted(selection.items())}


def _positive_quantity(quantity: Any) -> int:
    if isinstance(quantity, bool):
        raise ValueError("quantity must be an integer")
    try:
        qty = int(quantity)
    except (TypeError, ValueError) as exc:
        raise ValueError("quantity must be an integer") from exc
    if qty <= 0:
        raise ValueError("quantity must be > 0")
    return qty


@dataclass(frozen=True)
class PricedParameter:
    """One selected option with the group it belongs to."""

    group_id: int
    group_name: str
    parameter_id: int
    name: str
    description: str | None
    price_modifier: Decimal

    def as_snapshot(self) -> dict[str, Any]:
        item: dict[str, Any] = {"group": self.group_name, "name": self.name}
        if self.description:
            item["value"] = self.description
        return item

    def as_dict(self) -> dict[str, Any]:
        return {
            "group_id": self.group_id,
            "group": self.group_name,
            "parameter_id": self.parameter_id,
            "name": self.name,
            "value": self.description,
            "price_modifier": money_to_wire(self.price_modifier),
        }


def _groups(product: Mapping[str, Any]) -> list[Mapping[str, Any]]:
    return list(product.get("parameter_groups") or [])


def _find_parameter(group: Mapping[str, Any], parameter_id: int) -> Mapping[str, Any] | None:
    for param in group.get("parameters") or []:
        if int(param["id"]) == parameter_id:
            return param
    return None


def resolve_parameters(product: Mapping[str, Any], selection: Mapping[int, int]) -> list[PricedParameter]:
    """Return the selected parameters that apply to the product.

    Lenient: selections for groups the product does not carry, or for
    parameters outside the selected group, are skipped. Old cart rows keep
    pricing after an admin detaches a group. Order follows the product's
    group order.
    """
    resolved: list[PricedParameter] = []
    for group in _groups(product):
        group_id = int(group["parameter_group_id"])
        if group_id not in selection:
            continue
        param = _find_parameter(group, int(selection[group_id]))
        if param is None:
            continue
        resolved.append(
            PricedParameter(
                group_id=group_id,
                group_name=str(group.get("name") or ""),
                parameter_id=int(param["id"]),
                name=str(param.get("name") or ""),
                description=param.get("description"),
                price_modifier=to_money(param.get("price_modifier")),
            )
        )
    return resolved


def validate_selection(
    product: Mapping[str, Any],
    selection: Mapping[int, int],
    *,
    apply_defaults: bool = True,
) -> dict[int, int]:
    """Strictly check a selection against the product and fill in defaults.

    Raises:
        PricingError: a group is not attached to the product, a parameter is
            not part of its group, or the parameter is not active.
    """
    groups = {int(g["parameter_group_id"]): g for g in _groups(product)}
    product_id = product.get("id")
    for group_id, parameter_id in selection.items():
        group = groups.get(int(group_id))
        if group is None:
            raise PricingError(f"parameter group {group_id} is not available for product {product_id}")
        param = _find_parameter(group, int(parameter_id))
        if param is None:
            raise PricingError(f"parameter {parameter_id} does not belong to parameter group {group_id}")
        if str(param.get("status") or ACTIVE_STATUS) != ACTIVE_STATUS:
            raise PricingError(f"parameter {parameter_id} is not available")

    resolved = {int(k): int(v) for k, v in selection.items()}
    if apply_defaults:
        for group_id, group in groups.items():
            default_id = group.get("default_parameter_id")
            if group_id not in resolved and default_id is not None:
                resolved[group_id] = int(default_id)
    return resolved


def unit_price(product: Mapping[str, Any], selection: Mapping[int, int]) -> Decimal:
    """Base price plus the modifiers of every applicable selected parameter."""
    price = to_money(product.get("base_price"))
    for param in resolve_parameters(product, selection):
        price += param.price_modifier
    return to_money(price)


def line_total(product: Mapping[str, Any], selection: Mapping[int, int], quantity: Any) -> Decimal:
    return to_money(unit_price(product, selection) * _positive_quantity(quantity))


@dataclass(frozen=True)
class CartLine:
    """A cart row joined with its product (``None`` once the product is deleted)."""

    item_id: int | None
    product_id: int
    quantity: int
    selection: Mapping[int, int] = field(default_factory=dict)
    product: Mapping[str, Any] | None = None
    special_id: int | None = None

    @property
    def unit_price(self) -> Decimal:
        if self.product is None:
            return ZERO
        return unit_price(self.product, self.selection)

    @property
    def line_total(self) -> Decimal:
        return to_money(self.unit_price * int(self.quantity))


@dataclass(frozen=True)
class SpecialItem:
    product_id: int
    quantity: int
    selection: Mapping[int, int] = field(default_factory=dict)


@dataclass(frozen=True)
class SpecialTerms:
    """What a special sells and for how much."""

    special_id: int
    name: str
    discounted_price: Decimal
    items: tuple[SpecialItem, ...] = ()
    status: str = SPECIAL_AVAILABLE

    def required_quantities(self) -> dict[int, int]:
        required: dict[int, int] = {}
        for item in self.items:
            required[item.product_id] = required.get(item.product_id, 0) + int(item.quantity)
        return required


@dataclass(frozen=True)
class CartTotals:
    subtotal: Decimal
    discount: Decimal
    tax: Decimal
    total: Decimal

    def as_dict(self) -> dict[str, float]:
        return {
            "subtotal": money_to_wire(self.subtotal),
            "discount": money_to_wire(self.discount),
            "tax": money_to_wire(self.tax),
            "total": money_to_wire(self.total),
        }


def bundle_count(lines: Iterable[CartLine], terms: SpecialTerms) -> int:
    """How many complete copies of the special the cart holds."""
    required = terms.required_quantities()
    if not required:
        return 0
    held: dict[int, int] = {}
    for line in lines:
        if line.special_id == terms.special_id and line.product is not None:
            held[line.product_id] = held.get(line.product_id, 0) + int(line.quantity)
    return min(held.get(product_id, 0) // qty for product_id, qty in required.items())


def _bundle_list_price(lines: Sequence[CartLine], terms: SpecialTerms) -> Decimal:
    """List price of one bundle, using the unit prices the cart lines carry.

    Each special item is priced from its own tagged line: the line with the
    same product and selection when there is one, otherwise the next tagged
    line of that product not yet used by another item. A special may hold the
    same product twice in different configurations.
    """
    tagged = [ln for ln in lines if ln.special_id == terms.special_id and ln.product is not None]
    used: set[int] = set()
    total = ZERO
    for item in terms.items:
        same_product = [i for i, ln in enumerate(tagged) if ln.product_id == item.product_id]
        if not same_product:
            continue
        free = [i for i in same_product if i not in used] or same_product
        exact = [i for i in free if dict(tagged[i].selection) == dict(item.selection)]
        picked = (exact or free)[0]
        used.add(picked)
        total += tagged[picked].unit_price * int(item.quantity)
    return to_money(total)


def cart_totals(lines: Sequence[CartLine], specials: Mapping[int, SpecialTerms]) -> CartTotals:
    """Subtotal, bundle discount, tax and total for a set of cart lines.

    A special grants ``list price - discounted_price`` per complete bundle
    while it is available. Lines beyond complete bundles pay list price.
    """
    lines = list(lines)
    subtotal = to_money(sum((line.line_total for line in lines), ZERO))

    discount = ZERO
    special_ids = sorted({line.special_id for line in lines if line.special_id is not None})
    for special_id in special_ids:
        terms = specials.get(special_id)
        if terms is None or terms.status != SPECIAL_AVAILABLE:
            continue
        bundles = bundle_count(lines, terms)
        if bundles <= 0:
            continue
        saving = _bundle_list_price(lines, terms) - to_money(terms.discounted_price)
        if saving > 0:
            discount += saving * bundles

    discount = min(to_money(discount), subtotal)
    tax = ZERO
    total = max(ZERO, to_money(subtotal - discount + tax))
    return CartTotals(subtotal=subtotal, discount=discount, tax=tax, total=total)


def special_original_price(
    items: Iterable[tuple[Mapping[str, Any] | None, Mapping[int, int], int]],
) -> Decimal:
    """Sum of list prices for a special's items (``(product, selection, quantity)``).

    Items whose product no longer exists contribute nothing.
    """
    total = ZERO
    for product, selection, quantity in items:
        if product is None:
            continue
        total += unit_price(product, selection) * int(quantity)
    return to_money(total)
