"""Specials Blueprint.

Specials are fixed-price bundles of products. The storefront sees available
specials with their undiscounted price; admins manage all of them.
"""

from typing import Any

from flask import Blueprint

from apps.backend.db import db_conn
from apps.backend.errors import NotFoundError
from apps.backend.history import append_history, diff_fields
from apps.backend.specials import (
    add_special_item,
    check_special_status,
    create_special,
    delete_special,
    delete_special_item,
    get_special,
    list_specials,
    original_prices,
    update_special,
    update_special_item,
)
from apps.flask_api.utils import (
    _MISSING,
    _coerce_money,
    _coerce_optional_id,
    _coerce_optional_text,
    _coerce_positive_int,
    _err,
    _json_body,
    _ok,
    _payload_fields,
    _payload_selection,
    _payload_value,
    _require_text,
)
from apps.flask_api.utils.auth import current_admin, current_admin_id, require_admin
from services.pricing import SPECIAL_AVAILABLE, money_to_wire

specials_bp = Blueprint("specials", __name__)

_SPECIAL_COERCERS = {
    "name": lambda v: _require_text({"name": v}, "name"),
    "description": _coerce_optional_text,
    "discounted_price": lambda v: _coerce_money(v, field_name="discounted_price", positive=True),
    "status": check_special_status,
    "picture_url": _coerce_optional_text,
}


def _priced(conn: Any, specials: list[dict[str, Any]]) -> list[dict[str, Any]]:
    prices = original_prices(conn, specials)
    return [{**s, "original_price": money_to_wire(prices.get(int(s["id"]), 0))} for s in specials]


def _history(conn: Any, special_id: int, action: str, changes: Any) -> None:
    append_history(
        conn,
        entity_type="special",
        entity_id=special_id,
        action=action,
        changes=changes,
        admin_id=current_admin_id(),
    )


@specials_bp.route("/api/specials", methods=["GET"])
def api_list_specials() -> Any:
    """Available specials, each with ``original_price`` (sum of item list prices)."""
    with db_conn() as conn:
        items = _priced(conn, list_specials(conn, available_only=True))
    return _ok({"items": items})


@specials_bp.route("/api/admin/specials", methods=["GET"])
@require_admin
def api_admin_list_specials() -> Any:
    """Every special regardless of status."""
    with db_conn() as conn:
        items = _priced(conn, list_specials(conn, available_only=False))
    return _ok({"items": items})


@specials_bp.route("/api/specials/<int:special_id>", methods=["GET"])
def api_get_special(special_id: int) -> Any:
    with db_conn() as conn:
        special = get_special(conn, special_id)
        if special is None or (special.get("status") != SPECIAL_AVAILABLE and current_admin() is None):
            raise NotFoundError(f"special not found: {special_id}")
        priced = _priced(conn, [special])[0]
    return _ok({"special": priced})


@specials_bp.route("/api/specials", methods=["POST"])
@require_admin
def api_create_special() -> Any:
    """Create a special.

    JSON body:
      name (required), discounted_price (required, > 0), description,
      status (available|unavailable|draft), picture_url
    """
    try:
        values = _payload_fields(_json_body(), _SPECIAL_COERCERS, required=("name", "discounted_price"))
        with db_conn() as conn:
            special = create_special(conn, values)
            _history(conn, int(special["id"]), "created", diff_fields(None, values))
            conn.commit()
        return _ok({"special": special}, status=201)
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)


@specials_bp.route("/api/specials/<int:special_id>", methods=["PUT"])
@require_admin
def api_update_special(special_id: int) -> Any:
    try:
        values = _payload_fields(_json_body(), _SPECIAL_COERCERS)
        if not values:
            raise ValueError("No fields to update")
        with db_conn() as conn:
            before = get_special(conn, special_id)
            special = update_special(conn, special_id, values)
            before_cols = {k: (before or {}).get(k) for k in values}
            _history(conn, special_id, "updated", diff_fields(before_cols, {k: special.get(k) for k in values}))
            conn.commit()
        return _ok({"special": special})
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)


@specials_bp.route("/api/specials/<int:special_id>", methods=["DELETE"])
@require_admin
def api_delete_special(special_id: int) -> Any:
    with db_conn() as conn:
        before = delete_special(conn, special_id)
        _history(conn, special_id, "deleted", {"name": before.get("name")})
        conn.commit()
    return _ok({"deleted": special_id})


@specials_bp.route("/api/specials/<int:special_id>/items", methods=["POST"])
@require_admin
def api_add_special_item(special_id: int) -> Any:
    """Add a product to a special.

    JSON body:
      product_id (required), quantity (default 1), selected_parameters
    """
    try:
        payload = _json_body()
        product_id = _coerce_optional_id(payload.get("product_id"), field_name="product_id")
        if product_id is None:
            raise ValueError("product_id is required")
        quantity = _payload_value(payload, "quantity", lambda v: _coerce_positive_int(v, field_name="quantity"))
        with db_conn() as conn:
            item = add_special_item(
                conn,
                special_id,
                product_id=product_id,
                quantity=1 if quantity is _MISSING else quantity,
                selected_parameters=_payload_selection(payload),
            )
            _history(conn, special_id, "item_added", {"item": item})
            conn.commit()
        return _ok({"item": item}, status=201)
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)


@specials_bp.route("/api/specials/<int:special_id>/items/<int:item_id>", methods=["PUT"])
@require_admin
def api_update_special_item(special_id: int, item_id: int) -> Any:
    """Change quantity and/or selected parameters of a special item."""
    try:
        payload = _json_body()
        quantity = _payload_value(payload, "quantity", lambda v: _coerce_positive_int(v, field_name="quantity"))
        selection = _payload_selection(payload)
        if quantity is _MISSING and selection is None:
            raise ValueError("quantity or selected_parameters is required")
        with db_conn() as conn:
            item = update_special_item(
                conn,
                special_id,
                item_id,
                quantity=None if quantity is _MISSING else quantity,
                selected_parameters=selection,
            )
            _history(conn, special_id, "item_updated", {"item": item})
            conn.commit()
        return _ok({"item": item})
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)


@specials_bp.route("/api/specials/<int:special_id>/items/<int:item_id>", methods=["DELETE"])
@require_admin
def api_delete_special_item(special_id: int, item_id: int) -> Any:
    with db_conn() as conn:
        before = delete_special_item(conn, special_id, item_id)
        _history(conn, special_id, "item_removed", {"item": before})
        conn.commit()
    return _ok({"deleted": item_id})
