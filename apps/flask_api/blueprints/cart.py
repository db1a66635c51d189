"""Cart Blueprint.

The cart belongs to the logged-in customer or, for guests, to the
``X-Session-Id`` header (falling back to an id kept in the session cookie).
Every route answers with the full cart view so clients never recompute
prices themselves.
"""

from typing import Any

from flask import Blueprint

from apps.backend.carts import (
    add_item,
    add_special,
    build_cart_view,
    clear_cart,
    get_or_create_cart,
    remove_item,
    remove_special,
    update_item,
)
from apps.backend.db import db_conn
from apps.flask_api.utils import (
    _MISSING,
    _coerce_optional_id,
    _coerce_positive_int,
    _err,
    _json_body,
    _ok,
    _payload_selection,
    _payload_value,
)
from apps.flask_api.utils.auth import current_user_id, guest_session_id

cart_bp = Blueprint("cart", __name__)


def _identity() -> dict[str, Any]:
    user_id = current_user_id()
    return {"user_id": user_id, "session_id": guest_session_id(create=user_id is None)}


def _current_cart(conn: Any) -> dict[str, Any]:
    return get_or_create_cart(conn, **_identity())


@cart_bp.route("/api/cart", methods=["GET"])
def api_get_cart() -> Any:
    """Current cart with priced lines and totals.

    Returns:
      ``{"cart", "items", "totals", "total"}``
    """
    try:
        with db_conn() as conn:
            cart = _current_cart(conn)
            view = build_cart_view(conn, cart)
            conn.commit()
        return _ok(view)
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)


@cart_bp.route("/api/cart", methods=["DELETE"])
def api_clear_cart() -> Any:
    with db_conn() as conn:
        cart = _current_cart(conn)
        clear_cart(conn, cart)
        view = build_cart_view(conn, cart)
        conn.commit()
    return _ok(view)


@cart_bp.route("/api/cart/items", methods=["POST"])
def api_add_cart_item() -> Any:
    """Add a product line.

    JSON body:
      product_id (required)
      quantity: positive int (default 1)
      selected_parameters: {parameter_group_id: parameter_id}; groups left
        out take the product's default parameter
    """
    try:
        payload = _json_body()
        product_id = _coerce_optional_id(payload.get("product_id"), field_name="product_id")
        if product_id is None:
            raise ValueError("product_id is required")
        quantity = _payload_value(payload, "quantity", lambda v: _coerce_positive_int(v, field_name="quantity"))
        with db_conn() as conn:
            cart = _current_cart(conn)
            item = add_item(
                conn,
                cart,
                product_id=product_id,
                quantity=1 if quantity is _MISSING else quantity,
                selected_parameters=_payload_selection(payload),
            )
            view = build_cart_view(conn, cart)
            conn.commit()
        return _ok({**view, "item": item}, status=201)
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)


@cart_bp.route("/api/cart/items/<int:item_id>", methods=["PUT"])
def api_update_cart_item(item_id: int) -> Any:
    """Change quantity and/or selected parameters of one line.

    JSON body:
      quantity: positive int
      selected_parameters: full replacement selection
    """
    try:
        payload = _json_body()
        quantity = _payload_value(payload, "quantity", lambda v: _coerce_positive_int(v, field_name="quantity"))
        selection = _payload_selection(payload)
        with db_conn() as conn:
            cart = _current_cart(conn)
            item = update_item(
                conn,
                cart,
                item_id,
                quantity=None if quantity is _MISSING else quantity,
                selected_parameters=selection,
            )
            view = build_cart_view(conn, cart)
            conn.commit()
        return _ok({**view, "item": item})
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)


@cart_bp.route("/api/cart/items/<int:item_id>", methods=["DELETE"])
def api_remove_cart_item(item_id: int) -> Any:
    with db_conn() as conn:
        cart = _current_cart(conn)
        remove_item(conn, cart, item_id)
        view = build_cart_view(conn, cart)
        conn.commit()
    return _ok(view)


@cart_bp.route("/api/cart/specials", methods=["POST"])
def api_add_cart_special() -> Any:
    """Add a special bundle.

    JSON body:
      special_id (required)
      quantity: number of bundles (default 1)
    """
    try:
        payload = _json_body()
        special_id = _coerce_optional_id(payload.get("special_id"), field_name="special_id")
        if special_id is None:
            raise ValueError("special_id is required")
        quantity = _payload_value(payload, "quantity", lambda v: _coerce_positive_int(v, field_name="quantity"))
        with db_conn() as conn:
            cart = _current_cart(conn)
            add_special(conn, cart, special_id, quantity=1 if quantity is _MISSING else quantity)
            view = build_cart_view(conn, cart)
            conn.commit()
        return _ok(view, status=201)
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)


@cart_bp.route("/api/cart/specials/<int:special_id>", methods=["DELETE"])
def api_remove_cart_special(special_id: int) -> Any:
    """Remove every line the special added."""
    with db_conn() as conn:
        cart = _current_cart(conn)
        remove_special(conn, cart, special_id)
        view = build_cart_view(conn, cart)
        conn.commit()
    return _ok(view)
