"""Orders Blueprint.

Checkout turns the caller's active cart into an order with a frozen
snapshot. Customers read their own orders; admins list, edit and delete
any order, and every admin edit lands in ``history``.
"""

from typing import Any, Optional

from flask import Blueprint

from apps.backend.accounts import admin_notification_emails, get_user, normalize_phone
from apps.backend.carts import get_active_cart
from apps.backend.db import db_conn
from apps.backend.errors import NotFoundError
from apps.backend.orders import (
    add_order_item,
    check_order_status,
    create_order,
    delete_order,
    get_order,
    list_orders,
    remove_order_item,
    update_order,
    update_order_item,
    update_status,
)
from apps.flask_api.utils import (
    _coerce_optional_id,
    _coerce_optional_text,
    _err,
    _json_body,
    _ok,
    _parse_int,
    _payload_fields,
    _q,
    _require_text,
)
from apps.flask_api.utils.auth import (
    current_admin,
    current_admin_id,
    current_user_id,
    guest_session_id,
    require_admin,
    require_user,
)
from infra.config import get_settings
from infra.logging_config import StructuredLogger
from services.notifications import get_notifier

orders_bp = Blueprint("orders", __name__)

_LOG = StructuredLogger(__name__)

_CONTACT_COERCERS = {
    "name": lambda v: _require_text({"name": v}, "name"),
    "phone": normalize_phone,
    "secondary_phone": lambda v: normalize_phone(v, field_name="secondary_phone") if v else None,
    "address": lambda v: _require_text({"address": v}, "address"),
}


def _page() -> tuple[int, int]:
    max_page = int(get_settings().api.max_page_size)
    limit = _parse_int(_q("limit"), default=min(50, max_page), min_v=1, max_v=max_page)
    offset = _parse_int(_q("offset"), default=0, min_v=0, max_v=10_000_000)
    return limit, offset


def _checkout_contact(conn: Any, payload: dict[str, Any], user_id: Optional[int]) -> dict[str, Any]:
    """Contact fields from the body, falling back to the customer's profile."""
    merged = dict(payload)
    if user_id is not None:
        profile = get_user(conn, user_id) or {}
        for key in ("name", "phone", "secondary_phone", "address"):
            if not merged.get(key) and profile.get(key):
                merged[key] = profile[key]
    return _payload_fields(merged, _CONTACT_COERCERS, required=("name", "phone", "address"))


def _notify_new_order(order: dict[str, Any]) -> None:
    """Email the admins about a committed order; failures only get logged."""
    try:
        with db_conn() as conn:
            recipients = admin_notification_emails(conn)
        sent = get_notifier().notify_new_order(order, recipients)
        _LOG.info("order_notification", order_id=order.get("id"), sent=sent)
    except Exception as exc:
        _LOG.exception("order_notification_failed", order_id=order.get("id"), detail=str(exc))


@orders_bp.route("/api/orders", methods=["POST"])
def api_create_order() -> Any:
    """Check out the caller's active cart.

    JSON body:
      name, phone, address (required unless the logged-in profile has them)
      secondary_phone
      cart_id: optional, defaults to the caller's active cart

    Returns:
      201 with ``order``; 400 for an empty cart, 409 when the cart was
      already checked out, 404 for a cart that is not the caller's.
    """
    try:
        payload = _json_body()
        user_id = current_user_id()
        session_id = guest_session_id(create=False)
        cart_id = _coerce_optional_id(payload.get("cart_id"), field_name="cart_id")
        with db_conn() as conn:
            contact = _checkout_contact(conn, payload, user_id)
            if cart_id is None:
                cart = get_active_cart(conn, user_id=user_id, session_id=session_id)
                if cart is None:
                    raise ValueError("cart is empty")
                cart_id = int(cart["id"])
            order = create_order(
                conn,
                cart_id=cart_id,
                user_id=user_id,
                session_id=session_id,
                name=contact["name"],
                phone=contact["phone"],
                address=contact["address"],
                secondary_phone=contact.get("secondary_phone"),
            )
            conn.commit()
        _LOG.info("order_created", order_id=order["id"], cart_id=cart_id, total=order.get("total_price"))
        _notify_new_order(order)
        return _ok({"order": order}, status=201)
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)


@orders_bp.route("/api/orders", methods=["GET"])
@require_user
def api_my_orders() -> Any:
    """The logged-in customer's orders, newest first."""
    try:
        limit, offset = _page()
        with db_conn() as conn:
            rows, total = list_orders(conn, user_id=current_user_id(), limit=limit, offset=offset)
        return _ok({"items": rows, "total": total, "limit": limit, "offset": offset})
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)


@orders_bp.route("/api/admin/orders", methods=["GET"])
@require_admin
def api_admin_orders() -> Any:
    """All orders.

    Query params:
      status: optional status filter
      limit / offset: pagination
    """
    try:
        status = _q("status")
        if status is not None:
            status = check_order_status(status)
        limit, offset = _page()
        with db_conn() as conn:
            rows, total = list_orders(conn, status=status, limit=limit, offset=offset)
        return _ok({"items": rows, "total": total, "limit": limit, "offset": offset})
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)


@orders_bp.route("/api/orders/<int:order_id>", methods=["GET"])
def api_get_order(order_id: int) -> Any:
    """One order; customers only see their own (404 otherwise)."""
    with db_conn() as conn:
        order = get_order(conn, order_id)
    if order is None:
        raise NotFoundError(f"order not found: {order_id}")
    if current_admin() is None:
        user_id = current_user_id()
        if user_id is None or order.get("user_id") is None or int(order["user_id"]) != user_id:
            raise NotFoundError(f"order not found: {order_id}")
    return _ok({"order": order})


@orders_bp.route("/api/orders/<int:order_id>", methods=["PUT"])
@require_admin
def api_update_order(order_id: int) -> Any:
    """Edit contact fields.

    JSON body:
      any of name, phone, secondary_phone, address
    """
    try:
        values = _payload_fields(_json_body(), _CONTACT_COERCERS)
        with db_conn() as conn:
            order = update_order(conn, order_id, values, admin_id=current_admin_id())
            conn.commit()
        return _ok({"order": order})
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)


@orders_bp.route("/api/orders/<int:order_id>/status", methods=["PUT"])
@require_admin
def api_update_order_status(order_id: int) -> Any:
    """Change status.

    JSON body:
      status (required): pending|processing|shipped|completed|cancelled
    """
    try:
        payload = _json_body()
        with db_conn() as conn:
            order = update_status(conn, order_id, _require_text(payload, "status"), admin_id=current_admin_id())
            conn.commit()
        return _ok({"order": order})
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)


@orders_bp.route("/api/orders/<int:order_id>", methods=["DELETE"])
@require_admin
def api_delete_order(order_id: int) -> Any:
    with db_conn() as conn:
        delete_order(conn, order_id, admin_id=current_admin_id())
        conn.commit()
    return _ok({"deleted": order_id})


@orders_bp.route("/api/orders/<int:order_id>/items", methods=["POST"])
@require_admin
def api_add_order_item(order_id: int) -> Any:
    """Append a line to the order snapshot and recompute totals.

    JSON body:
      product_name (required), quantity (required), unit_price (required),
      product_id, product_description, category_name, image_url,
      parameters: list of {group, name, value}
    """
    try:
        payload = _json_body()
        item = dict(payload)
        item["product_id"] = _coerce_optional_id(payload.get("product_id"), field_name="product_id") or 0
        item["product_description"] = _coerce_optional_text(payload.get("product_description"))
        with db_conn() as conn:
            order, added = add_order_item(conn, order_id, item, admin_id=current_admin_id())
            conn.commit()
        return _ok({"order": order, "item": added}, status=201)
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)


@orders_bp.route("/api/orders/<int:order_id>/items/<item_id>", methods=["PUT"])
@require_admin
def api_update_order_item(order_id: int, item_id: str) -> Any:
    """Edit a snapshot line.

    JSON body:
      any of product_name, product_description, quantity, unit_price, parameters
    """
    try:
        payload = _json_body()
        with db_conn() as conn:
            order, updated = update_order_item(conn, order_id, item_id, payload, admin_id=current_admin_id())
            conn.commit()
        return _ok({"order": order, "item": updated})
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)


@orders_bp.route("/api/orders/<int:order_id>/items/<item_id>", methods=["DELETE"])
@require_admin
def api_remove_order_item(order_id: int, item_id: str) -> Any:
    try:
        with db_conn() as conn:
            order, removed = remove_order_item(conn, order_id, item_id, admin_id=current_admin_id())
            conn.commit()
        return _ok({"order": order, "item": removed})
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)
