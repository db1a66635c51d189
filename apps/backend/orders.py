"""Orders: checkout, admin edits and the snapshot stored on every order.

Invariant kept by every writer in this module: ``orders.total_price`` equals
``snapshot_data.totals.total``.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Optional

from apps.backend.carts import cart_owned_by, cart_snapshot, get_cart, mark_checked_out
from apps.backend.db import execute_conn, fetch_all_dict_conn, fetch_one_dict_conn, to_jsonb, update_row_conn
from apps.backend.errors import ConflictError, NotFoundError
from apps.backend.history import append_history, diff_fields
from services.snapshot import (
    add_line_item,
    remove_line_item,
    snapshot_total,
    update_line_item,
)

ORDER_STATUSES = ("pending", "processing", "shipped", "completed", "cancelled")
ORDER_CONTACT_FIELDS = ("name", "phone", "secondary_phone", "address")

_ORDER_SELECT = """
    SELECT id, cart_id, user_id, status, name, phone, secondary_phone, address,
           total_price, snapshot_data, created_at, updated_at
    FROM orders
"""


def check_order_status(value: Any) -> str:
    status = str(value or "").strip().lower()
    if status not in ORDER_STATUSES:
        raise ValueError(f"status must be one of: {', '.join(ORDER_STATUSES)}")
    return status


def create_order(
    conn: Any,
    *,
    cart_id: int,
    user_id: Optional[int],
    session_id: Optional[str],
    name: str,
    phone: str,
    address: str,
    secondary_phone: Optional[str] = None,
) -> dict[str, Any]:
    """Check out a cart. The caller commits.

    The cart row is locked first so two concurrent checkouts of the same
    cart serialize and the second one sees ``checked_out``.
    """
    cart = get_cart(conn, cart_id, for_update=True)
    if cart is None:
        raise NotFoundError(f"cart not found: {cart_id}")
    if not cart_owned_by(cart, user_id=user_id, session_id=session_id):
        raise NotFoundError(f"cart not found: {cart_id}")
    if cart.get("status") != "active":
        raise ConflictError(f"cart {cart_id} is already checked out")

    snapshot = cart_snapshot(conn, cart_id)
    if not snapshot["items"]:
        raise ValueError("cart is empty")

    order = fetch_one_dict_conn(
        conn,
        """
        INSERT INTO orders (cart_id, user_id, status, name, phone, secondary_phone, address,
                            total_price, snapshot_data)
        VALUES (%s, %s, 'pending', %s, %s, %s, %s, %s, %s::jsonb)
        RETURNING id
        """,
        (
            cart_id,
            user_id if user_id is not None else cart.get("user_id"),
            name,
            phone,
            secondary_phone,
            address,
            snapshot_total(snapshot),
            to_jsonb(snapshot),
        ),
    )
    if order is None:
        raise RuntimeError("order insert returned no row")
    order_id = int(order["id"])
    mark_checked_out(conn, cart_id)
    append_history(
        conn,
        entity_type="order",
        entity_id=order_id,
        action="created",
        changes={"cart_id": cart_id, "total_price": snapshot["totals"]["total"]},
    )
    created = get_order(conn, order_id)
    if created is None:
        raise NotFoundError(f"order not found: {order_id}")
    return created


def get_order(conn: Any, order_id: int, *, for_update: bool = False) -> Optional[dict[str, Any]]:
    lock = " FOR UPDATE" if for_update else ""
    return fetch_one_dict_conn(conn, f"{_ORDER_SELECT} WHERE id = %s{lock}", (order_id,))


def list_orders(
    conn: Any,
    *,
    user_id: Optional[int] = None,
    status: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[dict[str, Any]], int]:
    """One page of orders (newest first) and the total match count."""
    where: list[str] = []
    params: list[Any] = []
    if user_id is not None:
        where.append("user_id = %s")
        params.append(user_id)
    if status:
        where.append("status = %s")
        params.append(status)
    where_sql = f"WHERE {' AND '.join(where)}" if where else ""
    rows = fetch_all_dict_conn(
        conn,
        f"{_ORDER_SELECT} {where_sql} ORDER BY created_at DESC, id DESC LIMIT %s OFFSET %s",
        params + [limit, offset],
    )
    count = fetch_one_dict_conn(conn, f"SELECT COUNT(*)::bigint AS n FROM orders {where_sql}", params)
    return rows, int((count or {}).get("n") or 0)


def _locked_order(conn: Any, order_id: int) -> dict[str, Any]:
    order = get_order(conn, order_id, for_update=True)
    if order is None:
        raise NotFoundError(f"order not found: {order_id}")
    return order


def update_order(
    conn: Any, order_id: int, values: Mapping[str, Any], *, admin_id: Optional[int] = None
) -> dict[str, Any]:
    """Edit the contact fields of an order."""
    before = _locked_order(conn, order_id)
    fields = {k: values[k] for k in ORDER_CONTACT_FIELDS if k in values}
    if not fields:
        raise ValueError(f"at least one of {', '.join(ORDER_CONTACT_FIELDS)} must be provided")
    after = update_row_conn(conn, table="orders", row_id=order_id, values=fields)
    if after is None:
        raise NotFoundError(f"order not found: {order_id}")
    changes = diff_fields({k: before.get(k) for k in fields}, {k: after.get(k) for k in fields})
    if changes:
        append_history(conn, entity_type="order", entity_id=order_id, action="updated", changes=changes, admin_id=admin_id)
    return after


def update_status(conn: Any, order_id: int, status: str, *, admin_id: Optional[int] = None) -> dict[str, Any]:
    new_status = check_order_status(status)
    before = _locked_order(conn, order_id)
    after = update_row_conn(conn, table="orders", row_id=order_id, values={"status": new_status})
    if after is None:
        raise NotFoundError(f"order not found: {order_id}")
    if before.get("status") != new_status:
        append_history(
            conn,
            entity_type="order",
            entity_id=order_id,
            action="status_changed",
            changes={"status": {"from": before.get("status"), "to": new_status}},
            admin_id=admin_id,
        )
    return after


def _snapshot_of(order: Mapping[str, Any]) -> dict[str, Any]:
    snapshot = order.get("snapshot_data")
    if not snapshot:
        raise ConflictError(f"order {order.get('id')} has no snapshot; run backfill-snapshots first")
    return dict(snapshot)


def _store_edit(
    conn: Any,
    order: Mapping[str, Any],
    snapshot: Mapping[str, Any],
    *,
    action: str,
    changes: Mapping[str, Any],
    admin_id: Optional[int],
) -> dict[str, Any]:
    order_id = int(order["id"])
    new_total = snapshot_total(snapshot)
    after = update_row_conn(
        conn,
        table="orders",
        row_id=order_id,
        values={"snapshot_data": snapshot, "total_price": new_total},
        jsonb_columns=("snapshot_data",),
    )
    if after is None:
        raise NotFoundError(f"order not found: {order_id}")
    append_history(
        conn,
        entity_type="order",
        entity_id=order_id,
        action=action,
        changes={
            **changes,
            "total_price": {"from": order.get("total_price"), "to": new_total},
        },
        admin_id=admin_id,
    )
    return after


def add_order_item(
    conn: Any, order_id: int, item: Mapping[str, Any], *, admin_id: Optional[int] = None
) -> tuple[dict[str, Any], dict[str, Any]]:
    """Append a manual line to the order snapshot; returns ``(order, item)``."""
    order = _locked_order(conn, order_id)
    snapshot, added = add_line_item(
        _snapshot_of(order),
        product_id=int(item.get("product_id") or 0),
        product_name=str(item.get("product_name") or ""),
        quantity=item.get("quantity"),
        unit_price=item.get("unit_price"),
        product_description=item.get("product_description"),
        category_name=item.get("category_name"),
        image_url=item.get("image_url"),
        parameters=item.get("parameters"),
    )
    after = _store_edit(conn, order, snapshot, action="item_added", changes={"item": added}, admin_id=admin_id)
    return after, added


def update_order_item(
    conn: Any, order_id: int, item_id: str, changes: Mapping[str, Any], *, admin_id: Optional[int] = None
) -> tuple[dict[str, Any], dict[str, Any]]:
    order = _locked_order(conn, order_id)
    current = _snapshot_of(order)
    before = next((dict(i) for i in current.get("items") or [] if str(i.get("id")) == str(item_id)), None)
    try:
        snapshot, updated = update_line_item(current, item_id, changes)
    except LookupError as exc:
        raise NotFoundError(str(exc)) from exc
    after = _store_edit(
        conn,
        order,
        snapshot,
        action="item_updated",
        changes={"item_id": item_id, "fields": diff_fields(before, updated)},
        admin_id=admin_id,
    )
    return after, updated


def remove_order_item(
    conn: Any, order_id: int, item_id: str, *, admin_id: Optional[int] = None
) -> tuple[dict[str, Any], dict[str, Any]]:
    order = _locked_order(conn, order_id)
    try:
        snapshot, removed = remove_line_item(_snapshot_of(order), item_id)
    except LookupError as exc:
        raise NotFoundError(str(exc)) from exc
    after = _store_edit(conn, order, snapshot, action="item_removed", changes={"item": removed}, admin_id=admin_id)
    return after, removed


def delete_order(conn: Any, order_id: int, *, admin_id: Optional[int] = None) -> dict[str, Any]:
    before = _locked_order(conn, order_id)
    execute_conn(conn, "DELETE FROM orders WHERE id = %s", (order_id,))
    append_history(
        conn,
        entity_type="order",
        entity_id=order_id,
        action="deleted",
        changes={
            "status": before.get("status"),
            "name": before.get("name"),
            "phone": before.get("phone"),
            "total_price": before.get("total_price"),
        },
        admin_id=admin_id,
    )
    return before


def order_stats(conn: Any) -> dict[str, Any]:
    """Order counts per status and revenue of non-cancelled orders."""
    rows = fetch_all_dict_conn(
        conn,
        """
        SELECT status, COUNT(*)::bigint AS n, COALESCE(SUM(total_price), 0) AS revenue
        FROM orders
        GROUP BY status
        """,
    )
    by_status = {s: 0 for s in ORDER_STATUSES}
    revenue = 0.0
    for row in rows:
        status = str(row["status"])
        by_status[status] = int(row["n"] or 0)
        if status != "cancelled":
            revenue += float(row["revenue"] or 0)
    return {
        "total_orders": sum(by_status.values()),
        "by_status": by_status,
        "revenue": round(revenue, 2),
    }


def orders_missing_snapshot(conn: Any, *, limit: Optional[int] = None) -> list[dict[str, Any]]:
    limit_sql = " LIMIT %s" if limit else ""
    params: tuple[Any, ...] = (limit,) if limit else ()
    return fetch_all_dict_conn(
        conn,
        f"""
        SELECT id, cart_id, total_price, created_at
        FROM orders
        WHERE snapshot_data IS NULL
        ORDER BY id ASC{limit_sql}
        """,
        params,
    )


def store_snapshot(conn: Any, order_id: int, snapshot: Mapping[str, Any]) -> int:
    """Write a backfilled snapshot without touching ``total_price``.

    Only orders still lacking a snapshot are updated; returns the row count.
    """
    return execute_conn(
        conn,
        "UPDATE orders SET snapshot_data = %s::jsonb WHERE id = %s AND snapshot_data IS NULL",
        (to_jsonb(dict(snapshot)), order_id),
    )
