"""Shopping carts and their lines (``carts`` / ``product_in_cart``).

A cart belongs either to a logged-in user or to a guest ``session_id``. When a
guest logs in, their active cart is claimed by the user. Writes validate the
parameter selection strictly; reads price whatever is stored.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Any, Optional

from apps.backend.catalog import load_product_details
from apps.backend.db import execute_conn, fetch_all_dict_conn, fetch_one_dict_conn, to_jsonb
from apps.backend.errors import ConflictError, NotFoundError
from apps.backend.specials import get_special, load_special_terms
from services.pricing import (
    ACTIVE_STATUS,
    SPECIAL_AVAILABLE,
    CartLine,
    cart_totals,
    money_to_wire,
    parse_selection,
    resolve_parameters,
    selection_to_json,
    validate_selection,
)
from services.snapshot import DELETED_PRODUCT_NAME, build_snapshot, product_image_url

CART_ACTIVE = "active"
CART_CHECKED_OUT = "checked_out"

_CART_SELECT = "SELECT id, user_id, session_id, status, created_at, updated_at FROM carts"


def get_cart(conn: Any, cart_id: int, *, for_update: bool = False) -> Optional[dict[str, Any]]:
    lock = " FOR UPDATE" if for_update else ""
    return fetch_one_dict_conn(conn, f"{_CART_SELECT} WHERE id = %s{lock}", (cart_id,))


def get_active_cart(
    conn: Any, *, user_id: Optional[int] = None, session_id: Optional[str] = None
) -> Optional[dict[str, Any]]:
    """Newest active cart for the user, else for the guest session."""
    if user_id is not None:
        return fetch_one_dict_conn(
            conn,
            f"{_CART_SELECT} WHERE user_id = %s AND status = 'active' ORDER BY updated_at DESC, id DESC LIMIT 1",
            (user_id,),
        )
    if session_id:
        return fetch_one_dict_conn(
            conn,
            f"""
            {_CART_SELECT}
            WHERE session_id = %s AND user_id IS NULL AND status = 'active'
            ORDER BY updated_at DESC, id DESC LIMIT 1
            """,
            (session_id,),
        )
    return None


def get_or_create_cart(
    conn: Any, *, user_id: Optional[int] = None, session_id: Optional[str] = None
) -> dict[str, Any]:
    if user_id is None and not session_id:
        raise ValueError("a user or a session_id is required")

    cart = get_active_cart(conn, user_id=user_id, session_id=session_id)
    if cart is not None:
        return cart

    if user_id is not None and session_id:
        claimed = claim_guest_cart(conn, user_id=user_id, session_id=session_id)
        if claimed is not None:
            return claimed

    row = fetch_one_dict_conn(
        conn,
        """
        INSERT INTO carts (user_id, session_id, status)
        VALUES (%s, %s, 'active')
        RETURNING id, user_id, session_id, status, created_at, updated_at
        """,
        (user_id, session_id),
    )
    if row is None:
        raise RuntimeError("cart insert returned no row")
    return row


def claim_guest_cart(conn: Any, *, user_id: int, session_id: str) -> Optional[dict[str, Any]]:
    """Attach the guest session's active cart to ``user_id`` when the user has none."""
    if get_active_cart(conn, user_id=user_id) is not None:
        return None
    return fetch_one_dict_conn(
        conn,
        """
        UPDATE carts SET user_id = %s, updated_at = now()
        WHERE id = (
          SELECT id FROM carts
          WHERE session_id = %s AND user_id IS NULL AND status = 'active'
          ORDER BY updated_at DESC, id DESC LIMIT 1
        )
        RETURNING id, user_id, session_id, status, created_at, updated_at
        """,
        (user_id, session_id),
    )


def cart_owned_by(cart: Mapping[str, Any], *, user_id: Optional[int], session_id: Optional[str]) -> bool:
    if cart.get("user_id") is not None:
        return user_id is not None and int(cart["user_id"]) == int(user_id)
    return bool(session_id) and cart.get("session_id") == session_id


def _require_active(cart: Mapping[str, Any]) -> None:
    if cart.get("status") != CART_ACTIVE:
        raise ConflictError(f"cart {cart.get('id')} is already checked out")


def _touch(conn: Any, cart_id: int) -> None:
    execute_conn(conn, "UPDATE carts SET updated_at = now() WHERE id = %s", (cart_id,))


def _cart_rows(conn: Any, cart_id: int) -> list[dict[str, Any]]:
    return fetch_all_dict_conn(
        conn,
        """
        SELECT id, cart_id, product_id, quantity, selected_parameters, special_id, created_at
        FROM product_in_cart
        WHERE cart_id = %s
        ORDER BY id ASC
        """,
        (cart_id,),
    )


def load_cart_lines(conn: Any, cart_id: int) -> list[CartLine]:
    """Cart rows joined with their products; deleted products yield ``product=None``."""
    rows = _cart_rows(conn, cart_id)
    products = load_product_details(conn, (int(r["product_id"]) for r in rows))
    return [
        CartLine(
            item_id=int(r["id"]),
            product_id=int(r["product_id"]),
            quantity=int(r["quantity"]),
            selection=parse_selection(r.get("selected_parameters")),
            product=products.get(int(r["product_id"])),
            special_id=int(r["special_id"]) if r.get("special_id") is not None else None,
        )
        for r in rows
    ]


def _active_product(conn: Any, product_id: int) -> dict[str, Any]:
    product = load_product_details(conn, [product_id]).get(product_id)
    if product is None:
        raise NotFoundError(f"product not found: {product_id}")
    if str(product.get("status") or ACTIVE_STATUS) != ACTIVE_STATUS:
        raise ValueError(f"product {product_id} is not available")
    return product


def _get_item(conn: Any, cart_id: int, item_id: int) -> dict[str, Any]:
    row = fetch_one_dict_conn(
        conn,
        """
        SELECT id, cart_id, product_id, quantity, selected_parameters, special_id
        FROM product_in_cart
        WHERE id = %s AND cart_id = %s
        """,
        (item_id, cart_id),
    )
    if row is None:
        raise NotFoundError(f"cart item not found: {item_id}")
    return row


def add_item(
    conn: Any,
    cart: Mapping[str, Any],
    *,
    product_id: int,
    quantity: int = 1,
    selected_parameters: Any = None,
) -> dict[str, Any]:
    """Add a product line, merging into an identical untagged line when present."""
    _require_active(cart)
    cart_id = int(cart["id"])
    product = _active_product(conn, product_id)
    selection = validate_selection(product, parse_selection(selected_parameters))

    for row in _cart_rows(conn, cart_id):
        if (
            int(row["product_id"]) == product_id
            and row.get("special_id") is None
            and parse_selection(row.get("selected_parameters")) == selection
        ):
            merged = fetch_one_dict_conn(
                conn,
                """
                UPDATE product_in_cart SET quantity = quantity + %s, updated_at = now()
                WHERE id = %s
                RETURNING id, cart_id, product_id, quantity, selected_parameters, special_id
                """,
                (quantity, row["id"]),
            )
            _touch(conn, cart_id)
            if merged is None:
                raise NotFoundError(f"cart item not found: {row['id']}")
            return merged

    created = fetch_one_dict_conn(
        conn,
        """
        INSERT INTO product_in_cart (cart_id, product_id, quantity, selected_parameters)
        VALUES (%s, %s, %s, %s::jsonb)
        RETURNING id, cart_id, product_id, quantity, selected_parameters, special_id
        """,
        (cart_id, product_id, quantity, to_jsonb(selection_to_json(selection))),
    )
    _touch(conn, cart_id)
    if created is None:
        raise RuntimeError("cart item insert returned no row")
    return created


def update_item(
    conn: Any,
    cart: Mapping[str, Any],
    item_id: int,
    *,
    quantity: Optional[int] = None,
    selected_parameters: Any = None,
) -> dict[str, Any]:
    _require_active(cart)
    cart_id = int(cart["id"])
    current = _get_item(conn, cart_id, item_id)
    if quantity is None and selected_parameters is None:
        raise ValueError("quantity or selected_parameters is required")

    new_quantity = int(current["quantity"]) if quantity is None else int(quantity)
    selection_json = current.get("selected_parameters")
    if selected_parameters is not None:
        product = _active_product(conn, int(current["product_id"]))
        selection_json = selection_to_json(validate_selection(product, parse_selection(selected_parameters)))

    row = fetch_one_dict_conn(
        conn,
        """
        UPDATE product_in_cart
        SET quantity = %s, selected_parameters = %s::jsonb, updated_at = now()
        WHERE id = %s AND cart_id = %s
        RETURNING id, cart_id, product_id, quantity, selected_parameters, special_id
        """,
        (new_quantity, to_jsonb(selection_json), item_id, cart_id),
    )
    _touch(conn, cart_id)
    if row is None:
        raise NotFoundError(f"cart item not found: {item_id}")
    return row


def remove_item(conn: Any, cart: Mapping[str, Any], item_id: int) -> None:
    _require_active(cart)
    cart_id = int(cart["id"])
    removed = execute_conn(conn, "DELETE FROM product_in_cart WHERE id = %s AND cart_id = %s", (item_id, cart_id))
    if not removed:
        raise NotFoundError(f"cart item not found: {item_id}")
    _touch(conn, cart_id)


def _selection_key(raw: Any) -> tuple[tuple[int, int], ...]:
    return tuple(sorted(parse_selection(raw).items()))


def add_special(conn: Any, cart: Mapping[str, Any], special_id: int, *, quantity: int = 1) -> int:
    """Add ``quantity`` bundles of a special; returns the number of lines touched.

    Each special item becomes a line tagged with ``special_id``. Adding a
    special that is already in the cart raises the tagged lines' quantities;
    lines are matched on product and selection, so one product configured two
    ways keeps two lines.
    """
    _require_active(cart)
    cart_id = int(cart["id"])
    special = get_special(conn, special_id)
    if special is None:
        raise NotFoundError(f"special not found: {special_id}")
    if special.get("status") != SPECIAL_AVAILABLE:
        raise ValueError(f"special {special_id} is not available")
    items = special.get("items") or []
    if not items:
        raise ValueError(f"special {special_id} has no items")

    tagged: dict[tuple[int, tuple[tuple[int, int], ...]], list[dict[str, Any]]] = {}
    for row in _cart_rows(conn, cart_id):
        if row.get("special_id") is not None and int(row["special_id"]) == special_id:
            key = (int(row["product_id"]), _selection_key(row.get("selected_parameters")))
            tagged.setdefault(key, []).append(row)

    touched = 0
    for item in items:
        product_id = int(item["product_id"])
        add_qty = int(item["quantity"]) * quantity
        _active_product(conn, product_id)
        matches = tagged.get((product_id, _selection_key(item.get("selected_parameters")))) or []
        if matches:
            execute_conn(
                conn,
                "UPDATE product_in_cart SET quantity = quantity + %s, updated_at = now() WHERE id = %s",
                (add_qty, matches.pop(0)["id"]),
            )
        else:
            execute_conn(
                conn,
                """
                INSERT INTO product_in_cart (cart_id, product_id, quantity, selected_parameters, special_id)
                VALUES (%s, %s, %s, %s::jsonb, %s)
                """,
                (cart_id, product_id, add_qty, to_jsonb(item.get("selected_parameters")), special_id),
            )
        touched += 1
    _touch(conn, cart_id)
    return touched


def remove_special(conn: Any, cart: Mapping[str, Any], special_id: int) -> int:
    """Delete every line tagged with the special; returns the number removed."""
    _require_active(cart)
    cart_id = int(cart["id"])
    removed = execute_conn(
        conn,
        "DELETE FROM product_in_cart WHERE cart_id = %s AND special_id = %s",
        (cart_id, special_id),
    )
    if not removed:
        raise NotFoundError(f"special {special_id} is not in the cart")
    _touch(conn, cart_id)
    return removed


def clear_cart(conn: Any, cart: Mapping[str, Any]) -> int:
    _require_active(cart)
    removed = execute_conn(conn, "DELETE FROM product_in_cart WHERE cart_id = %s", (int(cart["id"]),))
    _touch(conn, int(cart["id"]))
    return removed


def mark_checked_out(conn: Any, cart_id: int) -> None:
    execute_conn(
        conn,
        "UPDATE carts SET status = 'checked_out', updated_at = now() WHERE id = %s",
        (cart_id,),
    )


def cart_snapshot(
    conn: Any, cart_id: int, *, backfilled: bool = False, now: Optional[datetime] = None
) -> dict[str, Any]:
    """Freeze the cart's current lines into an order snapshot."""
    lines = load_cart_lines(conn, cart_id)
    specials = load_special_terms(conn, (ln.special_id for ln in lines if ln.special_id is not None))
    return build_snapshot(lines, specials, now=now, backfilled=backfilled)


def _line_view(line: CartLine, special_names: Mapping[int, str]) -> dict[str, Any]:
    product = line.product
    view: dict[str, Any] = {
        "id": line.item_id,
        "product_id": line.product_id,
        "quantity": line.quantity,
        "selected_parameters": selection_to_json(line.selection),
        "special_id": line.special_id,
        "special_name": special_names.get(line.special_id) if line.special_id is not None else None,
        "unit_price": money_to_wire(line.unit_price),
        "line_total": money_to_wire(line.line_total),
    }
    if product is None:
        view.update(
            product_name=DELETED_PRODUCT_NAME.format(product_id=line.product_id),
            product_status=None,
            image_url=None,
            parameters=[],
            available=False,
        )
    else:
        view.update(
            product_name=product.get("name"),
            product_status=product.get("status"),
            image_url=product_image_url(product.get("primary_image_id")) or product.get("picture_url"),
            parameters=[p.as_dict() for p in resolve_parameters(product, line.selection)],
            available=product.get("status") == ACTIVE_STATUS,
        )
    return view


def build_cart_view(conn: Any, cart: Mapping[str, Any]) -> dict[str, Any]:
    """``{"cart", "items", "totals", "total"}`` as returned by every cart route."""
    lines = load_cart_lines(conn, int(cart["id"]))
    specials = load_special_terms(conn, (ln.special_id for ln in lines if ln.special_id is not None))
    totals = cart_totals(lines, specials)
    names = {sid: terms.name for sid, terms in specials.items()}
    return {
        "cart": dict(cart),
        "items": [_line_view(line, names) for line in lines],
        "totals": totals.as_dict(),
        "total": money_to_wire(totals.total),
    }
