"""Specials: fixed-price bundles of products."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from decimal import Decimal
from typing import Any

from apps.backend.catalog import load_product_details
from apps.backend.db import (
    execute_conn,
    fetch_all_dict_conn,
    fetch_one_dict_conn,
    to_jsonb,
    update_row_conn,
)
from apps.backend.errors import NotFoundError
from services.pricing import (
    SpecialItem,
    SpecialTerms,
    parse_selection,
    selection_to_json,
    special_original_price,
    to_money,
    validate_selection,
)

SPECIAL_STATUSES = ("available", "unavailable", "draft")
SPECIAL_COLUMNS = ("name", "description", "discounted_price", "status", "picture_url")


def check_special_status(value: Any) -> str:
    status = str(value or "").strip().lower()
    if status not in SPECIAL_STATUSES:
        raise ValueError(f"status must be one of: {', '.join(SPECIAL_STATUSES)}")
    return status


def _items_for(conn: Any, special_ids: list[int]) -> dict[int, list[dict[str, Any]]]:
    if not special_ids:
        return {}
    rows = fetch_all_dict_conn(
        conn,
        """
        SELECT si.id, si.special_id, si.product_id, si.quantity, si.selected_parameters,
               p.name AS product_name, p.status AS product_status, p.base_price
        FROM special_items si
        LEFT JOIN products p ON p.id = si.product_id
        WHERE si.special_id = ANY(%s)
        ORDER BY si.special_id ASC, si.id ASC
        """,
        (special_ids,),
    )
    by_special: dict[int, list[dict[str, Any]]] = {}
    for row in rows:
        by_special.setdefault(int(row["special_id"]), []).append(row)
    return by_special


def list_specials(conn: Any, *, available_only: bool = True) -> list[dict[str, Any]]:
    where = "WHERE status = 'available'" if available_only else ""
    specials = fetch_all_dict_conn(
        conn,
        f"""
        SELECT id, name, description, discounted_price, status, picture_url, created_at, updated_at
        FROM specials
        {where}
        ORDER BY created_at DESC, id DESC
        """,
    )
    items = _items_for(conn, [int(s["id"]) for s in specials])
    return [{**s, "items": items.get(int(s["id"]), [])} for s in specials]


def get_special(conn: Any, special_id: int) -> dict[str, Any] | None:
    special = fetch_one_dict_conn(
        conn,
        """
        SELECT id, name, description, discounted_price, status, picture_url, created_at, updated_at
        FROM specials
        WHERE id = %s
        """,
        (special_id,),
    )
    if special is None:
        return None
    return {**special, "items": _items_for(conn, [special_id]).get(special_id, [])}


def create_special(conn: Any, values: Mapping[str, Any]) -> dict[str, Any]:
    row = fetch_one_dict_conn(
        conn,
        """
        INSERT INTO specials (name, description, discounted_price, status, picture_url)
        VALUES (%s, %s, %s, %s, %s)
        RETURNING id
        """,
        (
            values["name"],
            values.get("description"),
            values["discounted_price"],
            values.get("status") or "available",
            values.get("picture_url"),
        ),
    )
    if row is None:
        raise RuntimeError("special insert returned no row")
    created = get_special(conn, int(row["id"]))
    if created is None:
        raise NotFoundError(f"special not found: {row['id']}")
    return created


def update_special(conn: Any, special_id: int, values: Mapping[str, Any]) -> dict[str, Any]:
    fields = {k: values[k] for k in SPECIAL_COLUMNS if k in values}
    if update_row_conn(conn, table="specials", row_id=special_id, values=fields) is None:
        raise NotFoundError(f"special not found: {special_id}")
    special = get_special(conn, special_id)
    if special is None:
        raise NotFoundError(f"special not found: {special_id}")
    return special


def delete_special(conn: Any, special_id: int) -> dict[str, Any]:
    """Delete a special; its items cascade and cart lines lose the tag."""
    before = get_special(conn, special_id)
    if before is None:
        raise NotFoundError(f"special not found: {special_id}")
    execute_conn(conn, "DELETE FROM specials WHERE id = %s", (special_id,))
    return before


def _checked_selection(conn: Any, product_id: int, raw_selection: Any) -> dict[int, int]:
    product = load_product_details(conn, [product_id]).get(product_id)
    if product is None:
        raise NotFoundError(f"product not found: {product_id}")
    return validate_selection(product, parse_selection(raw_selection))


def add_special_item(
    conn: Any,
    special_id: int,
    *,
    product_id: int,
    quantity: int,
    selected_parameters: Any = None,
) -> dict[str, Any]:
    if get_special(conn, special_id) is None:
        raise NotFoundError(f"special not found: {special_id}")
    selection = _checked_selection(conn, product_id, selected_parameters)
    row = fetch_one_dict_conn(
        conn,
        """
        INSERT INTO special_items (special_id, product_id, quantity, selected_parameters)
        VALUES (%s, %s, %s, %s::jsonb)
        RETURNING id, special_id, product_id, quantity, selected_parameters
        """,
        (special_id, product_id, quantity, to_jsonb(selection_to_json(selection))),
    )
    if row is None:
        raise RuntimeError("special item insert returned no row")
    execute_conn(conn, "UPDATE specials SET updated_at = now() WHERE id = %s", (special_id,))
    return row


def _get_special_item(conn: Any, special_id: int, item_id: int) -> dict[str, Any]:
    row = fetch_one_dict_conn(
        conn,
        """
        SELECT id, special_id, product_id, quantity, selected_parameters
        FROM special_items
        WHERE id = %s AND special_id = %s
        """,
        (item_id, special_id),
    )
    if row is None:
        raise NotFoundError(f"special item not found: {item_id}")
    return row


def update_special_item(
    conn: Any,
    special_id: int,
    item_id: int,
    *,
    quantity: int | None = None,
    selected_parameters: Any = None,
) -> dict[str, Any]:
    current = _get_special_item(conn, special_id, item_id)
    new_quantity = int(current["quantity"]) if quantity is None else int(quantity)
    if selected_parameters is None:
        selection_json = current.get("selected_parameters")
    else:
        selection = _checked_selection(conn, int(current["product_id"]), selected_parameters)
        selection_json = selection_to_json(selection)
    row = fetch_one_dict_conn(
        conn,
        """
        UPDATE special_items
        SET quantity = %s, selected_parameters = %s::jsonb
        WHERE id = %s AND special_id = %s
        RETURNING id, special_id, product_id, quantity, selected_parameters
        """,
        (new_quantity, to_jsonb(selection_json), item_id, special_id),
    )
    if row is None:
        raise NotFoundError(f"special item not found: {item_id}")
    execute_conn(conn, "UPDATE specials SET updated_at = now() WHERE id = %s", (special_id,))
    return row


def delete_special_item(conn: Any, special_id: int, item_id: int) -> dict[str, Any]:
    before = _get_special_item(conn, special_id, item_id)
    execute_conn(conn, "DELETE FROM special_items WHERE id = %s AND special_id = %s", (item_id, special_id))
    execute_conn(conn, "UPDATE specials SET updated_at = now() WHERE id = %s", (special_id,))
    return before


def load_special_terms(conn: Any, special_ids: Iterable[int]) -> dict[int, SpecialTerms]:
    """Pricing terms for the given specials (missing ids are absent)."""
    ids = sorted({int(sid) for sid in special_ids})
    if not ids:
        return {}
    rows = fetch_all_dict_conn(
        conn,
        "SELECT id, name, discounted_price, status FROM specials WHERE id = ANY(%s)",
        (ids,),
    )
    items = _items_for(conn, ids)
    return {
        int(row["id"]): SpecialTerms(
            special_id=int(row["id"]),
            name=str(row["name"]),
            discounted_price=to_money(row["discounted_price"]),
            status=str(row["status"]),
            items=tuple(
                SpecialItem(
                    product_id=int(i["product_id"]),
                    quantity=int(i["quantity"]),
                    selection=parse_selection(i.get("selected_parameters")),
                )
                for i in items.get(int(row["id"]), [])
            ),
        )
        for row in rows
    }


def original_prices(conn: Any, specials: list[Mapping[str, Any]]) -> dict[int, Decimal]:
    """List price of each special's contents (what the bundle would cost item by item)."""
    product_ids = {int(i["product_id"]) for s in specials for i in s.get("items") or []}
    products = load_product_details(conn, product_ids)
    return {
        int(s["id"]): special_original_price(
            (
                products.get(int(i["product_id"])),
                parse_selection(i.get("selected_parameters")),
                int(i["quantity"]),
            )
            for i in s.get("items") or []
        )
        for s in specials
    }
