"""Catalog data access: categories, products and their parameter groups.

All functions take an open connection and leave committing to the caller.
:func:`load_product_details` builds the nested product shape that
:mod:`services.pricing` consumes.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from apps.backend.db import (
    execute_conn,
    fetch_all_dict_conn,
    fetch_one_dict_conn,
    update_row_conn,
)
from apps.backend.errors import ConflictError, NotFoundError

CATALOG_STATUSES = ("active", "inactive", "draft")
CATEGORY_COLUMNS = ("name", "description", "picture_url", "status")
PRODUCT_COLUMNS = ("category_id", "name", "description", "base_price", "picture_url", "status")


def check_status(value: Any) -> str:
    status = str(value or "").strip().lower()
    if status not in CATALOG_STATUSES:
        raise ValueError(f"status must be one of: {', '.join(CATALOG_STATUSES)}")
    return status


def _pick(values: Mapping[str, Any], allowed: Iterable[str]) -> dict[str, Any]:
    return {k: values[k] for k in allowed if k in values}


# ---------------------------
# Categories
# ---------------------------

def list_categories(conn: Any, *, include_inactive: bool = False) -> list[dict[str, Any]]:
    where = "" if include_inactive else "WHERE c.status = 'active'"
    return fetch_all_dict_conn(
        conn,
        f"""
        SELECT
          c.id, c.name, c.description, c.picture_url, c.status, c.created_at, c.updated_at,
          COUNT(p.id) FILTER (WHERE p.status = 'active')::bigint AS product_count
        FROM categories c
        LEFT JOIN products p ON p.category_id = c.id
        {where}
        GROUP BY c.id
        ORDER BY c.name ASC, c.id ASC
        """,
    )


def get_category(conn: Any, category_id: int) -> dict[str, Any] | None:
    return fetch_one_dict_conn(
        conn,
        """
        SELECT id, name, description, picture_url, status, created_at, updated_at
        FROM categories
        WHERE id = %s
        """,
        (category_id,),
    )


def create_category(conn: Any, values: Mapping[str, Any]) -> dict[str, Any]:
    row = fetch_one_dict_conn(
        conn,
        """
        INSERT INTO categories (name, description, picture_url, status)
        VALUES (%s, %s, %s, %s)
        RETURNING *
        """,
        (
            values["name"],
            values.get("description"),
            values.get("picture_url"),
            values.get("status") or "active",
        ),
    )
    if row is None:
        raise RuntimeError("category insert returned no row")
    return row


def update_category(conn: Any, category_id: int, values: Mapping[str, Any]) -> dict[str, Any]:
    row = update_row_conn(conn, table="categories", row_id=category_id, values=_pick(values, CATEGORY_COLUMNS))
    if row is None:
        raise NotFoundError(f"category not found: {category_id}")
    return row


def delete_category(conn: Any, category_id: int) -> dict[str, Any]:
    """Delete a category that no product references."""
    before = get_category(conn, category_id)
    if before is None:
        raise NotFoundError(f"category not found: {category_id}")
    in_use = fetch_one_dict_conn(
        conn,
        "SELECT COUNT(*)::bigint AS n FROM products WHERE category_id = %s",
        (category_id,),
    )
    n = int((in_use or {}).get("n") or 0)
    if n:
        raise ConflictError(f"category {category_id} still has {n} product(s)")
    execute_conn(conn, "DELETE FROM categories WHERE id = %s", (category_id,))
    return before


# ---------------------------
# Products
# ---------------------------

_PRODUCT_SELECT = """
    SELECT
      p.id, p.category_id, p.name, p.description, p.base_price, p.picture_url, p.status,
      p.created_at, p.updated_at,
      c.name AS category_name,
      (
        SELECT pi.id FROM product_images pi
        WHERE pi.product_id = p.id
        ORDER BY pi.display_order ASC, pi.created_at ASC
        LIMIT 1
      ) AS primary_image_id
    FROM products p
    LEFT JOIN categories c ON c.id = p.category_id
"""


def list_products(
    conn: Any,
    *,
    category_id: int | None = None,
    include_inactive: bool = False,
    query: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[dict[str, Any]], int]:
    """Return one page of products and the total match count."""
    where: list[str] = []
    params: list[Any] = []
    if not include_inactive:
        where.append("p.status = 'active'")
    if category_id is not None:
        where.append("p.category_id = %s")
        params.append(category_id)
    if query:
        where.append("(p.name ILIKE %s OR p.description ILIKE %s)")
        params.extend([f"%{query}%", f"%{query}%"])
    where_sql = f"WHERE {' AND '.join(where)}" if where else ""

    rows = fetch_all_dict_conn(
        conn,
        f"{_PRODUCT_SELECT} {where_sql} ORDER BY p.name ASC, p.id ASC LIMIT %s OFFSET %s",
        params + [limit, offset],
    )
    count_row = fetch_one_dict_conn(
        conn,
        f"SELECT COUNT(*)::bigint AS n FROM products p {where_sql}",
        params,
    )
    return rows, int((count_row or {}).get("n") or 0)


def get_product(conn: Any, product_id: int) -> dict[str, Any] | None:
    return fetch_one_dict_conn(conn, f"{_PRODUCT_SELECT} WHERE p.id = %s", (product_id,))


def _require_category(conn: Any, category_id: Any) -> None:
    if category_id is not None and get_category(conn, int(category_id)) is None:
        raise NotFoundError(f"category not found: {category_id}")


def create_product(conn: Any, values: Mapping[str, Any]) -> dict[str, Any]:
    _require_category(conn, values.get("category_id"))
    row = fetch_one_dict_conn(
        conn,
        """
        INSERT INTO products (category_id, name, description, base_price, picture_url, status)
        VALUES (%s, %s, %s, %s, %s, %s)
        RETURNING id
        """,
        (
            values.get("category_id"),
            values["name"],
            values.get("description"),
            values.get("base_price") or 0,
            values.get("picture_url"),
            values.get("status") or "active",
        ),
    )
    if row is None:
        raise RuntimeError("product insert returned no row")
    product = get_product(conn, int(row["id"]))
    if product is None:
        raise NotFoundError(f"product not found: {row['id']}")
    return product


def update_product(conn: Any, product_id: int, values: Mapping[str, Any]) -> dict[str, Any]:
    if "category_id" in values:
        _require_category(conn, values.get("category_id"))
    row = update_row_conn(conn, table="products", row_id=product_id, values=_pick(values, PRODUCT_COLUMNS))
    if row is None:
        raise NotFoundError(f"product not found: {product_id}")
    product = get_product(conn, product_id)
    if product is None:
        raise NotFoundError(f"product not found: {product_id}")
    return product


def delete_product(conn: Any, product_id: int) -> dict[str, Any]:
    """Hard-delete a product that is not part of any special.

    Cart rows keep their ``product_id``; snapshots render them as deleted
    placeholders.
    """
    before = get_product(conn, product_id)
    if before is None:
        raise NotFoundError(f"product not found: {product_id}")
    used = fetch_one_dict_conn(
        conn,
        "SELECT COUNT(*)::bigint AS n FROM special_items WHERE product_id = %s",
        (product_id,),
    )
    if int((used or {}).get("n") or 0):
        raise ConflictError(f"product {product_id} is part of a special; remove it from the special first")
    execute_conn(conn, "DELETE FROM products WHERE id = %s", (product_id,))
    return before


# ---------------------------
# Product <-> parameter group links
# ---------------------------

def _check_default_parameter(conn: Any, group_id: int, default_parameter_id: int | None) -> None:
    if default_parameter_id is None:
        return
    row = fetch_one_dict_conn(
        conn,
        "SELECT parameter_group_id FROM parameters WHERE id = %s",
        (default_parameter_id,),
    )
    if row is None:
        raise NotFoundError(f"parameter not found: {default_parameter_id}")
    if int(row["parameter_group_id"]) != int(group_id):
        raise ValueError(f"parameter {default_parameter_id} does not belong to parameter group {group_id}")


def attach_parameter_group(
    conn: Any,
    product_id: int,
    group_id: int,
    *,
    default_parameter_id: int | None = None,
) -> dict[str, Any]:
    """Attach a group to a product (or update the default when already attached)."""
    if get_product(conn, product_id) is None:
        raise NotFoundError(f"product not found: {product_id}")
    group = fetch_one_dict_conn(conn, "SELECT id FROM parameter_groups WHERE id = %s", (group_id,))
    if group is None:
        raise NotFoundError(f"parameter group not found: {group_id}")
    _check_default_parameter(conn, group_id, default_parameter_id)
    row = fetch_one_dict_conn(
        conn,
        """
        INSERT INTO product_parameter_groups (product_id, parameter_group_id, default_parameter_id)
        VALUES (%s, %s, %s)
        ON CONFLICT (product_id, parameter_group_id) DO UPDATE SET
          default_parameter_id = EXCLUDED.default_parameter_id
        RETURNING id, product_id, parameter_group_id, default_parameter_id
        """,
        (product_id, group_id, default_parameter_id),
    )
    if row is None:
        raise RuntimeError("product parameter group upsert returned no row")
    return row


def detach_parameter_group(conn: Any, product_id: int, group_id: int) -> None:
    removed = execute_conn(
        conn,
        "DELETE FROM product_parameter_groups WHERE product_id = %s AND parameter_group_id = %s",
        (product_id, group_id),
    )
    if not removed:
        raise NotFoundError(f"parameter group {group_id} is not attached to product {product_id}")


# ---------------------------
# Pricing view
# ---------------------------

def load_product_details(conn: Any, product_ids: Iterable[int]) -> dict[int, dict[str, Any]]:
    """Return ``{product_id: product}`` with category, groups and parameters nested.

    Missing ids are simply absent from the result. Inactive parameters are
    included (with their status) so existing selections keep their price.
    """
    ids = sorted({int(pid) for pid in product_ids})
    if not ids:
        return {}

    products = fetch_all_dict_conn(conn, f"{_PRODUCT_SELECT} WHERE p.id = ANY(%s)", (ids,))
    links = fetch_all_dict_conn(
        conn,
        """
        SELECT ppg.product_id, ppg.parameter_group_id, ppg.default_parameter_id,
               pg.name, pg.description, pg.status
        FROM product_parameter_groups ppg
        JOIN parameter_groups pg ON pg.id = ppg.parameter_group_id
        WHERE ppg.product_id = ANY(%s)
        ORDER BY ppg.product_id ASC, ppg.id ASC
        """,
        (ids,),
    )
    group_ids = sorted({int(link["parameter_group_id"]) for link in links})
    params = (
        fetch_all_dict_conn(
            conn,
            """
            SELECT id, parameter_group_id, name, description, price_modifier, picture_url, status
            FROM parameters
            WHERE parameter_group_id = ANY(%s)
            ORDER BY parameter_group_id ASC, price_modifier ASC, id ASC
            """,
            (group_ids,),
        )
        if group_ids
        else []
    )

    params_by_group: dict[int, list[dict[str, Any]]] = {}
    for param in params:
        params_by_group.setdefault(int(param["parameter_group_id"]), []).append(param)

    groups_by_product: dict[int, list[dict[str, Any]]] = {}
    for link in links:
        gid = int(link["parameter_group_id"])
        groups_by_product.setdefault(int(link["product_id"]), []).append(
            {
                "parameter_group_id": gid,
                "name": link.get("name"),
                "description": link.get("description"),
                "status": link.get("status"),
                "default_parameter_id": link.get("default_parameter_id"),
                "parameters": params_by_group.get(gid, []),
            }
        )

    details: dict[int, dict[str, Any]] = {}
    for product in products:
        pid = int(product["id"])
        item = dict(product)
        item["category"] = (
            {"id": product.get("category_id"), "name": product.get("category_name")}
            if product.get("category_id") is not None
            else None
        )
        item["parameter_groups"] = groups_by_product.get(pid, [])
        details[pid] = item
    return details
