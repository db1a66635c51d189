"""Custom design showcase projects and the products each one uses."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Optional

from apps.backend.catalog import load_product_details
from apps.backend.db import (
    execute_conn,
    fetch_all_dict_conn,
    fetch_one_dict_conn,
    to_jsonb,
    update_row_conn,
)
from apps.backend.errors import NotFoundError
from services.pricing import ACTIVE_STATUS, SPECIAL_AVAILABLE, parse_selection, selection_to_json, validate_selection

PROJECT_STATUSES = ("draft", "published")
PROJECT_COLUMNS = ("title", "description", "status", "cover_image_path", "special_id", "display_order")

_PROJECT_SELECT = """
    SELECT id, title, description, status, cover_image_path, special_id, display_order,
           created_at, updated_at
    FROM custom_projects
"""


def check_project_status(value: Any) -> str:
    status = str(value or "").strip().lower()
    if status not in PROJECT_STATUSES:
        raise ValueError(f"status must be one of: {', '.join(PROJECT_STATUSES)}")
    return status


def list_projects(conn: Any, *, published_only: bool = True) -> list[dict[str, Any]]:
    where = "WHERE status = 'published'" if published_only else ""
    return fetch_all_dict_conn(
        conn,
        f"{_PROJECT_SELECT} {where} ORDER BY display_order ASC, created_at DESC, id DESC",
    )


def get_project(conn: Any, project_id: int) -> Optional[dict[str, Any]]:
    project = fetch_one_dict_conn(conn, f"{_PROJECT_SELECT} WHERE id = %s", (project_id,))
    if project is None:
        return None
    return {**project, "products": list_project_products(conn, project_id)}


def _require_special(conn: Any, special_id: Any) -> None:
    if special_id is None:
        return
    if fetch_one_dict_conn(conn, "SELECT id FROM specials WHERE id = %s", (int(special_id),)) is None:
        raise NotFoundError(f"special not found: {special_id}")


def create_project(conn: Any, values: Mapping[str, Any]) -> dict[str, Any]:
    _require_special(conn, values.get("special_id"))
    row = fetch_one_dict_conn(
        conn,
        """
        INSERT INTO custom_projects (title, description, status, cover_image_path, special_id, display_order)
        VALUES (%s, %s, %s, %s, %s, %s)
        RETURNING id
        """,
        (
            values["title"],
            values.get("description"),
            values.get("status") or "draft",
            values.get("cover_image_path"),
            values.get("special_id"),
            int(values.get("display_order") or 0),
        ),
    )
    if row is None:
        raise RuntimeError("project insert returned no row")
    created = get_project(conn, int(row["id"]))
    if created is None:
        raise NotFoundError(f"project not found: {row['id']}")
    return created


def update_project(conn: Any, project_id: int, values: Mapping[str, Any]) -> dict[str, Any]:
    if "special_id" in values:
        _require_special(conn, values.get("special_id"))
    fields = {k: values[k] for k in PROJECT_COLUMNS if k in values}
    if update_row_conn(conn, table="custom_projects", row_id=project_id, values=fields) is None:
        raise NotFoundError(f"project not found: {project_id}")
    project = get_project(conn, project_id)
    if project is None:
        raise NotFoundError(f"project not found: {project_id}")
    return project


def delete_project(conn: Any, project_id: int) -> dict[str, Any]:
    before = get_project(conn, project_id)
    if before is None:
        raise NotFoundError(f"project not found: {project_id}")
    execute_conn(conn, "DELETE FROM custom_projects WHERE id = %s", (project_id,))
    return before


def list_project_products(conn: Any, project_id: int) -> list[dict[str, Any]]:
    return fetch_all_dict_conn(
        conn,
        """
        SELECT pp.id, pp.project_id, pp.product_id, pp.quantity, pp.selected_parameters, pp.display_order,
               p.name AS product_name, p.status AS product_status, p.base_price
        FROM project_products pp
        LEFT JOIN products p ON p.id = pp.product_id
        WHERE pp.project_id = %s
        ORDER BY pp.display_order ASC, pp.id ASC
        """,
        (project_id,),
    )


def add_project_product(
    conn: Any,
    project_id: int,
    *,
    product_id: int,
    quantity: int = 1,
    selected_parameters: Any = None,
    display_order: Optional[int] = None,
) -> dict[str, Any]:
    if fetch_one_dict_conn(conn, "SELECT id FROM custom_projects WHERE id = %s", (project_id,)) is None:
        raise NotFoundError(f"project not found: {project_id}")
    product = load_product_details(conn, [product_id]).get(product_id)
    if product is None:
        raise NotFoundError(f"product not found: {product_id}")
    existing = fetch_one_dict_conn(
        conn,
        "SELECT id FROM project_products WHERE project_id = %s AND product_id = %s",
        (project_id, product_id),
    )
    if existing is not None:
        raise ValueError("Product already in project")
    selection = validate_selection(product, parse_selection(selected_parameters))
    if display_order is None:
        top = fetch_one_dict_conn(
            conn,
            "SELECT COALESCE(MAX(display_order), -1) + 1 AS next_order FROM project_products WHERE project_id = %s",
            (project_id,),
        )
        display_order = int((top or {}).get("next_order") or 0)
    row = fetch_one_dict_conn(
        conn,
        """
        INSERT INTO project_products (project_id, product_id, quantity, selected_parameters, display_order)
        VALUES (%s, %s, %s, %s::jsonb, %s)
        RETURNING id, project_id, product_id, quantity, selected_parameters, display_order
        """,
        (project_id, product_id, quantity, to_jsonb(selection_to_json(selection)), display_order),
    )
    if row is None:
        raise RuntimeError("project product insert returned no row")
    execute_conn(conn, "UPDATE custom_projects SET updated_at = now() WHERE id = %s", (project_id,))
    return row


def remove_project_product(conn: Any, project_id: int, product_id: int) -> None:
    removed = execute_conn(
        conn,
        "DELETE FROM project_products WHERE project_id = %s AND product_id = %s",
        (project_id, product_id),
    )
    if not removed:
        raise NotFoundError(f"product {product_id} is not part of project {project_id}")
    execute_conn(conn, "UPDATE custom_projects SET updated_at = now() WHERE id = %s", (project_id,))


def project_availability(conn: Any, project: Mapping[str, Any]) -> dict[str, Any]:
    """Report which of the project's products can still be bought.

    ``available`` is true only when every product exists and is active and
    the linked special (if any) is available.
    """
    unavailable: list[dict[str, Any]] = []
    for item in project.get("products") or []:
        status = item.get("product_status")
        if status is None:
            unavailable.append({"product_id": item["product_id"], "name": None, "reason": "missing"})
        elif status != ACTIVE_STATUS:
            unavailable.append({"product_id": item["product_id"], "name": item.get("product_name"), "reason": status})

    special_available: Optional[bool] = None
    if project.get("special_id") is not None:
        special = fetch_one_dict_conn(
            conn,
            "SELECT status FROM specials WHERE id = %s",
            (int(project["special_id"]),),
        )
        special_available = special is not None and special.get("status") == SPECIAL_AVAILABLE

    return {
        "available": not unavailable and special_available is not False,
        "unavailable_products": unavailable,
        "special_available": special_available,
    }
