"""Categories Blueprint.

Public category listing plus admin create/update/delete with history.
"""

from typing import Any

from flask import Blueprint

from apps.backend.catalog import (
    check_status,
    create_category,
    delete_category,
    get_category,
    list_categories,
    update_category,
)
from apps.backend.db import db_conn
from apps.backend.errors import NotFoundError
from apps.backend.history import append_history, diff_fields
from apps.flask_api.utils import (
    _coerce_optional_text,
    _err,
    _json_body,
    _ok,
    _parse_bool,
    _payload_fields,
    _q,
    _require_text,
)
from apps.flask_api.utils.auth import current_admin, current_admin_id, require_admin

categories_bp = Blueprint("categories", __name__)

_CATEGORY_COERCERS = {
    "name": lambda v: _require_text({"name": v}, "name"),
    "description": _coerce_optional_text,
    "picture_url": _coerce_optional_text,
    "status": check_status,
}


@categories_bp.route("/api/categories", methods=["GET"])
def api_list_categories() -> Any:
    """List categories with their active product counts.

    Query params:
      include_inactive: admins only; ignored for everyone else
    """
    try:
        include_inactive = _parse_bool(_q("include_inactive")) and current_admin() is not None
        with db_conn() as conn:
            items = list_categories(conn, include_inactive=include_inactive)
        return _ok({"items": items})
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)


@categories_bp.route("/api/categories/<int:category_id>", methods=["GET"])
def api_get_category(category_id: int) -> Any:
    with db_conn() as conn:
        category = get_category(conn, category_id)
    if category is None:
        raise NotFoundError(f"category not found: {category_id}")
    if category.get("status") != "active" and current_admin() is None:
        raise NotFoundError(f"category not found: {category_id}")
    return _ok({"category": category})


@categories_bp.route("/api/categories", methods=["POST"])
@require_admin
def api_create_category() -> Any:
    """Create a category.

    JSON body:
      name (required), description, picture_url, status (default active)
    """
    try:
        values = _payload_fields(_json_body(), _CATEGORY_COERCERS, required=("name",))
        with db_conn() as conn:
            category = create_category(conn, values)
            append_history(
                conn,
                entity_type="category",
                entity_id=int(category["id"]),
                action="created",
                changes=diff_fields(None, values),
                admin_id=current_admin_id(),
            )
            conn.commit()
        return _ok({"category": category}, status=201)
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)


@categories_bp.route("/api/categories/<int:category_id>", methods=["PUT"])
@require_admin
def api_update_category(category_id: int) -> Any:
    try:
        values = _payload_fields(_json_body(), _CATEGORY_COERCERS)
        if not values:
            raise ValueError("No fields to update")
        with db_conn() as conn:
            before = get_category(conn, category_id)
            category = update_category(conn, category_id, values)
            append_history(
                conn,
                entity_type="category",
                entity_id=category_id,
                action="updated",
                changes=diff_fields(before, category),
                admin_id=current_admin_id(),
            )
            conn.commit()
        return _ok({"category": category})
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)


@categories_bp.route("/api/categories/<int:category_id>", methods=["DELETE"])
@require_admin
def api_delete_category(category_id: int) -> Any:
    """Delete a category; 409 while products still reference it."""
    with db_conn() as conn:
        before = delete_category(conn, category_id)
        append_history(
            conn,
            entity_type="category",
            entity_id=category_id,
            action="deleted",
            changes=diff_fields(before, None),
            admin_id=current_admin_id(),
        )
        conn.commit()
    return _ok({"deleted": category_id})
