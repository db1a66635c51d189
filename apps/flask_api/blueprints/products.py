"""Products Blueprint.

Public product browsing (active products only) and admin product CRUD,
including which parameter groups a product offers and their defaults.
"""

from typing import Any

from flask import Blueprint

from apps.backend.catalog import (
    attach_parameter_group,
    check_status,
    create_product,
    delete_product,
    detach_parameter_group,
    get_product,
    list_products,
    load_product_details,
    update_product,
)
from apps.backend.db import db_conn
from apps.backend.errors import NotFoundError
from apps.backend.history import append_history, diff_fields
from apps.backend.images import list_product_images
from apps.flask_api.utils import (
    _coerce_money,
    _coerce_optional_id,
    _coerce_optional_text,
    _err,
    _json_body,
    _ok,
    _parse_bool,
    _parse_int,
    _payload_fields,
    _q,
    _require_text,
)
from apps.flask_api.utils.auth import current_admin, current_admin_id, require_admin
from infra.config import get_settings
from services.pricing import ACTIVE_STATUS
from services.snapshot import product_image_url

products_bp = Blueprint("products", __name__)

_PRODUCT_COERCERS = {
    "category_id": lambda v: _coerce_optional_id(v, field_name="category_id"),
    "name": lambda v: _require_text({"name": v}, "name"),
    "description": _coerce_optional_text,
    "base_price": lambda v: _coerce_money(v, field_name="base_price"),
    "picture_url": _coerce_optional_text,
    "status": check_status,
}


def _with_image_url(product: dict[str, Any]) -> dict[str, Any]:
    return {**product, "image_url": product_image_url(product.get("primary_image_id"))}


def _visible(product: dict[str, Any] | None) -> bool:
    if product is None:
        return False
    return product.get("status") == ACTIVE_STATUS or current_admin() is not None


@products_bp.route("/api/products", methods=["GET"])
def api_list_products() -> Any:
    """List products.

    Query params:
      category_id: optional filter
      q: optional name/description search
      limit: page size (default 50, max API_MAX_PAGE_SIZE)
      offset: page start (default 0)
      include_inactive: admins only
    """
    try:
        max_page = int(get_settings().api.max_page_size)
        category_id = _coerce_optional_id(_q("category_id"), field_name="category_id")
        limit = _parse_int(_q("limit"), default=min(50, max_page), min_v=1, max_v=max_page)
        offset = _parse_int(_q("offset"), default=0, min_v=0, max_v=10_000_000)
        include_inactive = _parse_bool(_q("include_inactive")) and current_admin() is not None
        with db_conn() as conn:
            rows, total = list_products(
                conn,
                category_id=category_id,
                include_inactive=include_inactive,
                query=_q("q"),
                limit=limit,
                offset=offset,
            )
        return _ok(
            {
                "items": [_with_image_url(r) for r in rows],
                "total": total,
                "limit": limit,
                "offset": offset,
            }
        )
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)


@products_bp.route("/api/products/<int:product_id>", methods=["GET"])
def api_get_product(product_id: int) -> Any:
    """Product with category, parameter groups (with parameters) and images."""
    with db_conn() as conn:
        product = load_product_details(conn, [product_id]).get(product_id)
        if product is None or not _visible(product):
            raise NotFoundError(f"product not found: {product_id}")
        images = list_product_images(conn, product_id)
    detail = _with_image_url(product)
    detail["images"] = [{**img, "url": product_image_url(img["id"])} for img in images]
    return _ok({"product": detail})


@products_bp.route("/api/products", methods=["POST"])
@require_admin
def api_create_product() -> Any:
    """Create a product.

    JSON body:
      name (required), base_price (required), category_id, description,
      picture_url, status (default active)
    """
    try:
        values = _payload_fields(_json_body(), _PRODUCT_COERCERS, required=("name", "base_price"))
        with db_conn() as conn:
            product = create_product(conn, values)
            append_history(
                conn,
                entity_type="product",
                entity_id=int(product["id"]),
                action="created",
                changes=diff_fields(None, values),
                admin_id=current_admin_id(),
            )
            conn.commit()
        return _ok({"product": product}, status=201)
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)


@products_bp.route("/api/products/<int:product_id>", methods=["PUT"])
@require_admin
def api_update_product(product_id: int) -> Any:
    try:
        values = _payload_fields(_json_body(), _PRODUCT_COERCERS)
        if not values:
            raise ValueError("No fields to update")
        with db_conn() as conn:
            before = get_product(conn, product_id)
            product = update_product(conn, product_id, values)
            append_history(
                conn,
                entity_type="product",
                entity_id=product_id,
                action="updated",
                changes=diff_fields(before, product),
                admin_id=current_admin_id(),
            )
            conn.commit()
        return _ok({"product": product})
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)


@products_bp.route("/api/products/<int:product_id>", methods=["DELETE"])
@require_admin
def api_delete_product(product_id: int) -> Any:
    """Delete a product; 409 while a special still includes it."""
    with db_conn() as conn:
        before = delete_product(conn, product_id)
        append_history(
            conn,
            entity_type="product",
            entity_id=product_id,
            action="deleted",
            changes={"name": before.get("name")},
            admin_id=current_admin_id(),
        )
        conn.commit()
    return _ok({"deleted": product_id})


@products_bp.route("/api/products/<int:product_id>/parameter-groups", methods=["GET"])
def api_product_parameter_groups(product_id: int) -> Any:
    with db_conn() as conn:
        product = load_product_details(conn, [product_id]).get(product_id)
    if product is None or not _visible(product):
        raise NotFoundError(f"product not found: {product_id}")
    return _ok({"items": product["parameter_groups"]})


@products_bp.route("/api/products/<int:product_id>/parameter-groups", methods=["POST"])
@require_admin
def api_attach_parameter_group(product_id: int) -> Any:
    """Attach a parameter group to a product.

    JSON body:
      parameter_group_id (required), default_parameter_id
    """
    try:
        payload = _json_body()
        group_id = _coerce_optional_id(payload.get("parameter_group_id"), field_name="parameter_group_id")
        if group_id is None:
            raise ValueError("parameter_group_id is required")
        default_id = _coerce_optional_id(payload.get("default_parameter_id"), field_name="default_parameter_id")
        with db_conn() as conn:
            link = attach_parameter_group(conn, product_id, group_id, default_parameter_id=default_id)
            append_history(
                conn,
                entity_type="product",
                entity_id=product_id,
                action="parameter_group_attached",
                changes={"parameter_group_id": group_id, "default_parameter_id": default_id},
                admin_id=current_admin_id(),
            )
            conn.commit()
        return _ok({"link": link}, status=201)
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)


@products_bp.route("/api/products/<int:product_id>/parameter-groups/<int:group_id>", methods=["PUT"])
@require_admin
def api_update_parameter_group_link(product_id: int, group_id: int) -> Any:
    """Change the default parameter of an attached group.

    JSON body:
      default_parameter_id (null clears the default)
    """
    try:
        payload = _json_body()
        default_id = _coerce_optional_id(payload.get("default_parameter_id"), field_name="default_parameter_id")
        with db_conn() as conn:
            link = attach_parameter_group(conn, product_id, group_id, default_parameter_id=default_id)
            append_history(
                conn,
                entity_type="product",
                entity_id=product_id,
                action="parameter_group_updated",
                changes={"parameter_group_id": group_id, "default_parameter_id": default_id},
                admin_id=current_admin_id(),
            )
            conn.commit()
        return _ok({"link": link})
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)


@products_bp.route("/api/products/<int:product_id>/parameter-groups/<int:group_id>", methods=["DELETE"])
@require_admin
def api_detach_parameter_group(product_id: int, group_id: int) -> Any:
    with db_conn() as conn:
        detach_parameter_group(conn, product_id, group_id)
        append_history(
            conn,
            entity_type="product",
            entity_id=product_id,
            action="parameter_group_detached",
            changes={"parameter_group_id": group_id},
            admin_id=current_admin_id(),
        )
        conn.commit()
    return _ok({"detached": group_id})
