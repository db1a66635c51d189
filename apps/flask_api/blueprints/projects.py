"""Custom design projects Blueprint.

Showcase projects are curated product lists (optionally tied to a special)
that the storefront presents as ready-made kitchen designs. Visitors can
also send a free-form custom design request, which is emailed to admins.
"""

from typing import Any

from flask import Blueprint

from apps.backend.accounts import admin_notification_emails, normalize_phone
from apps.backend.db import db_conn
from apps.backend.errors import NotFoundError
from apps.backend.history import append_history, diff_fields
from apps.backend.projects import (
    add_project_product,
    check_project_status,
    create_project,
    delete_project,
    get_project,
    list_project_products,
    list_projects,
    project_availability,
    remove_project_product,
    update_project,
)
from apps.flask_api.utils import (
    _MISSING,
    _coerce_non_negative_int,
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
from apps.flask_api.utils.auth import current_admin_id, require_admin
from infra.logging_config import StructuredLogger
from services.notifications import get_notifier

projects_bp = Blueprint("projects", __name__)

_LOG = StructuredLogger(__name__)

_PUBLISHED = "published"
_MAX_REQUEST_DESCRIPTION = 5000

_PROJECT_COERCERS = {
    "title": lambda v: _require_text({"title": v}, "title"),
    "description": _coerce_optional_text,
    "status": check_project_status,
    "cover_image_path": _coerce_optional_text,
    "special_id": lambda v: _coerce_optional_id(v, field_name="special_id"),
    "display_order": lambda v: _coerce_non_negative_int(v, field_name="display_order"),
}


def _history(conn: Any, project_id: int, action: str, changes: Any) -> None:
    append_history(
        conn,
        entity_type="project",
        entity_id=project_id,
        action=action,
        changes=changes,
        admin_id=current_admin_id(),
    )


# ---------------------------
# Public
# ---------------------------

@projects_bp.route("/api/projects", methods=["GET"])
def api_list_projects() -> Any:
    """Published projects, each with its product list and availability."""
    with db_conn() as conn:
        items = []
        for project in list_projects(conn, published_only=True):
            full = {**project, "products": list_project_products(conn, int(project["id"]))}
            full["availability"] = project_availability(conn, full)
            items.append(full)
    return _ok({"items": items})


@projects_bp.route("/api/projects/<int:project_id>", methods=["GET"])
def api_get_project(project_id: int) -> Any:
    """A published project with its products and availability report.

    Returns:
      ``project.availability``: ``{available, unavailable_products,
      special_available}``
    """
    with db_conn() as conn:
        project = get_project(conn, project_id)
        if project is None or project.get("status") != _PUBLISHED:
            raise NotFoundError(f"project not found: {project_id}")
        project["availability"] = project_availability(conn, project)
    return _ok({"project": project})


@projects_bp.route("/api/custom-design/requests", methods=["POST"])
def api_custom_design_request() -> Any:
    """Forward a custom design request to the admins by email.

    JSON body:
      phone (required), description
    """
    try:
        payload = _json_body()
        phone = normalize_phone(payload.get("phone"))
        description = _coerce_optional_text(payload.get("description"))
        if description and len(description) > _MAX_REQUEST_DESCRIPTION:
            raise ValueError(f"description must be at most {_MAX_REQUEST_DESCRIPTION} characters")
        with db_conn() as conn:
            recipients = admin_notification_emails(conn)
        sent = get_notifier().notify_custom_design_request(phone, description, recipients)
        _LOG.info("custom_design_request", phone=phone, sent=sent)
        return _ok({"sent": sent}, status=201)
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)


# ---------------------------
# Admin
# ---------------------------

@projects_bp.route("/api/admin/projects", methods=["GET"])
@require_admin
def api_admin_list_projects() -> Any:
    with db_conn() as conn:
        items = list_projects(conn, published_only=False)
    return _ok({"items": items})


@projects_bp.route("/api/admin/projects/<int:project_id>", methods=["GET"])
@require_admin
def api_admin_get_project(project_id: int) -> Any:
    with db_conn() as conn:
        project = get_project(conn, project_id)
        if project is None:
            raise NotFoundError(f"project not found: {project_id}")
        project["availability"] = project_availability(conn, project)
    return _ok({"project": project})


@projects_bp.route("/api/admin/projects", methods=["POST"])
@require_admin
def api_create_project() -> Any:
    """Create a project.

    JSON body:
      title (required), description, status (draft|published),
      cover_image_path, special_id, display_order
    """
    try:
        values = _payload_fields(_json_body(), _PROJECT_COERCERS, required=("title",))
        with db_conn() as conn:
            project = create_project(conn, values)
            _history(conn, int(project["id"]), "created", diff_fields(None, values))
            conn.commit()
        return _ok({"project": project}, status=201)
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)


@projects_bp.route("/api/admin/projects/<int:project_id>", methods=["PUT"])
@require_admin
def api_update_project(project_id: int) -> Any:
    try:
        values = _payload_fields(_json_body(), _PROJECT_COERCERS)
        if not values:
            raise ValueError("No fields to update")
        with db_conn() as conn:
            before = get_project(conn, project_id)
            project = update_project(conn, project_id, values)
            before_cols = {k: (before or {}).get(k) for k in values}
            _history(conn, project_id, "updated", diff_fields(before_cols, {k: project.get(k) for k in values}))
            conn.commit()
        return _ok({"project": project})
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)


@projects_bp.route("/api/admin/projects/<int:project_id>", methods=["DELETE"])
@require_admin
def api_delete_project(project_id: int) -> Any:
    with db_conn() as conn:
        before = delete_project(conn, project_id)
        _history(conn, project_id, "deleted", {"title": before.get("title")})
        conn.commit()
    return _ok({"deleted": project_id})


@projects_bp.route("/api/admin/projects/<int:project_id>/products", methods=["POST"])
@require_admin
def api_add_project_product(project_id: int) -> Any:
    """Add a product to a project; 400 when it is already listed.

    JSON body:
      product_id (required), quantity (default 1), selected_parameters,
      display_order (default: end of list)
    """
    try:
        payload = _json_body()
        product_id = _coerce_optional_id(payload.get("product_id"), field_name="product_id")
        if product_id is None:
            raise ValueError("product_id is required")
        quantity = _payload_value(payload, "quantity", lambda v: _coerce_positive_int(v, field_name="quantity"))
        order = _payload_value(
            payload, "display_order", lambda v: _coerce_non_negative_int(v, field_name="display_order")
        )
        with db_conn() as conn:
            row = add_project_product(
                conn,
                project_id,
                product_id=product_id,
                quantity=1 if quantity is _MISSING else quantity,
                selected_parameters=_payload_selection(payload),
                display_order=None if order is _MISSING else order,
            )
            _history(conn, project_id, "product_added", {"product_id": product_id})
            conn.commit()
        return _ok({"item": row}, status=201)
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)


@projects_bp.route("/api/admin/projects/<int:project_id>/products/<int:product_id>", methods=["DELETE"])
@require_admin
def api_remove_project_product(project_id: int, product_id: int) -> Any:
    with db_conn() as conn:
        remove_project_product(conn, project_id, product_id)
        _history(conn, project_id, "product_removed", {"product_id": product_id})
        conn.commit()
    return _ok({"removed": product_id})
