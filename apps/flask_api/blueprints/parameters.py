"""Parameter groups and parameters Blueprint."""

from typing import Any

from flask import Blueprint

from apps.backend.catalog import check_status
from apps.backend.db import db_conn
from apps.backend.errors import NotFoundError
from apps.backend.history import append_history, diff_fields
from apps.backend.parameters import (
    clone_parameter_group,
    create_parameter,
    create_parameter_group,
    delete_parameter,
    delete_parameter_group,
    get_parameter,
    get_parameter_group,
    list_group_products,
    list_parameter_groups,
    list_parameters,
    update_parameter,
    update_parameter_group,
)
from apps.flask_api.utils import (
    _coerce_optional_id,
    _coerce_optional_text,
    _coerce_signed_money,
    _err,
    _json_body,
    _ok,
    _parse_bool,
    _payload_fields,
    _q,
    _require_text,
)
from apps.flask_api.utils.auth import current_admin, current_admin_id, require_admin

parameters_bp = Blueprint("parameters", __name__)

_GROUP_COERCERS = {
    "name": lambda v: _require_text({"name": v}, "name"),
    "description": _coerce_optional_text,
    "status": check_status,
}

_PARAMETER_COERCERS = {
    "parameter_group_id": lambda v: _coerce_optional_id(v, field_name="parameter_group_id"),
    "name": lambda v: _require_text({"name": v}, "name"),
    "description": _coerce_optional_text,
    "price_modifier": lambda v: _coerce_signed_money(v, field_name="price_modifier"),
    "picture_url": _coerce_optional_text,
    "status": check_status,
}


def _include_inactive() -> bool:
    return _parse_bool(_q("include_inactive")) and current_admin() is not None


# ---------------------------
# Groups
# ---------------------------

@parameters_bp.route("/api/parameter-groups", methods=["GET"])
def api_list_parameter_groups() -> Any:
    """List parameter groups with their parameters nested."""
    try:
        include_inactive = _include_inactive()
        with db_conn() as conn:
            items = list_parameter_groups(conn, include_inactive=include_inactive)
        return _ok({"items": items})
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)


@parameters_bp.route("/api/parameter-groups/<int:group_id>", methods=["GET"])
def api_get_parameter_group(group_id: int) -> Any:
    try:
        include_inactive = _include_inactive()
        with db_conn() as conn:
            group = get_parameter_group(conn, group_id, include_inactive=include_inactive)
        if group is None or (group.get("status") != "active" and current_admin() is None):
            raise NotFoundError(f"parameter group not found: {group_id}")
        return _ok({"group": group})
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)


@parameters_bp.route("/api/parameter-groups", methods=["POST"])
@require_admin
def api_create_parameter_group() -> Any:
    """Create a parameter group.

    JSON body:
      name (required), description, status
    """
    try:
        values = _payload_fields(_json_body(), _GROUP_COERCERS, required=("name",))
        with db_conn() as conn:
            group = create_parameter_group(conn, values)
            append_history(
                conn,
                entity_type="parameter_group",
                entity_id=int(group["id"]),
                action="created",
                changes=diff_fields(None, values),
                admin_id=current_admin_id(),
            )
            conn.commit()
        return _ok({"group": group}, status=201)
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)


@parameters_bp.route("/api/parameter-groups/<int:group_id>", methods=["PUT"])
@require_admin
def api_update_parameter_group(group_id: int) -> Any:
    try:
        values = _payload_fields(_json_body(), _GROUP_COERCERS)
        if not values:
            raise ValueError("No fields to update")
        with db_conn() as conn:
            before = get_parameter_group(conn, group_id)
            group = update_parameter_group(conn, group_id, values)
            before_cols = {k: (before or {}).get(k) for k in values}
            after_cols = {k: group.get(k) for k in values}
            append_history(
                conn,
                entity_type="parameter_group",
                entity_id=group_id,
                action="updated",
                changes=diff_fields(before_cols, after_cols),
                admin_id=current_admin_id(),
            )
            conn.commit()
        return _ok({"group": group})
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)


@parameters_bp.route("/api/parameter-groups/<int:group_id>", methods=["DELETE"])
@require_admin
def api_delete_parameter_group(group_id: int) -> Any:
    """Delete a group together with its parameters and product links."""
    with db_conn() as conn:
        before = delete_parameter_group(conn, group_id)
        append_history(
            conn,
            entity_type="parameter_group",
            entity_id=group_id,
            action="deleted",
            changes={"name": before.get("name"), "parameters": len(before.get("parameters") or [])},
            admin_id=current_admin_id(),
        )
        conn.commit()
    return _ok({"deleted": group_id})


@parameters_bp.route("/api/parameter-groups/<int:group_id>/clone", methods=["POST"])
@require_admin
def api_clone_parameter_group(group_id: int) -> Any:
    """Copy a group and all its parameters.

    JSON body:
      name: name of the copy (default "<source name> (copy)")
    """
    try:
        payload = _json_body()
        with db_conn() as conn:
            source = get_parameter_group(conn, group_id)
            if source is None:
                raise NotFoundError(f"parameter group not found: {group_id}")
            new_name = _coerce_optional_text(payload.get("name")) or f"{source['name']} (copy)"
            clone = clone_parameter_group(conn, group_id, new_name=new_name)
            append_history(
                conn,
                entity_type="parameter_group",
                entity_id=int(clone["id"]),
                action="cloned",
                changes={"source_id": group_id, "name": new_name},
                admin_id=current_admin_id(),
            )
            conn.commit()
        return _ok({"group": clone}, status=201)
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)


@parameters_bp.route("/api/parameter-groups/<int:group_id>/products", methods=["GET"])
@require_admin
def api_parameter_group_products(group_id: int) -> Any:
    with db_conn() as conn:
        if get_parameter_group(conn, group_id, include_inactive=False) is None:
            raise NotFoundError(f"parameter group not found: {group_id}")
        items = list_group_products(conn, group_id)
    return _ok({"items": items})


# ---------------------------
# Parameters
# ---------------------------

@parameters_bp.route("/api/parameters", methods=["GET"])
def api_list_parameters() -> Any:
    """List parameters.

    Query params:
      parameter_group_id: optional filter
      include_inactive: admins only
    """
    try:
        group_id = _coerce_optional_id(_q("parameter_group_id"), field_name="parameter_group_id")
        include_inactive = _include_inactive()
        with db_conn() as conn:
            items = list_parameters(conn, group_id=group_id, include_inactive=include_inactive)
        return _ok({"items": items})
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)


@parameters_bp.route("/api/parameters/<int:parameter_id>", methods=["GET"])
def api_get_parameter(parameter_id: int) -> Any:
    with db_conn() as conn:
        row = get_parameter(conn, parameter_id)
    if row is None or (row.get("status") != "active" and current_admin() is None):
        raise NotFoundError(f"parameter not found: {parameter_id}")
    return _ok({"parameter": row})


@parameters_bp.route("/api/parameters", methods=["POST"])
@require_admin
def api_create_parameter() -> Any:
    """Create a parameter inside a group.

    JSON body:
      parameter_group_id (required), name (required), price_modifier
      (may be negative), description, picture_url, status
    """
    try:
        values = _payload_fields(
            _json_body(), _PARAMETER_COERCERS, required=("parameter_group_id", "name")
        )
        with db_conn() as conn:
            row = create_parameter(conn, values)
            append_history(
                conn,
                entity_type="parameter",
                entity_id=int(row["id"]),
                action="created",
                changes=diff_fields(None, values),
                admin_id=current_admin_id(),
            )
            conn.commit()
        return _ok({"parameter": row}, status=201)
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)


@parameters_bp.route("/api/parameters/<int:parameter_id>", methods=["PUT"])
@require_admin
def api_update_parameter(parameter_id: int) -> Any:
    try:
        values = _payload_fields(_json_body(), _PARAMETER_COERCERS)
        values.pop("parameter_group_id", None)
        if not values:
            raise ValueError("No fields to update")
        with db_conn() as conn:
            before = get_parameter(conn, parameter_id)
            row = update_parameter(conn, parameter_id, values)
            append_history(
                conn,
                entity_type="parameter",
                entity_id=parameter_id,
                action="updated",
                changes=diff_fields(before, row),
                admin_id=current_admin_id(),
            )
            conn.commit()
        return _ok({"parameter": row})
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)


@parameters_bp.route("/api/parameters/<int:parameter_id>", methods=["DELETE"])
@require_admin
def api_delete_parameter(parameter_id: int) -> Any:
    with db_conn() as conn:
        before = delete_parameter(conn, parameter_id)
        append_history(
            conn,
            entity_type="parameter",
            entity_id=parameter_id,
            action="deleted",
            changes={"name": before.get("name"), "parameter_group_id": before.get("parameter_group_id")},
            admin_id=current_admin_id(),
        )
        conn.commit()
    return _ok({"deleted": parameter_id})
