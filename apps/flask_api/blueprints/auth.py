"""Auth Blueprint.

Customer registration and session login, admin login, and admin account
management.
"""

from typing import Any

from flask import Blueprint, g

from apps.backend.accounts import (
    authenticate_admin,
    authenticate_user,
    change_password,
    create_admin,
    delete_admin,
    get_admin,
    get_user,
    list_admins,
    normalize_phone,
    phone_available,
    register_user,
    set_admin_password,
    update_profile,
)
from apps.backend.carts import get_or_create_cart
from apps.backend.db import db_conn
from apps.backend.history import append_history
from apps.flask_api.utils import (
    _coerce_optional_text,
    _err,
    _json_body,
    _ok,
    _payload_fields,
    _q,
    _require_text,
)
from apps.flask_api.utils.auth import (
    current_admin,
    current_admin_id,
    current_user_id,
    guest_session_id,
    login_admin,
    login_user,
    logout_admin,
    logout_user,
    require_admin,
    require_user,
)
from infra.logging_config import StructuredLogger

auth_bp = Blueprint("auth", __name__)

_LOG = StructuredLogger(__name__)

_PROFILE_COERCERS = {
    "name": _coerce_optional_text,
    "address": _coerce_optional_text,
    "secondary_phone": _coerce_optional_text,
}


# ---------------------------
# Customers
# ---------------------------

@auth_bp.route("/api/auth/register", methods=["POST"])
def api_register() -> Any:
    """Create a customer account and log it in.

    JSON body:
      phone (required), password (required), name, address, secondary_phone

    Returns:
      201 with ``user``; 409 when the phone number is taken.
    """
    try:
        payload = _json_body()
        guest = guest_session_id(create=False)
        with db_conn() as conn:
            user = register_user(
                conn,
                phone=payload.get("phone"),
                password=payload.get("password"),
                name=_coerce_optional_text(payload.get("name")),
                address=_coerce_optional_text(payload.get("address")),
                secondary_phone=_coerce_optional_text(payload.get("secondary_phone")),
            )
            if guest:
                get_or_create_cart(conn, user_id=int(user["id"]), session_id=guest)
            conn.commit()
        login_user(int(user["id"]))
        _LOG.info("user_registered", user_id=user["id"])
        return _ok({"user": user}, status=201)
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)


@auth_bp.route("/api/auth/login", methods=["POST"])
def api_login() -> Any:
    """Log a customer in by phone and password.

    A guest cart started before login is attached to the account when the
    account has no active cart yet.

    JSON body:
      phone (required), password (required)
    """
    try:
        payload = _json_body()
        guest = guest_session_id(create=False)
        with db_conn() as conn:
            user = authenticate_user(conn, phone=payload.get("phone"), password=payload.get("password"))
            if guest:
                get_or_create_cart(conn, user_id=int(user["id"]), session_id=guest)
            conn.commit()
        login_user(int(user["id"]))
        return _ok({"user": user})
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)


@auth_bp.route("/api/auth/logout", methods=["POST"])
def api_logout() -> Any:
    logout_user()
    return _ok()


@auth_bp.route("/api/auth/me", methods=["GET"])
def api_me() -> Any:
    """Current customer, or ``user: null`` for guests."""
    user_id = current_user_id()
    if user_id is None:
        return _ok({"user": None})
    with db_conn() as conn:
        user = get_user(conn, user_id)
    if user is None:
        logout_user()
    return _ok({"user": user})


@auth_bp.route("/api/auth/profile", methods=["PUT"])
@require_user
def api_update_profile() -> Any:
    """Update name, address and secondary phone of the logged-in customer."""
    try:
        values = _payload_fields(_json_body(), _PROFILE_COERCERS)
        if not values:
            raise ValueError("No profile fields to update")
        with db_conn() as conn:
            user = update_profile(conn, g.user_id, values)
            conn.commit()
        return _ok({"user": user})
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)


@auth_bp.route("/api/auth/password", methods=["PUT"])
@require_user
def api_change_password() -> Any:
    """Change password.

    JSON body:
      current_password (required), new_password (required)
    """
    try:
        payload = _json_body()
        with db_conn() as conn:
            change_password(
                conn,
                g.user_id,
                current_password=payload.get("current_password"),
                new_password=payload.get("new_password"),
            )
            conn.commit()
        return _ok()
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)


@auth_bp.route("/api/auth/check-phone", methods=["GET"])
def api_check_phone() -> Any:
    """Whether a phone number is valid and not yet registered.

    Query params:
      phone (required)
    """
    try:
        phone = normalize_phone(_q("phone"))
        with db_conn() as conn:
            available = phone_available(conn, phone)
        return _ok({"phone": phone, "available": available})
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)


# ---------------------------
# Admins
# ---------------------------

@auth_bp.route("/api/auth/admin/login", methods=["POST"])
def api_admin_login() -> Any:
    """Admin session login.

    JSON body:
      username (required), password (required)
    """
    try:
        payload = _json_body()
        with db_conn() as conn:
            admin = authenticate_admin(
                conn,
                username=_require_text(payload, "username"),
                password=payload.get("password"),
            )
        login_admin(admin)
        _LOG.info("admin_login", admin_id=admin["id"])
        return _ok({"admin": admin})
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)


@auth_bp.route("/api/auth/admin/logout", methods=["POST"])
def api_admin_logout() -> Any:
    logout_admin()
    return _ok()


@auth_bp.route("/api/auth/admin/me", methods=["GET"])
def api_admin_me() -> Any:
    admin = current_admin()
    if admin is None:
        return _ok({"admin": None})
    if admin.get("id") is None:
        return _ok({"admin": admin})
    with db_conn() as conn:
        row = get_admin(conn, int(admin["id"]))
    if row is None:
        logout_admin()
    return _ok({"admin": row})


@auth_bp.route("/api/admins", methods=["GET"])
@require_admin
def api_list_admins() -> Any:
    with db_conn() as conn:
        items = list_admins(conn)
    return _ok({"items": items})


@auth_bp.route("/api/admins", methods=["POST"])
@require_admin
def api_create_admin() -> Any:
    """Create an admin account.

    JSON body:
      username (required), password (required), email
    """
    try:
        payload = _json_body()
        with db_conn() as conn:
            admin = create_admin(
                conn,
                username=_require_text(payload, "username"),
                password=payload.get("password"),
                email=_coerce_optional_text(payload.get("email")),
            )
            append_history(
                conn,
                entity_type="admin",
                entity_id=int(admin["id"]),
                action="created",
                changes={"username": admin["username"]},
                admin_id=current_admin_id(),
            )
            conn.commit()
        return _ok({"admin": admin}, status=201)
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)


@auth_bp.route("/api/admins/<int:admin_id>", methods=["DELETE"])
@require_admin
def api_delete_admin(admin_id: int) -> Any:
    """Delete an admin; deleting your own account is refused with 400."""
    try:
        with db_conn() as conn:
            before = delete_admin(conn, admin_id, acting_admin_id=current_admin_id())
            append_history(
                conn,
                entity_type="admin",
                entity_id=admin_id,
                action="deleted",
                changes={"username": before["username"]},
                admin_id=current_admin_id(),
            )
            conn.commit()
        return _ok({"deleted": admin_id})
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)


@auth_bp.route("/api/admins/<int:admin_id>/password", methods=["PUT"])
@require_admin
def api_set_admin_password(admin_id: int) -> Any:
    """Reset an admin password.

    JSON body:
      password (required)
    """
    try:
        payload = _json_body()
        with db_conn() as conn:
            set_admin_password(conn, admin_id, payload.get("password"))
            append_history(
                conn,
                entity_type="admin",
                entity_id=admin_id,
                action="password_reset",
                admin_id=current_admin_id(),
            )
            conn.commit()
        return _ok()
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)
