"""Request principals: customers, admins and guest cart sessions.

Customers and admins authenticate with Flask's signed session cookie.
Automation may call admin routes with ``Authorization: Bearer <token>``
instead; the token acts as a service admin without a row in ``admins``.
"""

import hmac
import uuid
from functools import wraps
from typing import Any, Callable, Optional, TypeVar, cast

from flask import abort, g, request, session

F = TypeVar("F", bound=Callable[..., Any])

SESSION_USER_ID = "user_id"
SESSION_ADMIN_ID = "admin_id"
SESSION_ADMIN_NAME = "admin_username"
SESSION_CART_ID = "cart_session_id"
SESSION_HEADER = "X-Session-Id"
SERVICE_ADMIN_NAME = "api-token"

_API_BEARER_TOKEN: str = ""


def set_bearer_token(token: str) -> None:
    """Configure the automation token (empty disables bearer access)."""
    global _API_BEARER_TOKEN
    _API_BEARER_TOKEN = str(token or "").strip()


def _bearer_token() -> Optional[str]:
    header = request.headers.get("Authorization", "")
    if not header.lower().startswith("bearer "):
        return None
    return header[7:].strip()


def current_user_id() -> Optional[int]:
    raw = session.get(SESSION_USER_ID)
    return int(raw) if raw is not None else None


def guest_session_id(*, create: bool = True) -> Optional[str]:
    """Cart identity for visitors: ``X-Session-Id`` header, else a session-stored id."""
    header = (request.headers.get(SESSION_HEADER) or "").strip()
    if header:
        return header[:128]
    sid = session.get(SESSION_CART_ID)
    if sid is None and create:
        sid = uuid.uuid4().hex
        session[SESSION_CART_ID] = sid
    return sid


def login_user(user_id: int) -> None:
    session[SESSION_USER_ID] = int(user_id)
    session.permanent = True


def logout_user() -> None:
    session.pop(SESSION_USER_ID, None)
    session.pop(SESSION_CART_ID, None)


def login_admin(admin: dict[str, Any]) -> None:
    session[SESSION_ADMIN_ID] = int(admin["id"])
    session[SESSION_ADMIN_NAME] = str(admin.get("username") or "")
    session.permanent = True


def logout_admin() -> None:
    session.pop(SESSION_ADMIN_ID, None)
    session.pop(SESSION_ADMIN_NAME, None)


def current_admin() -> Optional[dict[str, Any]]:
    """The admin behind this request, or None.

    Aborts with 403 when a bearer token is sent but does not match.
    """
    token = _bearer_token()
    if token is not None:
        if _API_BEARER_TOKEN and hmac.compare_digest(token, _API_BEARER_TOKEN):
            return {"id": None, "username": SERVICE_ADMIN_NAME}
        abort(403)
    admin_id = session.get(SESSION_ADMIN_ID)
    if admin_id is None:
        return None
    return {"id": int(admin_id), "username": session.get(SESSION_ADMIN_NAME) or ""}


def current_admin_id() -> Optional[int]:
    admin = getattr(g, "admin", None)
    return admin.get("id") if admin else None


def current_admin_name() -> str:
    admin = getattr(g, "admin", None)
    return str((admin or {}).get("username") or "")


def require_admin(fn: F) -> F:
    """401 without an admin session or token; sets ``g.admin``."""

    @wraps(fn)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        admin = current_admin()
        if admin is None:
            abort(401)
        g.admin = admin
        return fn(*args, **kwargs)

    return cast(F, wrapper)


def require_user(fn: F) -> F:
    """401 without a logged-in customer; sets ``g.user_id``."""

    @wraps(fn)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        user_id = current_user_id()
        if user_id is None:
            abort(401)
        g.user_id = user_id
        return fn(*args, **kwargs)

    return cast(F, wrapper)
