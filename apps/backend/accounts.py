"""Customer and admin accounts.

Passwords are stored as Werkzeug hashes. Customers log in with their phone
number, admins with a username.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any, Optional

from werkzeug.security import check_password_hash, generate_password_hash

from apps.backend.db import execute_conn, fetch_all_dict_conn, fetch_one_dict_conn, update_row_conn
from apps.backend.errors import AuthenticationError, ConflictError, NotFoundError
from infra.config import get_settings

MIN_PASSWORD_LENGTH = 6
PROFILE_FIELDS = ("name", "address", "secondary_phone")

_USER_SELECT = "SELECT id, phone, name, address, secondary_phone, created_at, updated_at FROM users"
_ADMIN_SELECT = "SELECT id, username, email, created_at FROM admins"


def normalize_phone(value: Any, *, field_name: str = "phone") -> str:
    """Strip spaces/dashes and check the number against the shop's phone pattern."""
    phone = re.sub(r"[\s\-]", "", str(value or ""))
    if not phone:
        raise ValueError(f"{field_name} is required")
    pattern = get_settings().shop.phone_pattern
    if not re.fullmatch(pattern, phone):
        raise ValueError(f"{field_name} has an invalid format")
    return phone


def _check_password(password: Any) -> str:
    text = str(password or "")
    if len(text) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"password must be at least {MIN_PASSWORD_LENGTH} characters")
    return text


def _without_hash(row: Mapping[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in row.items() if k != "password_hash"}


def public_user(row: Optional[Mapping[str, Any]]) -> Optional[dict[str, Any]]:
    """Drop the password hash before a row leaves the process."""
    return None if row is None else _without_hash(row)


# ---------------------------
# Customers
# ---------------------------

def get_user(conn: Any, user_id: int) -> Optional[dict[str, Any]]:
    return fetch_one_dict_conn(conn, f"{_USER_SELECT} WHERE id = %s", (user_id,))


def phone_available(conn: Any, phone: str) -> bool:
    row = fetch_one_dict_conn(conn, "SELECT 1 AS taken FROM users WHERE phone = %s", (phone,))
    return row is None


def register_user(
    conn: Any,
    *,
    phone: Any,
    password: Any,
    name: Optional[str] = None,
    address: Optional[str] = None,
    secondary_phone: Any = None,
) -> dict[str, Any]:
    phone_n = normalize_phone(phone)
    secondary = normalize_phone(secondary_phone, field_name="secondary_phone") if secondary_phone else None
    pw = _check_password(password)
    if not phone_available(conn, phone_n):
        raise ConflictError("a user with this phone number already exists")
    row = fetch_one_dict_conn(
        conn,
        """
        INSERT INTO users (phone, password_hash, name, address, secondary_phone)
        VALUES (%s, %s, %s, %s, %s)
        RETURNING id, phone, name, address, secondary_phone, created_at, updated_at
        """,
        (phone_n, generate_password_hash(pw), name, address, secondary),
    )
    if row is None:
        raise RuntimeError("user insert returned no row")
    return row


def authenticate_user(conn: Any, *, phone: Any, password: Any) -> dict[str, Any]:
    phone_n = normalize_phone(phone)
    row = fetch_one_dict_conn(
        conn,
        "SELECT id, phone, password_hash, name, address, secondary_phone, created_at, updated_at "
        "FROM users WHERE phone = %s",
        (phone_n,),
    )
    if row is None or not check_password_hash(str(row["password_hash"]), str(password or "")):
        raise AuthenticationError("invalid phone number or password")
    return _without_hash(row)


def update_profile(conn: Any, user_id: int, values: Mapping[str, Any]) -> dict[str, Any]:
    fields = {k: values[k] for k in PROFILE_FIELDS if k in values}
    if fields.get("secondary_phone"):
        fields["secondary_phone"] = normalize_phone(fields["secondary_phone"], field_name="secondary_phone")
    row = update_row_conn(conn, table="users", row_id=user_id, values=fields)
    if row is None:
        raise NotFoundError(f"user not found: {user_id}")
    return _without_hash(row)


def change_password(conn: Any, user_id: int, *, current_password: Any, new_password: Any) -> None:
    row = fetch_one_dict_conn(conn, "SELECT password_hash FROM users WHERE id = %s", (user_id,))
    if row is None:
        raise NotFoundError(f"user not found: {user_id}")
    if not check_password_hash(str(row["password_hash"]), str(current_password or "")):
        raise AuthenticationError("current password is incorrect")
    new_hash = generate_password_hash(_check_password(new_password))
    execute_conn(
        conn,
        "UPDATE users SET password_hash = %s, updated_at = now() WHERE id = %s",
        (new_hash, user_id),
    )


# ---------------------------
# Admins
# ---------------------------

def get_admin(conn: Any, admin_id: int) -> Optional[dict[str, Any]]:
    return fetch_one_dict_conn(conn, f"{_ADMIN_SELECT} WHERE id = %s", (admin_id,))


def list_admins(conn: Any) -> list[dict[str, Any]]:
    return fetch_all_dict_conn(conn, f"{_ADMIN_SELECT} ORDER BY username ASC")


def create_admin(conn: Any, *, username: Any, password: Any, email: Optional[str] = None) -> dict[str, Any]:
    name = str(username or "").strip()
    if not name:
        raise ValueError("username is required")
    pw = _check_password(password)
    if fetch_one_dict_conn(conn, "SELECT 1 AS taken FROM admins WHERE username = %s", (name,)):
        raise ConflictError(f"admin already exists: {name}")
    row = fetch_one_dict_conn(
        conn,
        """
        INSERT INTO admins (username, password_hash, email)
        VALUES (%s, %s, %s)
        RETURNING id, username, email, created_at
        """,
        (name, generate_password_hash(pw), (email or "").strip() or None),
    )
    if row is None:
        raise RuntimeError("admin insert returned no row")
    return row


def authenticate_admin(conn: Any, *, username: Any, password: Any) -> dict[str, Any]:
    row = fetch_one_dict_conn(
        conn,
        "SELECT id, username, email, password_hash, created_at FROM admins WHERE username = %s",
        (str(username or "").strip(),),
    )
    if row is None or not check_password_hash(str(row["password_hash"]), str(password or "")):
        raise AuthenticationError("invalid username or password")
    return _without_hash(row)


def set_admin_password(conn: Any, admin_id: int, password: Any) -> None:
    updated = execute_conn(
        conn,
        "UPDATE admins SET password_hash = %s WHERE id = %s",
        (generate_password_hash(_check_password(password)), admin_id),
    )
    if not updated:
        raise NotFoundError(f"admin not found: {admin_id}")


def delete_admin(conn: Any, admin_id: int, *, acting_admin_id: Optional[int]) -> dict[str, Any]:
    if acting_admin_id is not None and int(acting_admin_id) == int(admin_id):
        raise ValueError("an admin cannot delete their own account")
    before = get_admin(conn, admin_id)
    if before is None:
        raise NotFoundError(f"admin not found: {admin_id}")
    execute_conn(conn, "DELETE FROM admins WHERE id = %s", (admin_id,))
    return before


def admin_notification_emails(conn: Any) -> list[str]:
    """Configured recipients plus every admin with an email, de-duplicated in order."""
    configured = list(get_settings().email.admin_recipients)
    rows = fetch_all_dict_conn(
        conn,
        "SELECT email FROM admins WHERE email IS NOT NULL AND email <> '' ORDER BY id ASC",
    )
    seen: set[str] = set()
    out: list[str] = []
    for email in configured + [str(r["email"]) for r in rows]:
        key = email.strip().lower()
        if key and key not in seen:
            seen.add(key)
            out.append(email.strip())
    return out
