"""Append-only admin audit trail in ``history``.

Every admin mutation of orders and catalog rows records one row inside the
caller's transaction, so the audit entry commits (or rolls back) together
with the change it describes.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from apps.backend.db import execute_conn, fetch_all_dict_conn, to_jsonb

ENTITY_TYPES = (
    "order",
    "product",
    "category",
    "parameter_group",
    "parameter",
    "special",
    "project",
    "admin",
)


def check_entity_type(value: Any) -> str:
    entity_type = str(value or "").strip().lower()
    if entity_type not in ENTITY_TYPES:
        raise ValueError(f"entity_type must be one of: {', '.join(ENTITY_TYPES)}")
    return entity_type


def diff_fields(before: Mapping[str, Any] | None, after: Mapping[str, Any] | None) -> dict[str, Any]:
    """Return ``{field: {"from": old, "to": new}}`` for the fields that changed."""
    before = before or {}
    after = after or {}
    changes: dict[str, Any] = {}
    for key in sorted(set(before) | set(after)):
        if key in {"updated_at", "created_at"}:
            continue
        old, new = before.get(key), after.get(key)
        if old != new:
            changes[key] = {"from": old, "to": new}
    return changes


def append_history(
    conn: Any,
    *,
    entity_type: str,
    entity_id: int,
    action: str,
    changes: Mapping[str, Any] | None = None,
    admin_id: int | None = None,
) -> None:
    execute_conn(
        conn,
        """
        INSERT INTO history (entity_type, entity_id, action, changes, admin_id)
        VALUES (%s, %s, %s, %s::jsonb, %s)
        """,
        (entity_type, int(entity_id), action, to_jsonb(dict(changes) if changes else None), admin_id),
    )


def get_history(conn: Any, *, entity_type: str, entity_id: int, limit: int = 200) -> list[dict[str, Any]]:
    """Newest first, with the acting admin's username when known."""
    return fetch_all_dict_conn(
        conn,
        """
        SELECT h.id, h.entity_type, h.entity_id, h.action, h.changes, h.admin_id,
               a.username AS admin_username, h.created_at
        FROM history h
        LEFT JOIN admins a ON a.id = h.admin_id
        WHERE h.entity_type = %s AND h.entity_id = %s
        ORDER BY h.created_at DESC, h.id DESC
        LIMIT %s
        """,
        (entity_type, int(entity_id), limit),
    )
