"""Parameter groups and parameters (configurable options with price modifiers)."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from apps.backend.db import (
    execute_conn,
    execute_many_conn,
    fetch_all_dict_conn,
    fetch_one_dict_conn,
    update_row_conn,
)
from apps.backend.errors import NotFoundError

GROUP_COLUMNS = ("name", "description", "status")
PARAMETER_COLUMNS = ("name", "description", "price_modifier", "picture_url", "status")

_PARAMETER_SELECT = """
    SELECT id, parameter_group_id, name, description, price_modifier, picture_url, status,
           created_at, updated_at
    FROM parameters
"""


def _with_parameters(conn: Any, groups: list[dict[str, Any]], *, include_inactive: bool) -> list[dict[str, Any]]:
    if not groups:
        return groups
    ids = [int(g["id"]) for g in groups]
    status_sql = "" if include_inactive else "AND status = 'active'"
    params = fetch_all_dict_conn(
        conn,
        f"""
        {_PARAMETER_SELECT}
        WHERE parameter_group_id = ANY(%s) {status_sql}
        ORDER BY parameter_group_id ASC, price_modifier ASC, id ASC
        """,
        (ids,),
    )
    by_group: dict[int, list[dict[str, Any]]] = {}
    for param in params:
        by_group.setdefault(int(param["parameter_group_id"]), []).append(param)
    return [{**g, "parameters": by_group.get(int(g["id"]), [])} for g in groups]


def list_parameter_groups(conn: Any, *, include_inactive: bool = False) -> list[dict[str, Any]]:
    where = "" if include_inactive else "WHERE status = 'active'"
    groups = fetch_all_dict_conn(
        conn,
        f"""
        SELECT id, name, description, status, created_at, updated_at
        FROM parameter_groups
        {where}
        ORDER BY name ASC, id ASC
        """,
    )
    return _with_parameters(conn, groups, include_inactive=include_inactive)


def get_parameter_group(conn: Any, group_id: int, *, include_inactive: bool = True) -> dict[str, Any] | None:
    group = fetch_one_dict_conn(
        conn,
        "SELECT id, name, description, status, created_at, updated_at FROM parameter_groups WHERE id = %s",
        (group_id,),
    )
    if group is None:
        return None
    return _with_parameters(conn, [group], include_inactive=include_inactive)[0]


def create_parameter_group(conn: Any, values: Mapping[str, Any]) -> dict[str, Any]:
    row = fetch_one_dict_conn(
        conn,
        """
        INSERT INTO parameter_groups (name, description, status)
        VALUES (%s, %s, %s)
        RETURNING id, name, description, status, created_at, updated_at
        """,
        (values["name"], values.get("description"), values.get("status") or "active"),
    )
    if row is None:
        raise RuntimeError("parameter group insert returned no row")
    return {**row, "parameters": []}


def update_parameter_group(conn: Any, group_id: int, values: Mapping[str, Any]) -> dict[str, Any]:
    fields = {k: values[k] for k in GROUP_COLUMNS if k in values}
    if update_row_conn(conn, table="parameter_groups", row_id=group_id, values=fields) is None:
        raise NotFoundError(f"parameter group not found: {group_id}")
    group = get_parameter_group(conn, group_id)
    if group is None:
        raise NotFoundError(f"parameter group not found: {group_id}")
    return group


def delete_parameter_group(conn: Any, group_id: int) -> dict[str, Any]:
    """Delete a group; its parameters and product links cascade."""
    before = get_parameter_group(conn, group_id)
    if before is None:
        raise NotFoundError(f"parameter group not found: {group_id}")
    execute_conn(conn, "DELETE FROM parameter_groups WHERE id = %s", (group_id,))
    return before


def clone_parameter_group(conn: Any, group_id: int, *, new_name: str) -> dict[str, Any]:
    """Copy a group and every parameter in it under ``new_name``."""
    source = get_parameter_group(conn, group_id)
    if source is None:
        raise NotFoundError(f"parameter group not found: {group_id}")
    clone = fetch_one_dict_conn(
        conn,
        """
        INSERT INTO parameter_groups (name, description, status)
        VALUES (%s, %s, %s)
        RETURNING id
        """,
        (new_name, source.get("description"), source.get("status") or "active"),
    )
    if clone is None:
        raise RuntimeError("parameter group insert returned no row")
    clone_id = int(clone["id"])
    execute_many_conn(
        conn,
        """
        INSERT INTO parameters (parameter_group_id, name, description, price_modifier, picture_url, status)
        VALUES (%s, %s, %s, %s, %s, %s)
        """,
        [
            (
                clone_id,
                p["name"],
                p.get("description"),
                p.get("price_modifier") or 0,
                p.get("picture_url"),
                p.get("status") or "active",
            )
            for p in source.get("parameters") or []
        ],
    )
    cloned = get_parameter_group(conn, clone_id)
    if cloned is None:
        raise NotFoundError(f"parameter group not found: {clone_id}")
    return cloned


def list_group_products(conn: Any, group_id: int) -> list[dict[str, Any]]:
    """Products that carry the group, with the default parameter they use."""
    return fetch_all_dict_conn(
        conn,
        """
        SELECT p.id, p.name, p.status, p.base_price, ppg.default_parameter_id
        FROM product_parameter_groups ppg
        JOIN products p ON p.id = ppg.product_id
        WHERE ppg.parameter_group_id = %s
        ORDER BY p.name ASC, p.id ASC
        """,
        (group_id,),
    )


def list_parameters(
    conn: Any, *, group_id: int | None = None, include_inactive: bool = False
) -> list[dict[str, Any]]:
    where: list[str] = []
    params: list[Any] = []
    if group_id is not None:
        where.append("parameter_group_id = %s")
        params.append(group_id)
    if not include_inactive:
        where.append("status = 'active'")
    where_sql = f"WHERE {' AND '.join(where)}" if where else ""
    return fetch_all_dict_conn(
        conn,
        f"{_PARAMETER_SELECT} {where_sql} ORDER BY parameter_group_id ASC, price_modifier ASC, id ASC",
        params,
    )


def get_parameter(conn: Any, parameter_id: int) -> dict[str, Any] | None:
    return fetch_one_dict_conn(conn, f"{_PARAMETER_SELECT} WHERE id = %s", (parameter_id,))


def create_parameter(conn: Any, values: Mapping[str, Any]) -> dict[str, Any]:
    group_id = int(values["parameter_group_id"])
    exists = fetch_one_dict_conn(conn, "SELECT 1 AS ok FROM parameter_groups WHERE id = %s", (group_id,))
    if not exists:
        raise NotFoundError(f"parameter group not found: {group_id}")
    row = fetch_one_dict_conn(
        conn,
        """
        INSERT INTO parameters (parameter_group_id, name, description, price_modifier, picture_url, status)
        VALUES (%s, %s, %s, %s, %s, %s)
        RETURNING id
        """,
        (
            group_id,
            values["name"],
            values.get("description"),
            values.get("price_modifier") or 0,
            values.get("picture_url"),
            values.get("status") or "active",
        ),
    )
    if row is None:
        raise RuntimeError("parameter insert returned no row")
    created = get_parameter(conn, int(row["id"]))
    if created is None:
        raise NotFoundError(f"parameter not found: {row['id']}")
    return created


def update_parameter(conn: Any, parameter_id: int, values: Mapping[str, Any]) -> dict[str, Any]:
    fields = {k: values[k] for k in PARAMETER_COLUMNS if k in values}
    if update_row_conn(conn, table="parameters", row_id=parameter_id, values=fields) is None:
        raise NotFoundError(f"parameter not found: {parameter_id}")
    row = get_parameter(conn, parameter_id)
    if row is None:
        raise NotFoundError(f"parameter not found: {parameter_id}")
    return row


def delete_parameter(conn: Any, parameter_id: int) -> dict[str, Any]:
    before = get_parameter(conn, parameter_id)
    if before is None:
        raise NotFoundError(f"parameter not found: {parameter_id}")
    execute_conn(conn, "DELETE FROM parameters WHERE id = %s", (parameter_id,))
    return before
