"""Rows of ``product_images`` and the single picture of categories, specials and projects.

The bytes live in object storage; these functions only handle keys.
"""

from __future__ import annotations

import uuid
from typing import Any, Optional, Sequence

from apps.backend.db import execute_conn, execute_many_conn, fetch_all_dict_conn, fetch_one_dict_conn
from apps.backend.errors import NotFoundError

_IMAGE_SELECT = """
    SELECT id, product_id, storage_path, content_type, display_order, alt_text, created_at
    FROM product_images
"""


def _check_uuid(image_id: Any) -> str:
    try:
        return str(uuid.UUID(str(image_id)))
    except (TypeError, ValueError) as exc:
        raise ValueError(f"invalid image id: {image_id!r}") from exc


def list_product_images(conn: Any, product_id: int) -> list[dict[str, Any]]:
    return fetch_all_dict_conn(
        conn,
        f"{_IMAGE_SELECT} WHERE product_id = %s ORDER BY display_order ASC, created_at ASC",
        (product_id,),
    )


def get_image(conn: Any, image_id: Any) -> Optional[dict[str, Any]]:
    return fetch_one_dict_conn(conn, f"{_IMAGE_SELECT} WHERE id = %s", (_check_uuid(image_id),))


def insert_image(
    conn: Any,
    *,
    image_id: str,
    product_id: int,
    storage_path: str,
    content_type: str,
    alt_text: Optional[str] = None,
) -> dict[str, Any]:
    """Insert an image at the end of the product's gallery."""
    if fetch_one_dict_conn(conn, "SELECT id FROM products WHERE id = %s", (product_id,)) is None:
        raise NotFoundError(f"product not found: {product_id}")
    row = fetch_one_dict_conn(
        conn,
        """
        INSERT INTO product_images (id, product_id, storage_path, content_type, display_order, alt_text)
        VALUES (
          %s, %s, %s, %s,
          (SELECT COALESCE(MAX(display_order), -1) + 1 FROM product_images WHERE product_id = %s),
          %s
        )
        RETURNING id, product_id, storage_path, content_type, display_order, alt_text, created_at
        """,
        (_check_uuid(image_id), product_id, storage_path, content_type, product_id, alt_text),
    )
    if row is None:
        raise RuntimeError("image insert returned no row")
    return row


def delete_image(conn: Any, image_id: Any) -> dict[str, Any]:
    """Delete the row and return it so the caller can remove the stored object."""
    before = get_image(conn, image_id)
    if before is None:
        raise NotFoundError(f"image not found: {image_id}")
    execute_conn(conn, "DELETE FROM product_images WHERE id = %s", (str(before["id"]),))
    return before


def reorder_images(conn: Any, product_id: int, image_ids: Sequence[Any]) -> list[dict[str, Any]]:
    """Set ``display_order`` to each image's index in ``image_ids``."""
    ids = [_check_uuid(i) for i in image_ids]
    if len(set(ids)) != len(ids):
        raise ValueError("image_ids contains duplicates")
    known = {str(r["id"]) for r in list_product_images(conn, product_id)}
    unknown = [i for i in ids if i not in known]
    if unknown:
        raise ValueError(f"images do not belong to product {product_id}: {', '.join(unknown)}")
    execute_many_conn(
        conn,
        "UPDATE product_images SET display_order = %s WHERE id = %s AND product_id = %s",
        [(idx, image_id, product_id) for idx, image_id in enumerate(ids)],
    )
    return list_product_images(conn, product_id)


# URL kind -> (table, column, entity name) of the one picture a row carries.
ENTITY_PICTURES = {
    "categories": ("categories", "picture_url", "category"),
    "specials": ("specials", "picture_url", "special"),
    "projects": ("custom_projects", "cover_image_path", "project"),
}


def _picture_target(kind: str) -> tuple[str, str, str]:
    try:
        return ENTITY_PICTURES[kind]
    except KeyError:
        raise ValueError(f"unknown image owner: {kind}") from None


def get_entity_picture(conn: Any, kind: str, entity_id: int) -> Optional[str]:
    """Current picture value (storage key or external URL); NotFoundError for a missing row."""
    table, column, entity = _picture_target(kind)
    row = fetch_one_dict_conn(conn, f"SELECT {column} AS picture FROM {table} WHERE id = %s", (entity_id,))
    if row is None:
        raise NotFoundError(f"{entity} not found: {entity_id}")
    return row["picture"]


def set_entity_picture(conn: Any, kind: str, entity_id: int, value: Optional[str]) -> Optional[str]:
    """Point the row at ``value`` (None clears it) and return the previous value."""
    table, column, _entity = _picture_target(kind)
    before = get_entity_picture(conn, kind, entity_id)
    execute_conn(
        conn,
        f"UPDATE {table} SET {column} = %s, updated_at = now() WHERE id = %s",
        (value, entity_id),
    )
    return before
