"""Images Blueprint.

Image bytes go to the S3-compatible bucket. Products keep a gallery in
``product_images`` (key, content type and order); categories, specials and
projects carry one picture whose storage key sits in their own row
(``picture_url`` or ``cover_image_path``). The GET routes redirect to the
public or presigned object URL.
"""

import uuid
from typing import Any

from flask import Blueprint, redirect, request

from apps.backend.db import db_conn
from apps.backend.errors import NotFoundError
from apps.backend.history import append_history
from apps.backend.images import (
    ENTITY_PICTURES,
    delete_image,
    get_entity_picture,
    get_image,
    insert_image,
    list_product_images,
    reorder_images,
    set_entity_picture,
)
from apps.flask_api.utils import _coerce_optional_id, _coerce_optional_text, _err, _json_body, _ok
from apps.flask_api.utils.auth import current_admin_id, require_admin
from infra.config import get_settings
from infra.logging_config import StructuredLogger
from services.snapshot import product_image_url
from services.storage import entity_image_key, get_storage, image_key, validate_image_upload

images_bp = Blueprint("images", __name__)

_LOG = StructuredLogger(__name__)

_PICTURE_OWNER = "<any(categories, specials, projects):kind>"
_EXTERNAL_PREFIXES = ("http://", "https://", "/")


def _with_url(image: dict[str, Any]) -> dict[str, Any]:
    return {**image, "url": product_image_url(image["id"])}


def _read_upload() -> tuple[bytes, str, str]:
    """Bytes, content type and extension of the ``file`` (or ``image``) form field."""
    upload = request.files.get("file") or request.files.get("image")
    if upload is None:
        raise ValueError("file is required")
    body = upload.read()
    ext = validate_image_upload(
        upload.mimetype,
        len(body),
        max_bytes=int(get_settings().storage.max_upload_bytes),
    )
    return body, str(upload.mimetype), ext


def _owned_key(kind: str, entity_id: int, value: Any) -> bool:
    return bool(value) and str(value).startswith(f"{kind}/{entity_id}/")


@images_bp.route("/api/products/<int:product_id>/images", methods=["GET"])
def api_list_images(product_id: int) -> Any:
    with db_conn() as conn:
        items = list_product_images(conn, product_id)
    return _ok({"items": [_with_url(i) for i in items]})


@images_bp.route("/api/products/<int:product_id>/images", methods=["POST"])
@require_admin
def api_upload_image(product_id: int) -> Any:
    """Upload one product image.

    Multipart form:
      file (required): image/jpeg, image/png or image/webp
      alt_text: optional

    The object is removed again if the database insert fails.
    """
    try:
        body, content_type, ext = _read_upload()
        image_id = str(uuid.uuid4())
        key = image_key(product_id, image_id, ext)
        storage = get_storage()
        storage.put_object(key, body, content_type=content_type)
        try:
            with db_conn() as conn:
                image = insert_image(
                    conn,
                    image_id=image_id,
                    product_id=product_id,
                    storage_path=key,
                    content_type=content_type,
                    alt_text=_coerce_optional_text(request.form.get("alt_text")),
                )
                append_history(
                    conn,
                    entity_type="product",
                    entity_id=product_id,
                    action="image_added",
                    changes={"image_id": image_id},
                    admin_id=current_admin_id(),
                )
                conn.commit()
        except Exception:
            storage.delete_object(key)
            raise
        _LOG.info("image_uploaded", product_id=product_id, image_id=image_id, size=len(body))
        return _ok({"image": _with_url(image)}, status=201)
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)


@images_bp.route("/api/images/<image_id>", methods=["GET"])
def api_get_image(image_id: str) -> Any:
    """Redirect to the stored object."""
    try:
        with db_conn() as conn:
            image = get_image(conn, image_id)
        if image is None:
            raise NotFoundError(f"image not found: {image_id}")
        return redirect(get_storage().object_url(str(image["storage_path"])), code=302)
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)


@images_bp.route("/api/images/<image_id>", methods=["DELETE"])
@require_admin
def api_delete_image(image_id: str) -> Any:
    """Delete the row, then the object (object removal is best effort)."""
    try:
        with db_conn() as conn:
            before = delete_image(conn, image_id)
            append_history(
                conn,
                entity_type="product",
                entity_id=int(before["product_id"]),
                action="image_removed",
                changes={"image_id": str(before["id"])},
                admin_id=current_admin_id(),
            )
            conn.commit()
        removed = get_storage().delete_object(str(before["storage_path"]))
        return _ok({"deleted": str(before["id"]), "object_removed": removed})
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)


@images_bp.route("/api/images/reorder", methods=["PUT"])
@require_admin
def api_reorder_images() -> Any:
    """Set gallery order.

    JSON body:
      product_id (required)
      image_ids (required): every image of the product in the new order
    """
    try:
        payload = _json_body()
        product_id = _coerce_optional_id(payload.get("product_id"), field_name="product_id")
        if product_id is None:
            raise ValueError("product_id is required")
        image_ids = payload.get("image_ids")
        if not isinstance(image_ids, list) or not image_ids:
            raise ValueError("image_ids must be a non-empty list")
        with db_conn() as conn:
            items = reorder_images(conn, product_id, image_ids)
            conn.commit()
        return _ok({"items": [_with_url(i) for i in items]})
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)


# ---------------------------
# Category, special and project pictures
# ---------------------------

@images_bp.route(f"/api/{_PICTURE_OWNER}/<int:entity_id>/image", methods=["GET"])
def api_get_entity_picture(kind: str, entity_id: int) -> Any:
    """Redirect to the picture; values set by hand as URLs are followed as they are."""
    with db_conn() as conn:
        value = get_entity_picture(conn, kind, entity_id)
    if not value:
        raise NotFoundError(f"{ENTITY_PICTURES[kind][2]} has no image: {entity_id}")
    if str(value).startswith(_EXTERNAL_PREFIXES):
        return redirect(str(value), code=302)
    return redirect(get_storage().object_url(str(value)), code=302)


@images_bp.route(f"/api/{_PICTURE_OWNER}/<int:entity_id>/image", methods=["POST"])
@require_admin
def api_upload_entity_picture(kind: str, entity_id: int) -> Any:
    """Upload the picture of a category, special or project.

    Multipart form:
      file (required): image/jpeg, image/png or image/webp

    The row's ``picture_url`` (``cover_image_path`` for projects) is set to
    the new key. The object is removed again if the update fails; a previous
    object under the same owner is removed after the commit.
    """
    try:
        body, content_type, ext = _read_upload()
        key = entity_image_key(kind, entity_id, str(uuid.uuid4()), ext)
        storage = get_storage()
        storage.put_object(key, body, content_type=content_type)
        try:
            with db_conn() as conn:
                previous = set_entity_picture(conn, kind, entity_id, key)
                append_history(
                    conn,
                    entity_type=ENTITY_PICTURES[kind][2],
                    entity_id=entity_id,
                    action="image_added",
                    changes={"storage_path": key, "previous": previous},
                    admin_id=current_admin_id(),
                )
                conn.commit()
        except Exception:
            storage.delete_object(key)
            raise
        if _owned_key(kind, entity_id, previous):
            storage.delete_object(str(previous))
        _LOG.info("picture_uploaded", owner=kind, entity_id=entity_id, storage_path=key, size=len(body))
        return _ok(
            {"image": {"storage_path": key, "url": f"/api/{kind}/{entity_id}/image"}},
            status=201,
        )
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)


@images_bp.route(f"/api/{_PICTURE_OWNER}/<int:entity_id>/image", methods=["DELETE"])
@require_admin
def api_delete_entity_picture(kind: str, entity_id: int) -> Any:
    """Clear the picture, then remove the object when it is one of ours."""
    with db_conn() as conn:
        if not get_entity_picture(conn, kind, entity_id):
            raise NotFoundError(f"{ENTITY_PICTURES[kind][2]} has no image: {entity_id}")
        previous = set_entity_picture(conn, kind, entity_id, None)
        append_history(
            conn,
            entity_type=ENTITY_PICTURES[kind][2],
            entity_id=entity_id,
            action="image_removed",
            changes={"storage_path": previous},
            admin_id=current_admin_id(),
        )
        conn.commit()
    removed = _owned_key(kind, entity_id, previous) and get_storage().delete_object(str(previous))
    return _ok({"deleted": previous, "object_removed": removed})
