"""
services/storage.py

Object storage for catalog images (S3 or an S3-compatible endpoint).

- Keys look like ``<kind>/<entity_id>/<uuid><ext>``: ``products/`` for gallery
  images, ``categories/``, ``specials/`` and ``projects/`` for the single
  picture those entities carry.
- Only JPEG, PNG and WebP uploads are accepted; no resizing happens here.
- Reads go through :meth:`ObjectStorage.object_url`: a public URL when
  ``STORAGE_PUBLIC_BASE_URL`` is configured, a presigned GET otherwise.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from infra.aws_config import sdk_config
from infra.config import Settings, get_settings

_LOGGER = logging.getLogger(__name__)

ALLOWED_IMAGE_TYPES = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
}


class StorageError(RuntimeError):
    """Raised when the object store rejects or fails an operation."""


def validate_image_upload(content_type: Optional[str], size: int, *, max_bytes: int) -> str:
    """Return the file extension for an accepted upload, raise ``ValueError`` otherwise."""
    ctype = str(content_type or "").split(";", 1)[0].strip().lower()
    if ctype == "image/jpg":
        ctype = "image/jpeg"
    ext = ALLOWED_IMAGE_TYPES.get(ctype)
    if ext is None:
        raise ValueError(f"unsupported image type: {content_type or 'unknown'} (allowed: jpeg, png, webp)")
    if size <= 0:
        raise ValueError("uploaded file is empty")
    if size > max_bytes:
        raise ValueError(f"uploaded file is too large ({size} bytes, limit {max_bytes})")
    return ext


def entity_image_key(kind: str, entity_id: int, image_id: str, ext: str) -> str:
    return f"{kind}/{int(entity_id)}/{image_id}{ext}"


def image_key(product_id: int, image_id: str, ext: str) -> str:
    return entity_image_key("products", product_id, image_id, ext)


@dataclass
class ObjectStorage:
    """Thin wrapper over a boto3 S3 client bound to one bucket."""

    client: Any
    bucket: str
    public_base_url: Optional[str] = None
    presign_ttl_seconds: int = 3600

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "ObjectStorage":
        cfg = settings or get_settings()
        storage = cfg.storage
        if not storage.bucket:
            raise StorageError("STORAGE_BUCKET is not set")
        session = boto3.Session(
            aws_access_key_id=storage.access_key_id,
            aws_secret_access_key=storage.secret_access_key,
            region_name=storage.region or cfg.aws.default_region,
        )
        client = session.client(
            "s3",
            endpoint_url=storage.endpoint_url,
            config=sdk_config(cfg.aws, s3_path_style=bool(storage.endpoint_url)),
        )
        return cls(
            client=client,
            bucket=storage.bucket,
            public_base_url=storage.public_base_url,
            presign_ttl_seconds=int(storage.presign_ttl_seconds),
        )

    def put_object(self, key: str, body: bytes, *, content_type: str) -> None:
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=body,
                ContentType=content_type,
                CacheControl="public, max-age=31536000, immutable",
            )
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"upload failed for {key}: {exc}") from exc

    def delete_object(self, key: str) -> bool:
        """Best-effort delete; returns False (and logs) when the store refuses."""
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            _LOGGER.warning("object delete failed key=%s error=%s", key, exc)
            return False
        return True

    def object_url(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url.rstrip('/')}/{key.lstrip('/')}"
        try:
            return str(
                self.client.generate_presigned_url(
                    "get_object",
                    Params={"Bucket": self.bucket, "Key": key},
                    ExpiresIn=self.presign_ttl_seconds,
                )
            )
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"could not sign URL for {key}: {exc}") from exc


_STORAGE: Optional[ObjectStorage] = None


def get_storage() -> ObjectStorage:
    """Process-wide storage client, created on first use."""
    global _STORAGE
    if _STORAGE is None:
        _STORAGE = ObjectStorage.from_settings()
    return _STORAGE


def reset_storage() -> None:
    global _STORAGE
    _STORAGE = None
