"""Tests for product image object storage."""

from __future__ import annotations

import pytest

from services.storage import ObjectStorage, StorageError, entity_image_key, image_key, validate_image_upload
from tests.aws_mocks import FakeS3Client


def test_validate_image_upload_maps_content_types() -> None:
    assert validate_image_upload("image/png", 10, max_bytes=100) == ".png"
    assert validate_image_upload("image/jpg", 10, max_bytes=100) == ".jpg"
    assert validate_image_upload("image/webp; charset=binary", 10, max_bytes=100) == ".webp"


@pytest.mark.parametrize(
    "content_type,size,match",
    [
        ("image/gif", 10, "unsupported image type"),
        (None, 10, "unknown"),
        ("image/png", 0, "empty"),
        ("image/png", 101, "too large"),
    ],
)
def test_validate_image_upload_rejects(content_type: str | None, size: int, match: str) -> None:
    with pytest.raises(ValueError, match=match):
        validate_image_upload(content_type, size, max_bytes=100)


def test_image_key_layout() -> None:
    assert image_key(12, "abc", ".png") == "products/12/abc.png"
    assert entity_image_key("projects", 4, "abc", ".webp") == "projects/4/abc.webp"


def test_put_object_sends_bucket_key_and_cache_headers() -> None:
    client = FakeS3Client()
    storage = ObjectStorage(client=client, bucket="ezbox-images")

    storage.put_object("products/1/a.png", b"png-bytes", content_type="image/png")

    op, kwargs = client.calls[0]
    assert op == "put_object"
    assert kwargs["Bucket"] == "ezbox-images"
    assert kwargs["ContentType"] == "image/png"
    assert "immutable" in kwargs["CacheControl"]
    assert ("ezbox-images", "products/1/a.png") in client.objects


def test_put_object_wraps_client_errors() -> None:
    storage = ObjectStorage(client=FakeS3Client(raise_on="put_object"), bucket="b")
    with pytest.raises(StorageError, match="upload failed"):
        storage.put_object("k", b"x", content_type="image/png")


def test_delete_object_is_best_effort() -> None:
    assert ObjectStorage(client=FakeS3Client(), bucket="b").delete_object("k") is True
    assert ObjectStorage(client=FakeS3Client(raise_on="delete_object"), bucket="b").delete_object("k") is False


def test_object_url_prefers_public_base_url() -> None:
    public = ObjectStorage(client=FakeS3Client(), bucket="b", public_base_url="https://cdn.example/")
    assert public.object_url("/products/1/a.png") == "https://cdn.example/products/1/a.png"

    signed = ObjectStorage(client=FakeS3Client(), bucket="b", presign_ttl_seconds=600)
    assert signed.object_url("products/1/a.png") == "https://b.s3.test/products/1/a.png?X-Amz-Expires=600"


def test_object_url_signing_failure_raises_storage_error() -> None:
    storage = ObjectStorage(client=FakeS3Client(raise_on="generate_presigned_url"), bucket="b")
    with pytest.raises(StorageError):
        storage.object_url("k")
