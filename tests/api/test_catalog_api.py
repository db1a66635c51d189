"""Tests for category and product endpoints."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

import apps.flask_api.blueprints.categories as categories_api
import apps.flask_api.blueprints.products as products_api
import apps.flask_api.flask_app as flask_app
import apps.flask_api.utils.auth as auth_utils
from apps.backend.errors import ConflictError


class _DummyConn:
    """Minimal context manager returned by db_conn during unit tests."""

    def __init__(self) -> None:
        self.commits = 0

    def __enter__(self) -> _DummyConn:
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:  # type: ignore[no-untyped-def]
        return False

    def commit(self) -> None:
        self.commits += 1


def _disable_runtime_guards(monkeypatch) -> _DummyConn:  # type: ignore[no-untyped-def]
    """Disable the schema gate and route catalog blueprints to one fake connection."""
    conn = _DummyConn()
    monkeypatch.setattr(flask_app, "_schema_gate_enabled", False)
    monkeypatch.setattr(flask_app, "_schema_gate_checked", True)
    monkeypatch.setattr(auth_utils, "_API_BEARER_TOKEN", "")
    monkeypatch.setattr(categories_api, "db_conn", lambda: conn)
    monkeypatch.setattr(products_api, "db_conn", lambda: conn)
    return conn


def _record_history(monkeypatch, module) -> list[dict[str, Any]]:  # type: ignore[no-untyped-def]
    entries: list[dict[str, Any]] = []
    monkeypatch.setattr(module, "append_history", lambda _conn, **kwargs: entries.append(kwargs))
    return entries


def test_list_categories_ignores_include_inactive_for_public(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    """Only admins may see inactive categories."""
    _disable_runtime_guards(monkeypatch)
    seen: list[bool] = []

    def _list(_conn: object, *, include_inactive: bool) -> list[dict[str, Any]]:
        seen.append(include_inactive)
        return [{"id": 1, "name": "Cabinets", "product_count": 4}]

    monkeypatch.setattr(categories_api, "list_categories", _list)

    client = flask_app.app.test_client()
    resp = client.get("/api/categories?include_inactive=1")
    assert resp.status_code == 200
    assert (resp.get_json() or {})["items"][0]["name"] == "Cabinets"

    with client.session_transaction() as sess:
        sess["admin_id"] = 1
    client.get("/api/categories?include_inactive=1")

    assert seen == [False, True]


def test_inactive_category_is_404_for_public(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    _disable_runtime_guards(monkeypatch)
    monkeypatch.setattr(
        categories_api, "get_category", lambda _conn, cid: {"id": cid, "name": "Old", "status": "inactive"}
    )

    client = flask_app.app.test_client()
    assert client.get("/api/categories/2").status_code == 404


def test_create_category_with_bearer_token_writes_history(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    """The automation token acts as an admin without an admin id."""
    conn = _disable_runtime_guards(monkeypatch)
    monkeypatch.setattr(auth_utils, "_API_BEARER_TOKEN", "tok-123")
    monkeypatch.setattr(categories_api, "create_category", lambda _conn, values: {"id": 9, **values})
    history = _record_history(monkeypatch, categories_api)

    client = flask_app.app.test_client()
    resp = client.post(
        "/api/categories",
        json={"name": "Wall units", "description": "Upper cabinets"},
        headers={"Authorization": "Bearer tok-123"},
    )

    assert resp.status_code == 201
    assert (resp.get_json() or {})["category"]["id"] == 9
    assert history[0]["action"] == "created"
    assert history[0]["entity_type"] == "category"
    assert history[0]["admin_id"] is None
    assert history[0]["changes"]["name"] == {"from": None, "to": "Wall units"}
    assert conn.commits == 1


def test_wrong_bearer_token_is_forbidden(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    _disable_runtime_guards(monkeypatch)
    monkeypatch.setattr(auth_utils, "_API_BEARER_TOKEN", "tok-123")

    client = flask_app.app.test_client()
    resp = client.post("/api/categories", json={"name": "x"}, headers={"Authorization": "Bearer nope"})

    assert resp.status_code == 403


def test_create_category_requires_name(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    _disable_runtime_guards(monkeypatch)

    client = flask_app.app.test_client()
    with client.session_transaction() as sess:
        sess["admin_id"] = 1
    resp = client.post("/api/categories", json={"description": "no name"})

    assert resp.status_code == 400


def test_delete_category_with_products_is_conflict(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    _disable_runtime_guards(monkeypatch)

    def _delete(_conn: object, category_id: int) -> dict[str, Any]:
        raise ConflictError(f"category {category_id} still has products")

    monkeypatch.setattr(categories_api, "delete_category", _delete)

    client = flask_app.app.test_client()
    with client.session_transaction() as sess:
        sess["admin_id"] = 1
    resp = client.delete("/api/categories/3")

    assert resp.status_code == 409


def test_list_products_pages_and_adds_image_urls(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    _disable_runtime_guards(monkeypatch)
    seen: dict[str, Any] = {}

    def _list(_conn: object, **kwargs: Any) -> tuple[list[dict[str, Any]], int]:
        seen.update(kwargs)
        return [{"id": 3, "name": "Base 60", "base_price": Decimal("250000.00"), "primary_image_id": "img-1"}], 41

    monkeypatch.setattr(products_api, "list_products", _list)

    client = flask_app.app.test_client()
    resp = client.get("/api/products?category_id=2&q=oak&limit=20&offset=20")

    assert resp.status_code == 200
    body = resp.get_json() or {}
    assert body["total"] == 41
    assert body["items"][0]["image_url"] == "/api/images/img-1"
    assert body["items"][0]["base_price"] == 250000.0
    assert seen == {"category_id": 2, "include_inactive": False, "query": "oak", "limit": 20, "offset": 20}


def test_list_products_rejects_bad_category_id(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    _disable_runtime_guards(monkeypatch)

    client = flask_app.app.test_client()
    resp = client.get("/api/products?category_id=abc")

    assert resp.status_code == 400


def test_get_product_includes_images_and_hides_inactive(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    _disable_runtime_guards(monkeypatch)
    products = {
        3: {"id": 3, "name": "Base 60", "status": "active", "primary_image_id": None, "parameter_groups": []},
        4: {"id": 4, "name": "Retired", "status": "inactive", "primary_image_id": None},
    }
    monkeypatch.setattr(
        products_api, "load_product_details", lambda _conn, ids: {i: products[i] for i in ids if i in products}
    )
    monkeypatch.setattr(products_api, "list_product_images", lambda _conn, _pid: [{"id": "img-9", "sort_order": 0}])

    client = flask_app.app.test_client()
    ok = client.get("/api/products/3")
    hidden = client.get("/api/products/4")
    missing = client.get("/api/products/5")

    assert ok.status_code == 200
    assert (ok.get_json() or {})["product"]["images"] == [{"id": "img-9", "sort_order": 0, "url": "/api/images/img-9"}]
    assert hidden.status_code == 404
    assert missing.status_code == 404


def test_create_product_requires_price(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    _disable_runtime_guards(monkeypatch)

    client = flask_app.app.test_client()
    with client.session_transaction() as sess:
        sess["admin_id"] = 1
    resp = client.post("/api/products", json={"name": "Tall unit"})
    negative = client.post("/api/products", json={"name": "Tall unit", "base_price": -5})

    assert resp.status_code == 400
    assert negative.status_code == 400
