"""Tests for the cart API endpoints."""

from __future__ import annotations

from typing import Any

import apps.flask_api.blueprints.cart as cart_api
import apps.flask_api.flask_app as flask_app
from apps.backend.errors import ConflictError, NotFoundError


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
    """Disable the schema gate and hand every request the same fake connection."""
    conn = _DummyConn()
    monkeypatch.setattr(flask_app, "_schema_gate_enabled", False)
    monkeypatch.setattr(flask_app, "_schema_gate_checked", True)
    monkeypatch.setattr(cart_api, "db_conn", lambda: conn)
    return conn


def _fake_cart(monkeypatch) -> list[dict[str, Any]]:  # type: ignore[no-untyped-def]
    identities: list[dict[str, Any]] = []

    def _get_or_create(_conn: object, **identity: Any) -> dict[str, Any]:
        identities.append(identity)
        return {"id": 10, "status": "active", **identity}

    def _view(_conn: object, cart: dict[str, Any]) -> dict[str, Any]:
        return {"cart": cart, "items": [], "totals": {"total": 0.0}, "total": 0.0}

    monkeypatch.setattr(cart_api, "get_or_create_cart", _get_or_create)
    monkeypatch.setattr(cart_api, "build_cart_view", _view)
    return identities


def test_get_cart_uses_session_header_for_guests(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    """Guests are identified by `X-Session-Id`; the cart is created on first read."""
    conn = _disable_runtime_guards(monkeypatch)
    identities = _fake_cart(monkeypatch)

    client = flask_app.app.test_client()
    resp = client.get("/api/cart", headers={"X-Session-Id": "guest-abc"})

    assert resp.status_code == 200
    body = resp.get_json() or {}
    assert body.get("ok") is True
    assert body["cart"]["id"] == 10
    assert identities == [{"user_id": None, "session_id": "guest-abc"}]
    assert conn.commits == 1
    assert "no-store" in resp.headers.get("Cache-Control", "")


def test_get_cart_for_logged_in_user(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    _disable_runtime_guards(monkeypatch)
    identities = _fake_cart(monkeypatch)

    client = flask_app.app.test_client()
    with client.session_transaction() as sess:
        sess["user_id"] = 7
    resp = client.get("/api/cart")

    assert resp.status_code == 200
    assert identities[0]["user_id"] == 7
    assert identities[0]["session_id"] is None


def test_add_item_passes_selection_and_default_quantity(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    """`POST /api/cart/items` returns 201 with the cart view and the line."""
    _disable_runtime_guards(monkeypatch)
    _fake_cart(monkeypatch)
    captured: dict[str, Any] = {}

    def _add_item(_conn: object, cart: dict[str, Any], **kwargs: Any) -> dict[str, Any]:
        captured.update(kwargs)
        return {"id": 55, "cart_id": cart["id"], "quantity": kwargs["quantity"]}

    monkeypatch.setattr(cart_api, "add_item", _add_item)

    client = flask_app.app.test_client()
    resp = client.post(
        "/api/cart/items",
        json={"product_id": 3, "selected_parameters": {"1": 5}},
        headers={"X-Session-Id": "guest-abc"},
    )

    assert resp.status_code == 201
    body = resp.get_json() or {}
    assert body["item"] == {"id": 55, "cart_id": 10, "quantity": 1}
    assert captured["product_id"] == 3
    assert captured["quantity"] == 1
    assert captured["selected_parameters"] == {"1": 5}


def test_add_item_validates_payload(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    _disable_runtime_guards(monkeypatch)
    _fake_cart(monkeypatch)

    client = flask_app.app.test_client()
    missing = client.post("/api/cart/items", json={}, headers={"X-Session-Id": "g"})
    bad_qty = client.post("/api/cart/items", json={"product_id": 3, "quantity": 0}, headers={"X-Session-Id": "g"})

    assert missing.status_code == 400
    assert (missing.get_json() or {}).get("error") == "bad_request"
    assert bad_qty.status_code == 400


def test_add_item_on_checked_out_cart_is_conflict(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    _disable_runtime_guards(monkeypatch)
    _fake_cart(monkeypatch)

    def _add_item(_conn: object, _cart: dict[str, Any], **_kwargs: Any) -> dict[str, Any]:
        raise ConflictError("cart 10 is already checked out")

    monkeypatch.setattr(cart_api, "add_item", _add_item)

    client = flask_app.app.test_client()
    resp = client.post("/api/cart/items", json={"product_id": 3}, headers={"X-Session-Id": "g"})

    assert resp.status_code == 409
    assert (resp.get_json() or {}).get("error") == "conflict"


def test_remove_unknown_item_is_not_found(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    _disable_runtime_guards(monkeypatch)
    _fake_cart(monkeypatch)

    def _remove(_conn: object, _cart: dict[str, Any], item_id: int) -> None:
        raise NotFoundError(f"cart item not found: {item_id}")

    monkeypatch.setattr(cart_api, "remove_item", _remove)

    client = flask_app.app.test_client()
    resp = client.delete("/api/cart/items/99", headers={"X-Session-Id": "g"})

    assert resp.status_code == 404
    assert "99" in (resp.get_json() or {}).get("message", "")


def test_add_special_uses_bundle_quantity(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    _disable_runtime_guards(monkeypatch)
    _fake_cart(monkeypatch)
    calls: list[tuple[int, int]] = []

    def _add_special(_conn: object, _cart: dict[str, Any], special_id: int, *, quantity: int) -> int:
        calls.append((special_id, quantity))
        return 2

    monkeypatch.setattr(cart_api, "add_special", _add_special)

    client = flask_app.app.test_client()
    resp = client.post("/api/cart/specials", json={"special_id": 4, "quantity": 2}, headers={"X-Session-Id": "g"})

    assert resp.status_code == 201
    assert calls == [(4, 2)]


def test_add_item_rejects_fractional_quantity(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    """1.5 cabinets is an error, not one cabinet; 2.0 is accepted as 2."""
    _disable_runtime_guards(monkeypatch)
    _fake_cart(monkeypatch)
    added: list[int] = []
    monkeypatch.setattr(cart_api, "add_item", lambda _conn, _cart, **kw: added.append(kw["quantity"]))

    client = flask_app.app.test_client()
    headers = {"X-Session-Id": "guest-abc"}
    bad = client.post("/api/cart/items", json={"product_id": 3, "quantity": 1.5}, headers=headers)
    good = client.post("/api/cart/items", json={"product_id": 3, "quantity": 2.0}, headers=headers)

    assert bad.status_code == 400
    assert (bad.get_json() or {})["message"] == "quantity must be an integer"
    assert good.status_code in (200, 201)
    assert added == [2]
