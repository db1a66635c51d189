"""Tests for checkout and order management endpoints."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

import apps.flask_api.blueprints.orders as orders_api
import apps.flask_api.flask_app as flask_app
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
    """Disable the schema gate so request tests focus on endpoint behavior."""
    conn = _DummyConn()
    monkeypatch.setattr(flask_app, "_schema_gate_enabled", False)
    monkeypatch.setattr(flask_app, "_schema_gate_checked", True)
    monkeypatch.setattr(orders_api, "db_conn", lambda: conn)
    return conn


def _as_admin(client) -> None:  # type: ignore[no-untyped-def]
    with client.session_transaction() as sess:
        sess["admin_id"] = 1
        sess["admin_username"] = "owner"


class _Notifier:
    def __init__(self) -> None:
        self.orders: list[dict[str, Any]] = []

    def notify_new_order(self, order: dict[str, Any], recipients: list[str]) -> bool:
        _ = recipients
        self.orders.append(order)
        return True


def _patch_checkout(monkeypatch, *, cart: dict[str, Any] | None) -> dict[str, Any]:  # type: ignore[no-untyped-def]
    captured: dict[str, Any] = {}

    def _create_order(_conn: object, **kwargs: Any) -> dict[str, Any]:
        captured.update(kwargs)
        return {"id": 101, "status": "pending", "total_price": Decimal("550000.00"), **kwargs}

    notifier = _Notifier()
    monkeypatch.setattr(orders_api, "get_active_cart", lambda _conn, **_identity: cart)
    monkeypatch.setattr(orders_api, "create_order", _create_order)
    monkeypatch.setattr(orders_api, "admin_notification_emails", lambda _conn: ["owner@example.com"])
    monkeypatch.setattr(orders_api, "get_notifier", lambda: notifier)
    captured["_notifier"] = notifier
    return captured


def test_checkout_creates_order_and_notifies(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    """`POST /api/orders` checks out the guest's active cart and emails admins."""
    conn = _disable_runtime_guards(monkeypatch)
    captured = _patch_checkout(monkeypatch, cart={"id": 10})

    client = flask_app.app.test_client()
    resp = client.post(
        "/api/orders",
        json={"name": "Bat", "phone": "9911 2233", "address": "Ulaanbaatar"},
        headers={"X-Session-Id": "guest-abc"},
    )

    assert resp.status_code == 201
    body = resp.get_json() or {}
    assert body["order"]["id"] == 101
    assert body["order"]["total_price"] == 550000.0
    assert captured["cart_id"] == 10
    assert captured["session_id"] == "guest-abc"
    assert captured["phone"] == "99112233"
    assert conn.commits == 1
    assert captured["_notifier"].orders[0]["id"] == 101


def test_checkout_survives_notification_failure(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    _disable_runtime_guards(monkeypatch)
    _patch_checkout(monkeypatch, cart={"id": 10})

    def _boom(_conn: object) -> list[str]:
        raise RuntimeError("ses down")

    monkeypatch.setattr(orders_api, "admin_notification_emails", _boom)

    client = flask_app.app.test_client()
    resp = client.post(
        "/api/orders",
        json={"name": "Bat", "phone": "99112233", "address": "Ulaanbaatar"},
        headers={"X-Session-Id": "guest-abc"},
    )

    assert resp.status_code == 201


def test_checkout_requires_contact_and_cart(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    _disable_runtime_guards(monkeypatch)
    _patch_checkout(monkeypatch, cart=None)

    client = flask_app.app.test_client()
    no_phone = client.post("/api/orders", json={"name": "Bat", "address": "UB"}, headers={"X-Session-Id": "g"})
    bad_phone = client.post(
        "/api/orders", json={"name": "Bat", "phone": "12", "address": "UB"}, headers={"X-Session-Id": "g"}
    )
    no_cart = client.post(
        "/api/orders", json={"name": "Bat", "phone": "99112233", "address": "UB"}, headers={"X-Session-Id": "g"}
    )

    assert no_phone.status_code == 400
    assert bad_phone.status_code == 400
    assert no_cart.status_code == 400
    assert (no_cart.get_json() or {}).get("message") == "cart is empty"


def test_checkout_falls_back_to_profile_contact(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    _disable_runtime_guards(monkeypatch)
    captured = _patch_checkout(monkeypatch, cart={"id": 12})
    monkeypatch.setattr(
        orders_api,
        "get_user",
        lambda _conn, _uid: {"id": 7, "name": "Saraa", "phone": "88112233", "address": "Darkhan"},
    )

    client = flask_app.app.test_client()
    with client.session_transaction() as sess:
        sess["user_id"] = 7
    resp = client.post("/api/orders", json={"address": "Erdenet"})

    assert resp.status_code == 201
    assert captured["user_id"] == 7
    assert captured["name"] == "Saraa"
    assert captured["phone"] == "88112233"
    assert captured["address"] == "Erdenet"


def test_get_order_hides_other_customers_orders(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    _disable_runtime_guards(monkeypatch)
    monkeypatch.setattr(orders_api, "get_order", lambda _conn, order_id: {"id": order_id, "user_id": 5})

    client = flask_app.app.test_client()
    with client.session_transaction() as sess:
        sess["user_id"] = 6
    assert client.get("/api/orders/3").status_code == 404

    with client.session_transaction() as sess:
        sess["user_id"] = 5
    assert client.get("/api/orders/3").status_code == 200

    admin = flask_app.app.test_client()
    _as_admin(admin)
    assert admin.get("/api/orders/3").status_code == 200


def test_admin_routes_require_admin(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    _disable_runtime_guards(monkeypatch)

    client = flask_app.app.test_client()
    resp = client.get("/api/admin/orders")

    assert resp.status_code == 401
    assert (resp.get_json() or {}).get("ok") is False


def test_admin_orders_filters_status(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    _disable_runtime_guards(monkeypatch)
    seen: dict[str, Any] = {}

    def _list_orders(_conn: object, **kwargs: Any) -> tuple[list[dict[str, Any]], int]:
        seen.update(kwargs)
        return [{"id": 1, "status": "shipped"}], 1

    monkeypatch.setattr(orders_api, "list_orders", _list_orders)

    client = flask_app.app.test_client()
    _as_admin(client)
    resp = client.get("/api/admin/orders?status=SHIPPED&limit=5")
    bad = client.get("/api/admin/orders?status=lost")

    assert resp.status_code == 200
    body = resp.get_json() or {}
    assert body["total"] == 1
    assert body["limit"] == 5
    assert seen["status"] == "shipped"
    assert bad.status_code == 400


def test_update_order_item_records_acting_admin(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    conn = _disable_runtime_guards(monkeypatch)
    seen: dict[str, Any] = {}

    def _update(_conn: object, order_id: int, item_id: str, changes: dict[str, Any], *, admin_id: int | None):
        seen.update(order_id=order_id, item_id=item_id, changes=changes, admin_id=admin_id)
        return {"id": order_id, "total_price": Decimal("10.00")}, {"id": item_id, "quantity": 1}

    monkeypatch.setattr(orders_api, "update_order_item", _update)

    client = flask_app.app.test_client()
    _as_admin(client)
    resp = client.put("/api/orders/7/items/line-1", json={"quantity": 1})

    assert resp.status_code == 200
    assert seen == {"order_id": 7, "item_id": "line-1", "changes": {"quantity": 1}, "admin_id": 1}
    assert conn.commits == 1


def test_edit_order_without_snapshot_is_conflict(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    _disable_runtime_guards(monkeypatch)

    def _add(_conn: object, order_id: int, _item: dict[str, Any], *, admin_id: int | None):
        raise ConflictError(f"order {order_id} has no snapshot; run backfill-snapshots first")

    monkeypatch.setattr(orders_api, "add_order_item", _add)

    client = flask_app.app.test_client()
    _as_admin(client)
    resp = client.post("/api/orders/7/items", json={"product_name": "Sink", "quantity": 1, "unit_price": 5})

    assert resp.status_code == 409
