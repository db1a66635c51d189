"""Tests for special (bundle) endpoints."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

import apps.flask_api.blueprints.specials as specials_api
import apps.flask_api.flask_app as flask_app
import apps.flask_api.utils.auth as auth_utils


class _DummyConn:
    def __init__(self) -> None:
        self.commits = 0

    def __enter__(self) -> _DummyConn:
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:  # type: ignore[no-untyped-def]
        return False

    def commit(self) -> None:
        self.commits += 1


def _disable_runtime_guards(monkeypatch) -> _DummyConn:  # type: ignore[no-untyped-def]
    conn = _DummyConn()
    monkeypatch.setattr(flask_app, "_schema_gate_enabled", False)
    monkeypatch.setattr(flask_app, "_schema_gate_checked", True)
    monkeypatch.setattr(auth_utils, "_API_BEARER_TOKEN", "")
    monkeypatch.setattr(specials_api, "db_conn", lambda: conn)
    monkeypatch.setattr(
        specials_api,
        "original_prices",
        lambda _conn, specials: {int(s["id"]): Decimal("330000") for s in specials},
    )
    return conn


def _as_admin(client) -> None:  # type: ignore[no-untyped-def]
    with client.session_transaction() as sess:
        sess["admin_id"] = 1
        sess["admin_username"] = "owner"


def test_public_list_shows_available_specials_with_original_price(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    _disable_runtime_guards(monkeypatch)
    seen: list[bool] = []

    def _list(_conn: object, *, available_only: bool) -> list[dict[str, Any]]:
        seen.append(available_only)
        return [{"id": 4, "name": "Starter kitchen", "discounted_price": Decimal("300000")}]

    monkeypatch.setattr(specials_api, "list_specials", _list)

    client = flask_app.app.test_client()
    resp = client.get("/api/specials")

    assert resp.status_code == 200
    item = (resp.get_json() or {})["items"][0]
    assert item["original_price"] == 330000.0
    assert item["discounted_price"] == 300000.0
    assert seen == [True]


def test_admin_list_requires_admin(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    _disable_runtime_guards(monkeypatch)
    monkeypatch.setattr(specials_api, "list_specials", lambda _conn, *, available_only: [])

    client = flask_app.app.test_client()
    assert client.get("/api/admin/specials").status_code == 401
    _as_admin(client)
    assert client.get("/api/admin/specials").status_code == 200


def test_unavailable_special_hidden_from_public(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    _disable_runtime_guards(monkeypatch)
    monkeypatch.setattr(
        specials_api, "get_special", lambda _conn, sid: {"id": sid, "name": "Draft", "status": "draft", "items": []}
    )

    client = flask_app.app.test_client()
    assert client.get("/api/specials/4").status_code == 404
    _as_admin(client)
    resp = client.get("/api/specials/4")
    assert resp.status_code == 200
    assert (resp.get_json() or {})["special"]["original_price"] == 330000.0


def test_create_special_requires_positive_price(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    _disable_runtime_guards(monkeypatch)

    client = flask_app.app.test_client()
    _as_admin(client)
    missing = client.post("/api/specials", json={"name": "Starter kitchen"})
    zero = client.post("/api/specials", json={"name": "Starter kitchen", "discounted_price": 0})
    bad_status = client.post(
        "/api/specials", json={"name": "Starter kitchen", "discounted_price": 10, "status": "sold"}
    )

    assert missing.status_code == 400
    assert zero.status_code == 400
    assert bad_status.status_code == 400


def test_add_special_item_defaults_quantity_and_records_history(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    conn = _disable_runtime_guards(monkeypatch)
    history: list[dict[str, Any]] = []
    seen: dict[str, Any] = {}

    def _add(_conn: object, special_id: int, **kwargs: Any) -> dict[str, Any]:
        seen.update(kwargs)
        return {"id": 12, "special_id": special_id, **kwargs}

    monkeypatch.setattr(specials_api, "add_special_item", _add)
    monkeypatch.setattr(specials_api, "append_history", lambda _conn, **kw: history.append(kw))

    client = flask_app.app.test_client()
    _as_admin(client)
    resp = client.post("/api/specials/4/items", json={"product_id": 3, "selectedParameters": {"1": 5}})

    assert resp.status_code == 201
    assert seen == {"product_id": 3, "quantity": 1, "selected_parameters": {"1": 5}}
    assert history[0]["action"] == "item_added"
    assert history[0]["entity_id"] == 4
    assert history[0]["admin_id"] == 1
    assert conn.commits == 1


def test_update_special_item_needs_a_field(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    _disable_runtime_guards(monkeypatch)

    client = flask_app.app.test_client()
    _as_admin(client)
    resp = client.put("/api/specials/4/items/12", json={})

    assert resp.status_code == 400
