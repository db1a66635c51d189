"""Tests for the order snapshot backfill worker."""

from __future__ import annotations

from decimal import Decimal
from types import SimpleNamespace
from typing import Any

import psycopg2
import pytest

import apps.worker.backfill_snapshots as backfill
from tests.factories import make_snapshot, make_snapshot_item


class _DummyConn:
    def __init__(self) -> None:
        self.commits = 0

    def __enter__(self) -> _DummyConn:
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:  # type: ignore[no-untyped-def]
        return False

    def commit(self) -> None:
        self.commits += 1


def _patch(
    monkeypatch: Any,
    orders: list[dict[str, Any]],
    snapshots: dict[int, Any],
) -> tuple[_DummyConn, list[tuple[int, dict[str, Any]]]]:
    conn = _DummyConn()
    stored: list[tuple[int, dict[str, Any]]] = []

    def _cart_snapshot(_conn: object, cart_id: int, *, backfilled: bool = False) -> dict[str, Any]:
        assert backfilled is True
        snap = snapshots[cart_id]
        if isinstance(snap, Exception):
            raise snap
        return snap

    def _store(_conn: object, order_id: int, snapshot: dict[str, Any]) -> bool:
        stored.append((order_id, snapshot))
        return True

    monkeypatch.setattr(backfill, "db_conn", lambda: conn)
    monkeypatch.setattr(backfill, "orders_missing_snapshot", lambda _conn, limit=None: orders[:limit])
    monkeypatch.setattr(backfill, "cart_snapshot", _cart_snapshot)
    monkeypatch.setattr(backfill, "store_snapshot", _store)
    return conn, stored


def test_backfill_writes_snapshot_and_keeps_going_after_failures(monkeypatch: Any) -> None:
    """A broken order is counted and reported; the rest of the batch still runs."""
    orders = [
        {"id": 1, "cart_id": 10, "total_price": Decimal("570000")},
        {"id": 2, "cart_id": None, "total_price": Decimal("0")},
        {"id": 3, "cart_id": 30, "total_price": Decimal("100")},
        {"id": 4, "cart_id": 40, "total_price": Decimal("100")},
    ]
    snapshots: dict[int, Any] = {
        10: make_snapshot(backfilled=True),
        30: psycopg2.OperationalError("connection reset"),
        40: {"items": [{"id": "x"}], "totals": {"subtotal": 0.0}},
    }
    conn, stored = _patch(monkeypatch, orders, snapshots)

    stats = backfill.run_backfill()

    assert stats.scanned == 4
    assert stats.written == 1
    assert stats.skipped == 1
    assert stats.failed == 2
    assert [order_id for order_id, _ in stored] == [1]
    assert conn.commits == 1
    assert stats.failures[0].startswith("order 3:")
    assert "missing" in stats.failures[1]


def test_backfill_dry_run_reports_mismatch_without_writing(monkeypatch: Any, capsys: Any) -> None:
    orders = [{"id": 7, "cart_id": 70, "total_price": Decimal("500000")}]
    snap = make_snapshot(make_snapshot_item(quantity=1, unit_price=285000.0, line_total=285000.0))
    conn, stored = _patch(monkeypatch, orders, {70: snap})

    stats = backfill.run_backfill(dry_run=True)

    out = capsys.readouterr().out
    assert stats.mismatched == 1
    assert stats.written == 0
    assert stored == []
    assert conn.commits == 0
    assert "WARN: order 7 total_price=500000.00" in out
    assert "DRY-RUN: order 7 items=1 total=285000.00" in out


def test_backfill_respects_limit(monkeypatch: Any) -> None:
    orders = [{"id": i, "cart_id": 10, "total_price": Decimal("570000")} for i in range(1, 6)]
    _patch(monkeypatch, orders, {10: make_snapshot()})

    stats = backfill.run_backfill(limit=2)

    assert stats.scanned == 2
    assert stats.written == 2


def test_order_whose_cart_is_now_empty_fails_and_is_not_written(monkeypatch: Any) -> None:
    """An empty rebuild would freeze a zero total, so the order stays unsnapshotted for a retry."""
    orders = [{"id": 9, "cart_id": 90, "total_price": Decimal("120000")}]
    empty = {"items": [], "totals": {"subtotal": 0.0, "discount": 0.0, "tax": 0.0, "total": 0.0}, "metadata": {}}
    conn, stored = _patch(monkeypatch, orders, {90: empty})

    stats = backfill.run_backfill()

    assert stats.written == 0
    assert stats.failed == 1
    assert stats.mismatched == 0
    assert stored == []
    assert conn.commits == 0
    assert "cart has no items" in stats.failures[0]


def test_main_requires_db_url(monkeypatch: Any) -> None:
    monkeypatch.setattr(backfill, "get_settings", lambda reload=False: SimpleNamespace(db=SimpleNamespace(url="")))

    with pytest.raises(SystemExit, match="Missing --db-url"):
        backfill.main([])


def test_main_exits_nonzero_when_any_order_failed(monkeypatch: Any, capsys: Any) -> None:
    monkeypatch.setattr(
        backfill, "get_settings", lambda reload=False: SimpleNamespace(db=SimpleNamespace(url="postgresql://localhost/ezbox"))
    )
    orders = [{"id": 9, "cart_id": 90, "total_price": Decimal("1")}]
    _patch(monkeypatch, orders, {90: LookupError("cart 90 not found")})

    with pytest.raises(SystemExit) as excinfo:
        backfill.main([])

    assert excinfo.value.code == 1
    out = capsys.readouterr().out
    assert "failed=1" in out
    assert "FAILED: order 9: cart 90 not found" in out
