"""Tests for admin table export rendering."""

from __future__ import annotations

import io
import uuid
import zipfile
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

import pyarrow.parquet as pq
import pytest

import services.export as export

_NOW = datetime(2026, 5, 4, 8, 30, tzinfo=UTC)


def _data() -> dict[str, list[dict[str, Any]]]:
    return {
        "orders": [
            {
                "id": 1,
                "total_price": Decimal("550000.00"),
                "snapshot_data": {"items": [], "totals": {"total": 550000.0}},
                "created_at": _NOW,
                "secondary_phone": None,
            }
        ],
        "product_images": [{"id": uuid.UUID("00000000-0000-0000-0000-000000000001"), "product_id": 3}],
        "carts": [],
    }


def test_check_tables_validates_and_deduplicates() -> None:
    assert export.check_tables(["orders", "users", "orders"]) == ["orders", "users"]
    with pytest.raises(ValueError, match="invalid tables: admins"):
        export.check_tables(["orders", "admins"])
    with pytest.raises(ValueError, match="non-empty"):
        export.check_tables([])


def test_check_format_defaults_to_json() -> None:
    assert export.check_format(None) == "json"
    assert export.check_format("CSV") == "csv"
    with pytest.raises(ValueError):
        export.check_format("xlsx")


def test_fetch_tables_drops_password_hash(monkeypatch: Any) -> None:
    captured: list[str] = []

    def _fake_fetch_all(_conn: object, sql: str, _params: Any = None) -> list[dict[str, Any]]:
        captured.append(sql)
        return [{"id": 1, "phone": "99112233", "password_hash": "pbkdf2:..."}]

    monkeypatch.setattr(export, "fetch_all_dict_conn", _fake_fetch_all)

    data = export.fetch_tables(object(), ["users"])

    assert data == {"users": [{"id": 1, "phone": "99112233"}]}
    assert captured == ["SELECT * FROM users ORDER BY id ASC"]


def test_csv_export_has_one_section_per_table() -> None:
    text = export.to_csv_text(_data(), exported_by="owner", now=_NOW)

    assert text.startswith("# Database Export\n# Exported at: 2026-05-04T08:30:00+00:00\n# Exported by: owner\n")
    assert "# Table: orders\nid,total_price,snapshot_data,created_at,secondary_phone\n" in text
    assert '1,550000.0,"{""items"":[],""totals"":{""total"":550000.0}}",2026-05-04T08:30:00+00:00,\n' in text
    assert "# Table: product_images\nid,product_id\n00000000-0000-0000-0000-000000000001,3\n" in text
    assert text.rstrip().endswith("# Table: carts")


def test_parquet_export_zips_one_file_per_table() -> None:
    file = export.build_export_file(_data(), fmt="parquet", exported_by="owner", now=_NOW)

    assert file.filename == "database-export-20260504T083000Z.zip"
    assert file.content_type == "application/zip"
    with zipfile.ZipFile(io.BytesIO(file.body)) as zf:
        assert sorted(zf.namelist()) == ["carts.parquet", "orders.parquet", "product_images.parquet"]
        table = pq.read_table(io.BytesIO(zf.read("orders.parquet")))
    assert table.column("total_price").to_pylist() == [550000.0]


def test_json_payload_wraps_tables() -> None:
    payload = export.to_json_payload({"carts": []}, exported_by="owner")
    assert payload["exported_by"] == "owner"
    assert payload["tables"] == {"carts": []}


def test_build_export_file_rejects_json() -> None:
    with pytest.raises(ValueError):
        export.build_export_file({}, fmt="json", exported_by="owner")
