"""Admin data export: whole tables as JSON, sectioned CSV or zipped Parquet."""

from __future__ import annotations

import csv
import io
import json
import uuid
import zipfile
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, Mapping, Sequence

import pyarrow as pa
import pyarrow.parquet as pq

from apps.backend.db import fetch_all_dict_conn

EXPORTABLE_TABLES = (
    "categories",
    "products",
    "orders",
    "users",
    "specials",
    "parameters",
    "parameter_groups",
    "carts",
    "history",
    "product_in_cart",
    "special_items",
    "product_parameter_groups",
    "product_images",
    "custom_projects",
    "project_products",
)
EXPORT_FORMATS = ("json", "csv", "parquet")

# Columns never leave the database.
_EXCLUDED_COLUMNS = {"users": ("password_hash",)}


def check_tables(tables: Any) -> list[str]:
    if not isinstance(tables, list) or not tables:
        raise ValueError("tables must be a non-empty list")
    names = [str(t).strip() for t in tables]
    invalid = [t for t in names if t not in EXPORTABLE_TABLES]
    if invalid:
        raise ValueError(f"invalid tables: {', '.join(invalid)}")
    return list(dict.fromkeys(names))


def check_format(value: Any) -> str:
    fmt = str(value or "json").strip().lower()
    if fmt not in EXPORT_FORMATS:
        raise ValueError(f"format must be one of: {', '.join(EXPORT_FORMATS)}")
    return fmt


def fetch_tables(conn: Any, tables: Sequence[str]) -> dict[str, list[dict[str, Any]]]:
    """Read every row of each whitelisted table, ordered by ``id``."""
    out: dict[str, list[dict[str, Any]]] = {}
    for table in tables:
        if table not in EXPORTABLE_TABLES:
            raise ValueError(f"invalid table: {table}")
        rows = fetch_all_dict_conn(conn, f"SELECT * FROM {table} ORDER BY id ASC")
        hidden = _EXCLUDED_COLUMNS.get(table, ())
        out[table] = [{k: v for k, v in row.items() if k not in hidden} for row in rows]
    return out


def _plain(value: Any) -> Any:
    """Scalar form of a DB value for CSV and Parquet cells."""
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"), default=str)
    return value


def _columns(rows: Iterable[Mapping[str, Any]]) -> list[str]:
    cols: dict[str, None] = {}
    for row in rows:
        for key in row:
            cols.setdefault(key, None)
    return list(cols)


@dataclass
class ExportFile:
    filename: str
    content_type: str
    body: bytes


def export_stamp(now: datetime | None = None) -> str:
    return (now or datetime.now(timezone.utc)).strftime("%Y%m%dT%H%M%SZ")


def to_json_payload(data: Mapping[str, list[dict[str, Any]]], *, exported_by: str) -> dict[str, Any]:
    return {
        "exported_at": datetime.now(timezone.utc).isoformat(),
        "exported_by": exported_by,
        "tables": dict(data),
    }


def to_csv_text(data: Mapping[str, list[dict[str, Any]]], *, exported_by: str, now: datetime | None = None) -> str:
    """One text document with a ``# Table: <name>`` section per table."""
    buf = io.StringIO()
    buf.write("# Database Export\n")
    buf.write(f"# Exported at: {(now or datetime.now(timezone.utc)).isoformat()}\n")
    buf.write(f"# Exported by: {exported_by}\n")
    for table, rows in data.items():
        buf.write(f"\n# Table: {table}\n")
        cols = _columns(rows)
        if not cols:
            continue
        writer = csv.writer(buf, lineterminator="\n")
        writer.writerow(cols)
        for row in rows:
            writer.writerow(["" if row.get(c) is None else _plain(row.get(c)) for c in cols])
    return buf.getvalue()


def table_to_parquet_bytes(rows: Sequence[Mapping[str, Any]]) -> bytes:
    cols = _columns(rows)
    records = [{c: _plain(row.get(c)) for c in cols} for row in rows]
    # Empty tables keep an id column; every exportable table has one.
    table = pa.Table.from_pylist(records) if records else pa.table({"id": pa.array([], type=pa.int64())})
    sink = io.BytesIO()
    pq.write_table(table, sink, compression="zstd")
    return sink.getvalue()


def to_parquet_zip(data: Mapping[str, list[dict[str, Any]]]) -> bytes:
    """Zip archive holding ``<table>.parquet`` for each exported table."""
    out = io.BytesIO()
    with zipfile.ZipFile(out, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for table, rows in data.items():
            zf.writestr(f"{table}.parquet", table_to_parquet_bytes(rows))
    return out.getvalue()


def build_export_file(
    data: Mapping[str, list[dict[str, Any]]],
    *,
    fmt: str,
    exported_by: str,
    now: datetime | None = None,
) -> ExportFile:
    """Render a CSV or Parquet export as a downloadable file."""
    stamp = export_stamp(now)
    if fmt == "csv":
        return ExportFile(
            filename=f"database-export-{stamp}.csv",
            content_type="text/csv; charset=utf-8",
            body=to_csv_text(data, exported_by=exported_by, now=now).encode("utf-8"),
        )
    if fmt == "parquet":
        return ExportFile(
            filename=f"database-export-{stamp}.zip",
            content_type="application/zip",
            body=to_parquet_zip(data),
        )
    raise ValueError(f"no file rendering for format: {fmt}")
