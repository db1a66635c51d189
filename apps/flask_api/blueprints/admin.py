"""Admin dashboard Blueprint: order stats, audit history and data export."""

from typing import Any

from flask import Blueprint, Response

from apps.backend.db import db_conn
from apps.backend.history import check_entity_type, get_history
from apps.backend.orders import order_stats
from apps.flask_api.utils import _err, _json_body, _ok, _parse_int, _q
from apps.flask_api.utils.auth import current_admin_name, require_admin
from infra.logging_config import StructuredLogger
from services.export import (
    EXPORT_FORMATS,
    EXPORTABLE_TABLES,
    build_export_file,
    check_format,
    check_tables,
    fetch_tables,
    to_json_payload,
)

admin_bp = Blueprint("admin", __name__)

_LOG = StructuredLogger(__name__)


@admin_bp.route("/api/admin/stats", methods=["GET"])
@require_admin
def api_admin_stats() -> Any:
    """Order counts per status and revenue of non-cancelled orders."""
    with db_conn() as conn:
        stats = order_stats(conn)
    return _ok({"stats": stats})


@admin_bp.route("/api/history/<entity_type>/<int:entity_id>", methods=["GET"])
@require_admin
def api_history(entity_type: str, entity_id: int) -> Any:
    """Audit trail of one entity, newest first.

    Query params:
      limit: max rows (default 200)
    """
    try:
        kind = check_entity_type(entity_type)
        limit = _parse_int(_q("limit"), default=200, min_v=1, max_v=1000)
        with db_conn() as conn:
            items = get_history(conn, entity_type=kind, entity_id=entity_id, limit=limit)
        return _ok({"items": items})
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)


@admin_bp.route("/api/export", methods=["GET"])
@require_admin
def api_export_tables() -> Any:
    """Tables that can be exported."""
    return _ok({"tables": list(EXPORTABLE_TABLES), "formats": list(EXPORT_FORMATS)})


@admin_bp.route("/api/export", methods=["POST"])
@require_admin
def api_export() -> Any:
    """Export whole tables.

    JSON body:
      tables (required): list of table names from the export whitelist
      format: json (default) | csv | parquet

    Returns:
      json: ``{exported_at, exported_by, tables: {name: [rows]}}``
      csv: one attachment with a ``# Table: <name>`` section per table
      parquet: zip attachment with one ``<name>.parquet`` per table
    """
    try:
        payload = _json_body()
        tables = check_tables(payload.get("tables"))
        fmt = check_format(payload.get("format"))
        exported_by = current_admin_name()
        with db_conn() as conn:
            data = fetch_tables(conn, tables)
        _LOG.info(
            "data_export",
            tables=tables,
            fmt=fmt,
            rows=sum(len(rows) for rows in data.values()),
            exported_by=exported_by,
        )
        if fmt == "json":
            return _ok(to_json_payload(data, exported_by=exported_by))
        export = build_export_file(data, fmt=fmt, exported_by=exported_by)
        return Response(
            export.body,
            content_type=export.content_type,
            headers={"Content-Disposition": f'attachment; filename="{export.filename}"'},
        )
    except ValueError as exc:
        return _err("bad_request", str(exc), status=400)
