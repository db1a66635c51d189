"""Liveness, database check, version metadata and the generated OpenAPI document."""

import re
from typing import Any

from flask import Blueprint, current_app, jsonify

from apps.backend.db import db_conn, fetch_one_dict_conn
from apps.flask_api.utils import _json, _ok
from version import APP_NAME, APP_VERSION

health_bp = Blueprint("health", __name__)

# Filled in by flask_app from APIConfig.version.
_API_VERSION: str = "v1"

# Werkzeug "<int:product_id>" -> OpenAPI "{product_id}".
_RULE_ARG = re.compile(r"<(?:[^:<>]+:)?([^<>]+)>")


def init_blueprint(api_version: str) -> None:
    global _API_VERSION
    _API_VERSION = api_version


@health_bp.route("/health", methods=["GET"])
def health() -> Any:
    """Process liveness; touches nothing else, so it stays cacheable and cheap."""
    return jsonify({"ok": True})


@health_bp.route("/api/health/db", methods=["GET"])
def api_health_db() -> Any:
    with db_conn() as conn:
        row = fetch_one_dict_conn(conn, "SELECT 1 AS ok")
    return _ok({"db": bool(row) and row.get("ok") == 1})


@health_bp.route("/api/version", methods=["GET"])
def api_version() -> Any:
    return _json(
        {
            "app": APP_NAME,
            "app_version": APP_VERSION,
            "version": _API_VERSION,
        }
    )


@health_bp.route("/openapi.json", methods=["GET"])
@health_bp.route("/api/openapi.json", methods=["GET"])
def api_openapi() -> Any:
    return _json(_build_openapi_spec())


def _build_openapi_spec() -> dict:
    """OpenAPI 3.0 skeleton listing every ``/api/`` route (plus ``/health``) and its methods.

    Operations carry only the Flask endpoint name as summary; request and
    response schemas are not described.
    """
    paths: dict[str, dict[str, Any]] = {}
    for rule in current_app.url_map.iter_rules():
        if not (rule.rule.startswith("/api/") or rule.rule == "/health"):
            continue
        operations = paths.setdefault(_RULE_ARG.sub(r"{\1}", rule.rule), {})
        for method in sorted((rule.methods or set()) - {"HEAD", "OPTIONS"}):
            operations[method.lower()] = {
                "summary": rule.endpoint,
                "responses": {"200": {"description": "OK"}},
            }
    return {
        "openapi": "3.0.0",
        "info": {
            "title": f"{APP_NAME} API",
            "version": _API_VERSION,
            "description": "Storefront and back-office API",
        },
        "servers": [{"url": "/"}],
        "paths": dict(sorted(paths.items())),
    }
