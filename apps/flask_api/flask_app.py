"""flask_app.py

JSON API for the ezbox storefront.

Postgres is the source of truth; every handler checks out one pooled
connection, runs its statements in one transaction and commits explicitly.

Core concepts
-------------
- Public routes: catalog, specials, projects, cart and checkout.
- Customers and admins authenticate with the signed session cookie; admin
  routes also accept ``Authorization: Bearer <API_BEARER_TOKEN>``.
- Domain errors map to HTTP: ValueError 400, AuthenticationError 401,
  NotFoundError 404, ConflictError 409.

Env
---
- DB_URL (required) used by apps.backend.db
- API_SECRET_KEY signs session cookies

Run
---
ezbox serve            (or: FLASK_APP=apps.flask_api.flask_app flask run)
"""

from __future__ import annotations

import secrets
import threading
import time
import uuid
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from flask import Flask, Response, abort, request
from flask.json.provider import DefaultJSONProvider
from werkzeug.exceptions import HTTPException

from apps.backend.errors import AuthenticationError, ConflictError, NotFoundError
from apps.flask_api.blueprints import ALL_BLUEPRINTS
from apps.flask_api.blueprints.health import init_blueprint
from apps.flask_api.utils.auth import set_bearer_token
from apps.flask_api.utils.responses import _err, _internal_error, set_debug_mode
from infra.config import get_settings
from infra.logging_config import (
    StructuredLogger,
    clear_request_context,
    set_request_context,
    setup_logging,
)
from services.storage import StorageError


class _StoreJSONProvider(DefaultJSONProvider):
    """Money columns come back from psycopg2 as Decimal; render them as numbers."""

    @staticmethod
    def default(o: Any) -> Any:
        if isinstance(o, Decimal):
            return float(o)
        if isinstance(o, uuid.UUID):
            return str(o)
        return DefaultJSONProvider.default(o)


app = Flask(__name__)
app.json = _StoreJSONProvider(app)

_SETTINGS = get_settings()
_API = _SETTINGS.api

setup_logging(
    level=_SETTINGS.logging.level,
    json_logs=_SETTINGS.logging.json_logs,
    override_root_handlers=_SETTINGS.logging.override_root_handlers,
)
_LOG = StructuredLogger(__name__)

_API_DEBUG_ERRORS = bool(_API.debug_errors)
set_debug_mode(_API_DEBUG_ERRORS)

_API_BEARER_TOKEN = _API.bearer_token
set_bearer_token(_API_BEARER_TOKEN)

if _API.secret_key:
    app.secret_key = _API.secret_key
else:
    app.secret_key = secrets.token_hex(32)
    _LOG.warning("session_secret_generated", detail="API_SECRET_KEY unset; sessions reset on restart")

app.config.update(
    SESSION_COOKIE_HTTPONLY=True,
    SESSION_COOKIE_SAMESITE="Lax",
    SESSION_COOKIE_SECURE=bool(_API.session_cookie_secure),
    PERMANENT_SESSION_LIFETIME=timedelta(days=30),
    MAX_CONTENT_LENGTH=int(_SETTINGS.storage.max_upload_bytes) + 1024 * 1024,
)

for _bp in ALL_BLUEPRINTS:
    app.register_blueprint(_bp)
init_blueprint(_API.version)


# --------------------
# Request hooks
# --------------------

# Rate-limit groups by path prefix; the first match wins.
_RATE_GROUPS = ("/api/auth", "/api/cart", "/api/orders", "/api/custom-design")

# Health routes that must answer even when the schema is behind or the client is throttled.
_UNGATED_PATHS = frozenset({"/api/health/db", "/api/version"})


def _with_vary(current: Optional[str], name: str) -> str:
    """``current`` Vary value plus ``name``, without duplicating it."""
    names = [part.strip() for part in (current or "").split(",") if part.strip()]
    if name.lower() not in (existing.lower() for existing in names):
        names.append(name)
    return ", ".join(names)


def _client_ip() -> str:
    return request.headers.get("X-Forwarded-For", request.remote_addr) or "unknown"


@app.before_request
def _bind_request_context() -> None:
    request.environ["ezbox.started"] = time.monotonic()
    set_request_context(
        request_id=request.headers.get("X-Request-Id") or uuid.uuid4().hex,
        method=request.method,
        path=request.path,
    )


@app.after_request
def _finish_request(resp: Response) -> Response:
    started = request.environ.get("ezbox.started")
    elapsed_ms = None if started is None else max(0, int((time.monotonic() - started) * 1000))
    _LOG.info(
        "http_request",
        method=request.method,
        path=request.path,
        status=resp.status_code,
        ms=elapsed_ms,
        ip=_client_ip(),
        ua=request.headers.get("User-Agent", ""),
    )

    # Carts, orders and prices must never be served stale from intermediary caches.
    if request.path.startswith("/api/"):
        resp.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, max-age=0"
        resp.headers["Pragma"] = "no-cache"
        resp.headers["Expires"] = "0"
        vary = resp.headers.get("Vary")
        for name in ("Authorization", "Cookie"):
            vary = _with_vary(vary, name)
        resp.headers["Vary"] = vary
    return resp


@app.teardown_request
def _clear_context(_: Optional[BaseException]) -> None:
    clear_request_context()


class _TokenBucket:
    """Refills ``rate`` tokens per second up to ``size``; each request takes one."""

    __slots__ = ("size", "rate", "level", "stamp")

    def __init__(self, size: float, rate: float) -> None:
        self.size = float(size)
        self.rate = float(rate)
        self.level = self.size
        self.stamp = time.monotonic()

    def take(self) -> bool:
        now = time.monotonic()
        self.level = min(self.size, self.level + (now - self.stamp) * self.rate)
        self.stamp = now
        if self.level < 1.0:
            return False
        self.level -= 1.0
        return True


_rate_lock = threading.Lock()
_rate_buckets: Dict[str, _TokenBucket] = {}
_schema_gate_lock = threading.Lock()
_schema_gate_checked = False
_schema_gate_enabled = bool(_API.enforce_schema_gate)


def _rate_limits() -> Tuple[Optional[float], Optional[float]]:
    """``(requests per second, burst)``; ``(None, None)`` turns limiting off."""
    rps = _API.rate_limit_rps
    if rps is None:
        return None, None
    return rps, _API.rate_limit_burst or max(10.0, rps * 2.0)


def _rate_key() -> str:
    group = next((prefix for prefix in _RATE_GROUPS if request.path.startswith(prefix)), "/api/other")
    return f"{_client_ip()}|{group}"


@app.before_request
def _enforce_rate_limit() -> None:
    if not request.path.startswith("/api/") or request.path in _UNGATED_PATHS:
        return
    rps, burst = _rate_limits()
    if rps is None or burst is None:
        return

    key = _rate_key()
    with _rate_lock:
        bucket = _rate_buckets.setdefault(key, _TokenBucket(burst, rps))
        allowed = bucket.take()
    if not allowed:
        _LOG.warning("rate_limited", key=key)
        abort(429)


def _check_schema_once() -> None:
    # Checked lazily so importing the app never needs a database.
    global _schema_gate_checked
    if _schema_gate_checked or not _schema_gate_enabled:
        return
    with _schema_gate_lock:
        if not _schema_gate_checked:
            from apps.backend.db_migrate import DEFAULT_MIGRATIONS_DIR, ensure_schema_current

            ensure_schema_current(migrations_dir=DEFAULT_MIGRATIONS_DIR)
            _schema_gate_checked = True


@app.before_request
def _enforce_schema_gate() -> Optional[Any]:
    """Answer 503 ``schema_mismatch`` while migrations are pending."""
    if not request.path.startswith("/api/") or request.path in _UNGATED_PATHS:
        return None
    try:
        _check_schema_once()
    except RuntimeError as exc:
        _LOG.error("schema_gate_failed", detail=str(exc))
        return _err("schema_mismatch", str(exc), status=503)
    return None


# --------------------
# Error mapping
# --------------------

@app.errorhandler(NotFoundError)
def _err_not_found_row(exc: NotFoundError) -> Any:
    return _err("not_found", str(exc), status=404)


@app.errorhandler(ConflictError)
def _err_conflict(exc: ConflictError) -> Any:
    return _err("conflict", str(exc), status=409)


@app.errorhandler(AuthenticationError)
def _err_auth_failed(exc: AuthenticationError) -> Any:
    return _err("unauthorized", str(exc), status=401)


@app.errorhandler(StorageError)
def _err_storage(exc: StorageError) -> Any:
    _LOG.error("storage_failed", detail=str(exc))
    return _err("storage_error", "object storage unavailable", status=502)


@app.errorhandler(400)
def _err_400(exc: HTTPException) -> Any:
    return _err("bad_request", exc.description or "bad request", status=400)


@app.errorhandler(401)
def _err_401(_: Exception) -> Any:
    return _err("unauthorized", "authentication required", status=401)


@app.errorhandler(403)
def _err_403(_: Exception) -> Any:
    return _err("forbidden", "forbidden", status=403)


@app.errorhandler(404)
def _err_404(_: Exception) -> Any:
    return _err("not_found", "not found", status=404)


@app.errorhandler(405)
def _err_405(_: Exception) -> Any:
    return _err("method_not_allowed", "method not allowed", status=405)


@app.errorhandler(413)
def _err_413(_: Exception) -> Any:
    return _err("payload_too_large", "request body too large", status=413)


@app.errorhandler(429)
def _err_429(_: Exception) -> Any:
    return _err("rate_limited", "too many requests", status=429)


@app.errorhandler(500)
def _err_500(exc: Exception) -> Any:
    original = getattr(exc, "original_exception", None) or exc
    _LOG.exception("unhandled_exception", path=request.path, detail=str(original))
    return _internal_error(original)


def run_server(host: Optional[str] = None, port: Optional[int] = None) -> None:
    """Serve with the Werkzeug development server."""
    app.run(host=host or _API.host, port=int(port or _API.port))


if __name__ == "__main__":
    run_server()
