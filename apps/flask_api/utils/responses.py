"""JSON envelopes for store responses.

Success bodies are ``{"ok": true, ...}``; failures are
``{"ok": false, "error": <code>, "message": <text>}``.
"""

import traceback
from typing import Any, Dict, Optional

from flask import jsonify

# Set from APIConfig.debug_errors when the app is built.
_API_DEBUG_ERRORS: bool = False


def set_debug_mode(enabled: bool) -> None:
    global _API_DEBUG_ERRORS
    _API_DEBUG_ERRORS = bool(enabled)


def _ok(data: Optional[Dict[str, Any]] = None, *, status: int = 200) -> Any:
    """``(response, status)`` with ``ok: true`` merged into ``data``."""
    body: Dict[str, Any] = {"ok": True, **(data or {})}
    return jsonify(body), status


def _err(
    code: str,
    message: str,
    *,
    status: int,
    extra: Optional[Dict[str, Any]] = None,
) -> Any:
    """Error envelope.

    Args:
        code: Machine-readable code (``bad_request``, ``conflict``, ...)
        message: Text safe to show to the shopper or admin
        status: HTTP status code
        extra: Additional keys merged into the body
    """
    body: Dict[str, Any] = {"ok": False, "error": code, "message": message, **(extra or {})}
    return jsonify(body), status


def _json(payload: Dict[str, Any], *, status: int = 200) -> Any:
    """Send ``payload`` as-is, adding ``ok`` from the status when absent."""
    body = payload if "ok" in payload else {**payload, "ok": status < 400}
    return jsonify(body), status


def _internal_error(exc: BaseException) -> Any:
    """500 response; exception detail and traceback only in debug mode."""
    extra = None
    if _API_DEBUG_ERRORS:
        extra = {
            "detail": str(exc),
            "traceback": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
        }
    return _err("internal_error", "internal error", status=500, extra=extra)
