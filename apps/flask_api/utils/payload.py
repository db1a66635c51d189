"""Payload helpers for Flask API.

Provides utilities for reading JSON request bodies and turning them into the
column dictionaries the data-access layer accepts.
"""

from typing import Any, Callable, Dict, Mapping, Optional

from flask import request

from apps.flask_api.utils.params import _MISSING


def _json_body() -> Dict[str, Any]:
    """Return the request JSON body as a dict.

    Malformed JSON is rejected by Flask with a 400; a body that is valid JSON
    but not an object raises ``ValueError``.
    """
    payload = request.get_json(force=True, silent=False) or {}
    if not isinstance(payload, dict):
        raise ValueError("request body must be a JSON object")
    return payload


def _payload_fields(
    payload: Mapping[str, Any],
    coercers: Mapping[str, Callable[[Any], Any]],
    *,
    required: tuple[str, ...] = (),
) -> Dict[str, Any]:
    """Coerce the present keys of ``payload`` with per-field functions.

    Absent keys are left out so partial updates only touch what was sent.

    Args:
        payload: JSON payload dictionary
        coercers: Field name to coercion function
        required: Fields that must be present and non-empty

    Returns:
        Dictionary of coerced values

    Raises:
        ValueError: If a required field is missing or a coercer rejects a value
    """
    for key in required:
        if payload.get(key) is None or payload.get(key) == "":
            raise ValueError(f"{key} is required")
    values: Dict[str, Any] = {}
    for key, coerce in coercers.items():
        if key in payload:
            values[key] = coerce(payload.get(key))
    return values


def _payload_value(payload: Mapping[str, Any], key: str, coerce: Callable[[Any], Any]) -> Any:
    """Coerced value for ``key`` or ``_MISSING`` when the key is absent."""
    if key not in payload:
        return _MISSING
    return coerce(payload.get(key))


def _payload_selection(payload: Mapping[str, Any]) -> Optional[Any]:
    """Raw ``selected_parameters`` (``selectedParameters`` accepted as an alias)."""
    if "selected_parameters" in payload:
        return payload.get("selected_parameters")
    return payload.get("selectedParameters")
