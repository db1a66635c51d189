"""Request and response helpers shared by the store blueprints.

- responses: ``{"ok": ...}`` envelopes and the 500 body
- params: query-string and value coercion (ids, money, flags)
- payload: JSON body access and partial-update field handling
- auth: session and bearer principals, route guards (imported directly)
"""

from apps.flask_api.utils.params import (
    _MISSING,
    _coerce_money,
    _coerce_non_negative_int,
    _coerce_optional_id,
    _coerce_optional_text,
    _coerce_positive_int,
    _coerce_signed_money,
    _parse_bool,
    _parse_int,
    _q,
    _require_text,
)
from apps.flask_api.utils.payload import (
    _json_body,
    _payload_fields,
    _payload_selection,
    _payload_value,
)
from apps.flask_api.utils.responses import _err, _internal_error, _json, _ok

__all__ = [
    "_ok",
    "_err",
    "_json",
    "_internal_error",
    "_q",
    "_parse_int",
    "_parse_bool",
    "_coerce_optional_text",
    "_require_text",
    "_coerce_positive_int",
    "_coerce_non_negative_int",
    "_coerce_optional_id",
    "_coerce_money",
    "_coerce_signed_money",
    "_MISSING",
    "_json_body",
    "_payload_fields",
    "_payload_value",
    "_payload_selection",
]
