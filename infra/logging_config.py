"""Logging for the API, the backfill worker and the CLI.

Two output shapes share one call site, :class:`StructuredLogger`:

* text (default): ``2026-01-24 18:03:12,123Z | INFO | apps.backend.orders | order_created | order_id=7``
* JSON (``EZBOX_LOG_JSON=1``): one object per line with every event keyword
  and the current request context (``request_id``, ``user_id``, ``admin_id``)
  as top-level keys.

:func:`setup_logging` installs a stdout handler on the root logger. A root
logger that already has handlers (gunicorn, pytest) is left as it is unless
``EZBOX_LOG_OVERRIDE=1``.
"""

from __future__ import annotations

import json
import logging
import sys
import time
from collections.abc import Mapping
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

from infra.config import get_settings

request_ctx: ContextVar[dict[str, Any] | None] = ContextVar("request_ctx", default=None)

# Attributes every LogRecord carries; anything else on a record came from ``extra``.
_RECORD_BUILTINS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
    "message",
    "asctime",
    "taskName",
    "fields",
}

_QUIET_LOGGERS = ("boto3", "botocore", "s3transfer", "urllib3", "werkzeug")


def set_request_context(**kwargs: Any) -> None:
    """Merge ``kwargs`` into the context logged with every record; None values are skipped."""
    merged = dict(request_ctx.get() or {})
    merged.update((key, value) for key, value in kwargs.items() if value is not None)
    request_ctx.set(merged)


def clear_request_context() -> None:
    request_ctx.set({})


def get_request_context() -> dict[str, Any]:
    return dict(request_ctx.get() or {})


class JsonFormatter(logging.Formatter):
    """Single-line JSON records.

    Record fields win over ``extra`` keys, which win over ``extra_fields``
    (static service labels), which win over the request context.
    """

    def __init__(self, *, extra_fields: Mapping[str, Any] | None = None) -> None:
        super().__init__()
        self._static = dict(extra_fields or {})

    def format(self, record: logging.LogRecord) -> str:
        body: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
            "process": record.process,
        }
        if record.exc_info:
            body["exception"] = self.formatException(record.exc_info)

        layers = (
            {k: v for k, v in vars(record).items() if k not in _RECORD_BUILTINS},
            self._static,
            get_request_context(),
        )
        for layer in layers:
            for key, value in layer.items():
                body.setdefault(key, value)
        return json.dumps(body, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """``time | LEVEL | logger | event`` followed by ``key=value`` pairs."""

    converter = time.gmtime

    def __init__(self) -> None:
        super().__init__("%(asctime)sZ | %(levelname)s | %(name)s | %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = getattr(record, "fields", None)
        if isinstance(fields, Mapping) and fields:
            line = f"{line} | " + " ".join(f"{key}={value}" for key, value in fields.items())
        return line


class StructuredLogger:
    """Event logger: the message is a snake_case event name, details go in keywords.

        log = StructuredLogger(__name__)
        log.info("order_created", order_id=7, total="120000.00")
    """

    def __init__(self, name: str) -> None:
        self._logger = logging.getLogger(name)

    def _emit(self, level: int, event: str, fields: dict[str, Any], exc_info: bool = False) -> None:
        self._logger.log(level, event, extra={"event": event, "fields": fields, **fields}, exc_info=exc_info)

    def debug(self, event: str, **fields: Any) -> None:
        self._emit(logging.DEBUG, event, fields)

    def info(self, event: str, **fields: Any) -> None:
        self._emit(logging.INFO, event, fields)

    def warning(self, event: str, **fields: Any) -> None:
        self._emit(logging.WARNING, event, fields)

    def error(self, event: str, **fields: Any) -> None:
        self._emit(logging.ERROR, event, fields)

    def exception(self, event: str, **fields: Any) -> None:
        """ERROR with the current traceback."""
        self._emit(logging.ERROR, event, fields, exc_info=True)


def setup_logging(
    *,
    level: str | None = None,
    json_logs: bool | None = None,
    override_root_handlers: bool | None = None,
    extra_fields: Mapping[str, Any] | None = None,
) -> None:
    """Configure the root logger; arguments left as None come from ``Settings.logging``."""
    configured = get_settings(reload=True).logging
    level_name = (level or configured.level).upper()
    use_json = configured.json_logs if json_logs is None else json_logs
    replace = configured.override_root_handlers if override_root_handlers is None else override_root_handlers

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter(extra_fields=extra_fields) if use_json else TextFormatter())

    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name, logging.INFO))
    if replace:
        for existing in list(root.handlers):
            root.removeHandler(existing)
    if replace or not root.handlers:
        root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
