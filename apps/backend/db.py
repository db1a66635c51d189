"""Postgres access for the store (psycopg2).

One ``SimpleConnectionPool`` per process, sized from ``settings.db`` and
created on first use. A request borrows a connection with :func:`db_conn`,
runs its statements through the ``*_conn`` helpers and commits itself;
whatever it did not commit is rolled back when the connection is returned.

Rows are returned as dicts. JSONB values are sent as JSON text and cast in
SQL with ``%s::jsonb`` (see :func:`to_jsonb`).
"""

from __future__ import annotations

import atexit
import json
import logging
import uuid
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable, Iterator, Mapping, Optional, Sequence

from apps.backend.db_metrics import measure_query
from infra.config import get_settings

_LOGGER = logging.getLogger(__name__)

_POOL = None
_POOL_DSN: Optional[str] = None


def _get_pool():
    global _POOL, _POOL_DSN

    cfg = get_settings().db
    dsn = (cfg.url or "").strip()
    if not dsn:
        raise RuntimeError("DB_URL is not set")
    # A changed DB_URL (tests, `ezbox --db-url`) gets a fresh pool.
    if _POOL is None or _POOL_DSN != dsn:
        from psycopg2.pool import SimpleConnectionPool  # type: ignore

        _POOL = SimpleConnectionPool(
            minconn=1,
            maxconn=cfg.pool_maxconn,
            dsn=dsn,
            connect_timeout=cfg.connect_timeout,
        )
        _POOL_DSN = dsn
    return _POOL


@atexit.register
def _close_pool() -> None:
    global _POOL
    pool, _POOL = _POOL, None
    if pool is None:
        return
    try:
        pool.closeall()
    except Exception as exc:  # pylint: disable=broad-except
        _LOGGER.debug("pool close failed: %s", exc)


@contextmanager
def db_conn() -> Iterator[Any]:
    """Borrow a pooled connection for the duration of the block.

    Do not close it. Uncommitted work is rolled back on the way out, then the
    connection goes back to the pool (or is closed if the pool refuses it).
    """
    pool = _get_pool()
    conn = pool.getconn()
    try:
        yield conn
    finally:
        try:
            conn.rollback()
        except Exception as exc:  # pylint: disable=broad-except
            _LOGGER.warning("rollback before putconn failed: %s", exc)
        try:
            pool.putconn(conn)
        except Exception as exc:  # pylint: disable=broad-except
            _LOGGER.warning("putconn failed, closing connection: %s", exc)
            conn.close()


def _label(kind: str, sql: str) -> str:
    """``<kind>:<first sql keyword>``, e.g. ``all:select``; used as the timing label."""
    verb = sql.split(None, 1)[0].lower() if sql and sql.strip() else ""
    return f"{kind}:{verb}" if verb else kind


def _columns(cur: Any) -> list[str]:
    return [str(col[0]) if col and col[0] else f"col_{i}" for i, col in enumerate(cur.description or ())]


def execute_conn(conn: Any, sql: str, params: Optional[Sequence[Any]] = None) -> int:
    """Run a statement and return ``cursor.rowcount``."""
    with conn.cursor() as cur:
        with measure_query(_label("exec", sql)):
            cur.execute(sql, params or ())
        return int(cur.rowcount or 0)


def execute_many_conn(conn: Any, sql: str, seq_of_params: list[Sequence[Any]]) -> None:
    if not seq_of_params:
        return
    with conn.cursor() as cur:
        with measure_query(_label("many", sql)):
            cur.executemany(sql, seq_of_params)


def fetch_one_dict_conn(conn: Any, sql: str, params: Optional[Sequence[Any]] = None) -> Optional[dict[str, Any]]:
    """First row as a column-name dict, or None."""
    with conn.cursor() as cur:
        with measure_query(_label("one", sql)):
            cur.execute(sql, params or ())
        row = cur.fetchone()
        return None if row is None else dict(zip(_columns(cur), row, strict=False))


def fetch_all_dict_conn(conn: Any, sql: str, params: Optional[Sequence[Any]] = None) -> list[dict[str, Any]]:
    with conn.cursor() as cur:
        with measure_query(_label("all", sql)):
            cur.execute(sql, params or ())
        rows = cur.fetchall()
        names = _columns(cur)
        return [dict(zip(names, row, strict=False)) for row in rows]


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def to_jsonb(value: Any) -> Optional[str]:
    """Compact JSON text for a ``%s::jsonb`` parameter (None stays NULL)."""
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"), default=_json_default)


def update_row_conn(
    conn: Any,
    *,
    table: str,
    row_id: Any,
    values: Mapping[str, Any],
    jsonb_columns: Iterable[str] = (),
    touch_updated_at: bool = True,
) -> Optional[dict[str, Any]]:
    """``UPDATE <table> SET ... WHERE id = %s RETURNING *`` for the given columns.

    ``table`` and the keys of ``values`` are interpolated into SQL, so they must
    come from code (column whitelists), never from request input. With nothing
    to set the row is simply re-read.
    """
    json_cols = frozenset(jsonb_columns)
    sets = [f"{col} = %s::jsonb" if col in json_cols else f"{col} = %s" for col in values]
    params: list[Any] = [to_jsonb(val) if col in json_cols else val for col, val in values.items()]
    if touch_updated_at:
        sets.append("updated_at = now()")
    if not sets:
        return fetch_one_dict_conn(conn, f"SELECT * FROM {table} WHERE id = %s", (row_id,))
    return fetch_one_dict_conn(
        conn,
        f"UPDATE {table} SET {', '.join(sets)} WHERE id = %s RETURNING *",
        [*params, row_id],
    )
