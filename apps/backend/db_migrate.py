"""Schema migrations for the ezbox store.

``migrations/NNN_name.sql`` files run statement by statement; ``NNN_name.py``
files are imported and their ``upgrade(conn)`` is called. Files run in name
order and each applied stem is written to ``schema_migrations``. The API
refuses traffic while any file is unapplied (see ``ensure_schema_current``).

    ezbox migrate [--dry-run]
    python -m apps.backend.db_migrate --migrations-dir migrations
"""

from __future__ import annotations

import argparse
import importlib.util
import logging
from contextlib import contextmanager
from pathlib import Path

from apps.backend.db import db_conn
from infra.config import get_settings

_LOGGER = logging.getLogger(__name__)

DEFAULT_MIGRATIONS_DIR = Path(__file__).resolve().parents[2] / "migrations"

_CREATE_VERSIONS_TABLE = """
CREATE TABLE IF NOT EXISTS schema_migrations (
  version    TEXT PRIMARY KEY,
  applied_at TIMESTAMPTZ NOT NULL DEFAULT now()
)
"""


def _ensure_migrations_table(conn) -> None:
    with conn.cursor() as cur:
        cur.execute(_CREATE_VERSIONS_TABLE)
    conn.commit()


def _applied_versions(conn) -> set[str]:
    with conn.cursor() as cur:
        cur.execute("SELECT version FROM schema_migrations")
        return {str(row[0]) for row in cur.fetchall() or () if row and row[0]}


def _dollar_tag_at(sql: str, i: int) -> str | None:
    """Return the ``$tag$`` opener starting at ``i`` (``$$`` included) or None."""
    j = i + 1
    while j < len(sql) and (sql[j].isalnum() or sql[j] == "_"):
        j += 1
    if j < len(sql) and sql[j] == "$":
        return sql[i : j + 1]
    return None


def _split_sql(sql: str) -> list[str]:
    """Split a SQL script on top-level semicolons.

    Semicolons inside single-quoted literals, ``--`` and ``/* */`` comments and
    dollar-quoted bodies (``$$ ... $$`` or ``$fn$ ... $fn$``) do not end a
    statement.
    """
    statements: list[str] = []
    start = 0
    i = 0
    n = len(sql)
    while i < n:
        ch = sql[i]
        two = sql[i : i + 2]
        if two == "--":
            end = sql.find("\n", i)
            i = n if end == -1 else end + 1
            continue
        if two == "/*":
            end = sql.find("*/", i + 2)
            i = n if end == -1 else end + 2
            continue
        if ch == "'":
            i += 1
            while i < n:
                if sql[i] == "'":
                    if sql[i + 1 : i + 2] == "'":
                        i += 2
                        continue
                    break
                i += 1
            i += 1
            continue
        if ch == "$":
            tag = _dollar_tag_at(sql, i)
            if tag is not None:
                end = sql.find(tag, i + len(tag))
                i = n if end == -1 else end + len(tag)
                continue
        if ch == ";":
            stmt = sql[start:i].strip()
            if stmt:
                statements.append(stmt)
            start = i + 1
        i += 1

    tail = sql[start:].strip()
    if tail:
        statements.append(tail)
    return statements


def _db_url() -> str:
    url = (get_settings(reload=True).db.url or "").strip()
    if not url:
        raise RuntimeError("DB_URL is not set. Use `ezbox migrate --db-url ...` or set DB_URL.")
    return url


@contextmanager
def _direct_conn():
    # Outside the pool: CONCURRENTLY needs a connection we can flip to autocommit.
    import psycopg2  # type: ignore

    conn = psycopg2.connect(dsn=_db_url())
    try:
        yield conn
    finally:
        conn.close()


def _execute_concurrently(stmt: str) -> None:
    with _direct_conn() as conn:
        conn.autocommit = True
        with conn.cursor() as cur:
            cur.execute(stmt)


def _execute_stmt(conn, stmt: str) -> None:
    """Run one statement and commit; ``CONCURRENTLY`` index builds go to a direct connection."""
    sql = stmt.strip()
    if not sql:
        return
    if "CONCURRENTLY" not in sql.upper():
        with conn.cursor() as cur:
            cur.execute(sql)
        conn.commit()
    else:
        _execute_concurrently(sql)


def _load_py_migration(path: Path):
    """Import ``path`` as a throwaway module and return it; it must define ``upgrade``."""
    spec = importlib.util.spec_from_file_location(f"ezbox_migration_{path.stem}", path)
    if spec is None or spec.loader is None:
        raise RuntimeError(f"Cannot import migration {path}")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)  # type: ignore[call-arg]
    if not callable(getattr(module, "upgrade", None)):
        raise RuntimeError(f"Migration {path} does not define upgrade(conn)")
    return module


def _apply(conn, path: Path) -> None:
    if path.suffix == ".sql":
        for stmt in _split_sql(path.read_text(encoding="utf-8")):
            _execute_stmt(conn, stmt)
    else:
        _load_py_migration(path).upgrade(conn)
    with conn.cursor() as cur:
        cur.execute("INSERT INTO schema_migrations (version) VALUES (%s)", (path.stem,))
    conn.commit()


def _iter_migration_files(migrations_dir: Path) -> list[Path]:
    """``.sql`` and ``.py`` files sorted by name; names starting with ``_`` are skipped."""
    if not migrations_dir.is_dir():
        return []
    return sorted(
        (
            entry
            for entry in migrations_dir.iterdir()
            if entry.is_file() and entry.suffix in (".sql", ".py") and not entry.name.startswith("_")
        ),
        key=lambda entry: entry.name,
    )


def pending_migration_versions(conn, *, migrations_dir: Path) -> list[str]:
    """Versions (file stems) present on disk but missing from ``schema_migrations``."""
    _ensure_migrations_table(conn)
    done = _applied_versions(conn)
    return [path.stem for path in _iter_migration_files(migrations_dir) if path.stem not in done]


def ensure_schema_current(*, migrations_dir: Path = DEFAULT_MIGRATIONS_DIR) -> None:
    """Raise ``RuntimeError`` naming the pending versions if the database is behind."""
    with db_conn() as conn:
        behind = pending_migration_versions(conn, migrations_dir=migrations_dir)
    if behind:
        raise RuntimeError(
            "Database schema is out of date; pending: "
            + ", ".join(behind)
            + ". Run `ezbox migrate` before starting the API."
        )


def run_migrations(*, migrations_dir: Path = DEFAULT_MIGRATIONS_DIR, dry_run: bool = False) -> list[str]:
    """Apply pending migrations in order and return their versions.

    With ``dry_run`` nothing is executed; the pending files are printed instead.
    Each migration commits together with its ``schema_migrations`` row.
    """
    with db_conn() as conn:
        todo = set(pending_migration_versions(conn, migrations_dir=migrations_dir))
        files = [path for path in _iter_migration_files(migrations_dir) if path.stem in todo]

        if dry_run:
            if not files:
                print("Schema is up to date.")
            for path in files:
                print(f"would apply {path.name}")
            return [path.stem for path in files]

        for path in files:
            _LOGGER.info("applying migration %s", path.name)
            _apply(conn, path)
            print(f"applied {path.stem}")
        return [path.stem for path in files]


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Bring the store schema up to date.")
    parser.add_argument("--dry-run", action="store_true", help="List pending migrations only.")
    parser.add_argument(
        "--migrations-dir",
        default=str(DEFAULT_MIGRATIONS_DIR),
        help="Directory holding the NNN_name.sql / NNN_name.py files.",
    )
    ns = parser.parse_args(argv)
    run_migrations(migrations_dir=Path(ns.migrations_dir), dry_run=ns.dry_run)


if __name__ == "__main__":
    main()
