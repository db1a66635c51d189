"""
ezbox CLI (flat-layout friendly).

Usage
-----
ezbox serve --host 0.0.0.0 --port 8000
ezbox migrate --db-url "postgresql://..." [--dry-run]
ezbox backfill-snapshots --db-url "postgresql://..." [--dry-run] [--limit 100]
ezbox add-admin --username owner --email owner@example.com
"""

from __future__ import annotations

import argparse
import getpass
import os
from pathlib import Path
from typing import List, Optional


def _env_default(name: str, default: Optional[str] = None) -> Optional[str]:
    v = os.environ.get(name)
    if v is None or v == "":
        return default
    return v


def _apply_db_url(args: argparse.Namespace) -> None:
    """Point settings at ``--db-url`` before anything opens a connection."""
    db_url = getattr(args, "db_url", None) or _env_default("DB_URL")
    if not db_url:
        raise SystemExit("Missing --db-url (or DB_URL env var).")
    os.environ["DB_URL"] = db_url

    from infra.config import clear_settings_cache

    clear_settings_cache()


def cmd_serve(args: argparse.Namespace) -> None:
    # Importing the app module builds the Flask app from settings.
    from apps.flask_api.flask_app import run_server

    run_server(host=args.host, port=args.port)


def cmd_migrate(args: argparse.Namespace) -> None:
    _apply_db_url(args)
    from apps.backend.db_migrate import DEFAULT_MIGRATIONS_DIR, run_migrations

    migrations_dir = Path(args.migrations_dir) if args.migrations_dir else DEFAULT_MIGRATIONS_DIR
    applied = run_migrations(migrations_dir=migrations_dir, dry_run=bool(args.dry_run))
    if not args.dry_run:
        print(f"OK: {len(applied)} migration(s) applied")


def cmd_backfill(args: argparse.Namespace) -> None:
    from apps.worker.backfill_snapshots import main as backfill_main

    argv: List[str] = []
    if args.db_url:
        argv += ["--db-url", args.db_url]
    if args.dry_run:
        argv.append("--dry-run")
    if args.limit is not None:
        argv += ["--limit", str(args.limit)]
    backfill_main(argv)


def cmd_add_admin(args: argparse.Namespace) -> None:
    _apply_db_url(args)
    from apps.backend.accounts import create_admin
    from apps.backend.db import db_conn
    from apps.backend.errors import ConflictError

    password = args.password or _env_default("ADMIN_PASSWORD")
    if not password:
        password = getpass.getpass("Password: ")
        if password != getpass.getpass("Repeat password: "):
            raise SystemExit("Passwords do not match.")

    try:
        with db_conn() as conn:
            admin = create_admin(conn, username=args.username, password=password, email=args.email)
            conn.commit()
    except (ValueError, ConflictError) as exc:
        raise SystemExit(f"Cannot create admin: {exc}") from exc
    print(f"Created admin id={admin['id']} username={admin['username']}")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="ezbox", description="ezbox storefront backend CLI")
    sub = p.add_subparsers(dest="cmd", required=True)

    def add_db_url(sp: argparse.ArgumentParser) -> None:
        sp.add_argument("--db-url", default=None, help="Database URL (or DB_URL env var).")

    sp = sub.add_parser("serve", help="Run the JSON API with the development server.")
    sp.add_argument("--host", default=None, help="Bind address (default: API_HOST).")
    sp.add_argument("--port", type=int, default=None, help="Port (default: API_PORT).")
    sp.set_defaults(func=cmd_serve)

    sp = sub.add_parser("migrate", help="Apply pending database migrations.")
    add_db_url(sp)
    sp.add_argument("--dry-run", action="store_true", help="List pending migrations only.")
    sp.add_argument("--migrations-dir", default=None, help="Migrations directory. Default: ./migrations")
    sp.set_defaults(func=cmd_migrate)

    sp = sub.add_parser("backfill-snapshots", help="Build missing order snapshots from cart contents.")
    add_db_url(sp)
    sp.add_argument("--dry-run", action="store_true", help="Compute without writing.")
    sp.add_argument("--limit", type=int, default=None, help="Max orders to process.")
    sp.set_defaults(func=cmd_backfill)

    sp = sub.add_parser("add-admin", help="Create an admin account.")
    add_db_url(sp)
    sp.add_argument("--username", required=True, help="Admin login name.")
    sp.add_argument("--email", default=None, help="Email for order notifications.")
    sp.add_argument("--password", default=None, help="Password (or ADMIN_PASSWORD env var; prompted otherwise).")
    sp.set_defaults(func=cmd_add_admin)

    return p


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    args.func(args)


if __name__ == "__main__":
    main()
