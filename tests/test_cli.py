"""Tests for the ezbox command line entrypoint."""

from __future__ import annotations

from typing import Any

import pytest

import apps.backend.accounts as accounts
import apps.backend.db as db
import apps.worker.backfill_snapshots as backfill
import cli
from apps.backend.errors import ConflictError
from infra.config import clear_settings_cache


class _DummyConn:
    def __init__(self) -> None:
        self.commits = 0

    def __enter__(self) -> _DummyConn:
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:  # type: ignore[no-untyped-def]
        return False

    def commit(self) -> None:
        self.commits += 1


@pytest.fixture(autouse=True)
def _isolated_db_url(monkeypatch: Any):  # type: ignore[no-untyped-def]
    # Empty counts as unset; setenv also restores whatever cli.py writes.
    monkeypatch.setenv("DB_URL", "")
    monkeypatch.setenv("ADMIN_PASSWORD", "")
    yield
    clear_settings_cache()


def test_parser_knows_every_subcommand() -> None:
    parser = cli.build_parser()

    serve = parser.parse_args(["serve", "--port", "9000"])
    migrate = parser.parse_args(["migrate", "--db-url", "postgresql://x/db", "--dry-run"])
    fill = parser.parse_args(["backfill-snapshots", "--limit", "5"])
    admin = parser.parse_args(["add-admin", "--username", "owner"])

    assert serve.func is cli.cmd_serve and serve.port == 9000
    assert migrate.func is cli.cmd_migrate and migrate.dry_run is True
    assert fill.func is cli.cmd_backfill and fill.limit == 5
    assert admin.func is cli.cmd_add_admin and admin.email is None


def test_parser_requires_a_subcommand() -> None:
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args([])


def test_apply_db_url_needs_flag_or_env(monkeypatch: Any) -> None:
    args = cli.build_parser().parse_args(["migrate"])
    with pytest.raises(SystemExit, match="Missing --db-url"):
        cli._apply_db_url(args)

    monkeypatch.setenv("DB_URL", "postgresql://env/db")
    cli._apply_db_url(args)


def test_backfill_forwards_flags(monkeypatch: Any) -> None:
    seen: list[list[str]] = []
    monkeypatch.setattr(backfill, "main", lambda argv: seen.append(list(argv)))

    cli.main(["backfill-snapshots", "--db-url", "postgresql://x/db", "--dry-run", "--limit", "3"])

    assert seen == [["--db-url", "postgresql://x/db", "--dry-run", "--limit", "3"]]


def test_add_admin_creates_and_commits(monkeypatch: Any, capsys: Any) -> None:
    conn = _DummyConn()
    created: dict[str, Any] = {}

    def _create(_conn: object, **kwargs: Any) -> dict[str, Any]:
        created.update(kwargs)
        return {"id": 1, "username": kwargs["username"]}

    monkeypatch.setattr(db, "db_conn", lambda: conn)
    monkeypatch.setattr(accounts, "create_admin", _create)
    monkeypatch.setenv("ADMIN_PASSWORD", "secret1")

    cli.main(["add-admin", "--db-url", "postgresql://x/db", "--username", "owner", "--email", "o@example.com"])

    assert created == {"username": "owner", "password": "secret1", "email": "o@example.com"}
    assert conn.commits == 1
    assert "Created admin id=1 username=owner" in capsys.readouterr().out


def test_add_admin_reports_duplicate(monkeypatch: Any) -> None:
    def _create(_conn: object, **kwargs: Any) -> dict[str, Any]:
        raise ConflictError(f"admin already exists: {kwargs['username']}")

    monkeypatch.setattr(db, "db_conn", lambda: _DummyConn())
    monkeypatch.setattr(accounts, "create_admin", _create)

    with pytest.raises(SystemExit, match="Cannot create admin: admin already exists"):
        cli.main(["add-admin", "--db-url", "postgresql://x/db", "--username", "owner", "--password", "secret1"])


def test_add_admin_prompt_mismatch(monkeypatch: Any) -> None:
    answers = iter(["secret1", "secret2"])
    monkeypatch.setattr(cli.getpass, "getpass", lambda _prompt="": next(answers))

    with pytest.raises(SystemExit, match="do not match"):
        cli.main(["add-admin", "--db-url", "postgresql://x/db", "--username", "owner"])
