"""Backfill ``orders.snapshot_data`` for orders placed before snapshots existed.

Each order is rebuilt from its cart's current lines, flagged with
``metadata.backfilled``, and written in its own transaction. The stored
``total_price`` is left as it is; a warning is printed when it differs from
the rebuilt total by more than the tolerance.
"""

from __future__ import annotations

import argparse
import logging
import os
from dataclasses import dataclass, field
from typing import Any

import psycopg2

from apps.backend.carts import cart_snapshot
from apps.backend.db import db_conn
from apps.backend.orders import orders_missing_snapshot, store_snapshot
from infra.config import get_settings
from services.pricing import to_money
from services.snapshot import TOTAL_MISMATCH_TOLERANCE, snapshot_total, validate_snapshot

logger = logging.getLogger(__name__)


@dataclass
class BackfillStats:
    scanned: int = 0
    written: int = 0
    skipped: int = 0
    failed: int = 0
    mismatched: int = 0
    failures: list[str] = field(default_factory=list)


def _backfill_one(order: dict[str, Any], *, dry_run: bool, stats: BackfillStats) -> None:
    order_id = int(order["id"])
    cart_id = order.get("cart_id")
    if cart_id is None:
        stats.skipped += 1
        print(f"SKIP: order {order_id} has no cart_id")
        return

    with db_conn() as conn:
        snapshot = cart_snapshot(conn, int(cart_id), backfilled=True)
        if not snapshot.get("items"):
            raise ValueError("cart has no items")
        problems = validate_snapshot(snapshot)
        if problems:
            raise ValueError("; ".join(problems))

        computed = snapshot_total(snapshot)
        stored = to_money(order.get("total_price"))
        if abs(computed - stored) > TOTAL_MISMATCH_TOLERANCE:
            stats.mismatched += 1
            print(f"WARN: order {order_id} total_price={stored} but rebuilt snapshot total={computed}")

        if dry_run:
            print(f"DRY-RUN: order {order_id} items={len(snapshot['items'])} total={computed}")
            return
        if store_snapshot(conn, order_id, snapshot):
            conn.commit()
            stats.written += 1
        else:
            stats.skipped += 1


def run_backfill(*, dry_run: bool = False, limit: int | None = None) -> BackfillStats:
    """Backfill every order without a snapshot; one failure never stops the batch."""
    with db_conn() as conn:
        orders = orders_missing_snapshot(conn, limit=limit)

    stats = BackfillStats(scanned=len(orders))
    for order in orders:
        try:
            _backfill_one(order, dry_run=dry_run, stats=stats)
        except (psycopg2.Error, LookupError, ValueError) as exc:
            stats.failed += 1
            stats.failures.append(f"order {order.get('id')}: {exc}")
            logger.error("snapshot backfill failed order_id=%s error=%s", order.get("id"), exc)
    return stats


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser for the snapshot backfill."""
    parser = argparse.ArgumentParser(description="Backfill missing order snapshots from cart contents.")
    parser.add_argument("--db-url", default=None, help="Database URL (or DB_URL env var).")
    parser.add_argument("--dry-run", action="store_true", help="Compute snapshots without writing them.")
    parser.add_argument("--limit", type=int, default=None, help="Max orders to process.")
    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entrypoint."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.db_url:
        os.environ["DB_URL"] = args.db_url
    if not get_settings(reload=True).db.url:
        raise SystemExit("Missing --db-url (or DB_URL env var).")

    limit = max(1, int(args.limit)) if args.limit is not None else None
    stats = run_backfill(dry_run=bool(args.dry_run), limit=limit)

    mode = "dry-run" if args.dry_run else "write"
    print(
        f"Backfill complete ({mode}): scanned={stats.scanned} written={stats.written} "
        f"skipped={stats.skipped} mismatched={stats.mismatched} failed={stats.failed}"
    )
    for line in stats.failures:
        print(f"FAILED: {line}")
    if stats.failed:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
