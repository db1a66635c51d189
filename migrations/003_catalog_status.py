"""
Soft-delete status for catalog tables.

Adds ``status`` (active/inactive/draft) to categories, products,
parameter_groups and parameters. Existing rows become ``active``.
"""

from __future__ import annotations

CATALOG_TABLES = ("categories", "products", "parameter_groups", "parameters")
CATALOG_STATUSES = ("active", "inactive", "draft")


def _col_exists(cur, table: str, column: str) -> bool:
    cur.execute(
        """
        SELECT EXISTS (
          SELECT 1
          FROM information_schema.columns
          WHERE table_schema = 'public'
            AND table_name = %s
            AND column_name = %s
        )
        """,
        (table, column),
    )
    row = cur.fetchone()
    return bool(row and row[0])


def upgrade(conn) -> None:
    """Add and backfill the status column on every catalog table."""
    allowed = ", ".join(f"'{s}'" for s in CATALOG_STATUSES)
    with conn.cursor() as cur:
        for table in CATALOG_TABLES:
            if not _col_exists(cur, table, "status"):
                # Nullable first so the backfill does not hold a rewrite lock.
                cur.execute(f"ALTER TABLE {table} ADD COLUMN status TEXT")
                cur.execute(f"UPDATE {table} SET status = 'active' WHERE status IS NULL")
                cur.execute(f"ALTER TABLE {table} ALTER COLUMN status SET DEFAULT 'active'")
                cur.execute(f"ALTER TABLE {table} ALTER COLUMN status SET NOT NULL")
            cur.execute(f"ALTER TABLE {table} DROP CONSTRAINT IF EXISTS {table}_status_check")
            cur.execute(
                f"ALTER TABLE {table} ADD CONSTRAINT {table}_status_check CHECK (status IN ({allowed}))"
            )
            cur.execute(f"CREATE INDEX IF NOT EXISTS idx_{table}_status ON {table} (status)")
