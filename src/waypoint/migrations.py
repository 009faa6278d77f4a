"""Schema migration framework for waypoint.

Migrations are version-keyed functions that transform the database schema
from one version to the next. Each migration receives a raw sqlite3.Connection
and must be idempotent (safe to re-run, using IF NOT EXISTS / IF EXISTS).

The runner reads ``PRAGMA user_version``, applies each pending migration in
its own ``BEGIN IMMEDIATE`` transaction and bumps ``user_version`` after each
step. A failed step is rolled back and reported as MigrationError.

Adding a migration:
  1. Increment CURRENT_SCHEMA_VERSION in db_schema.py
  2. Add ``migrate_v<N>_to_v<N+1>(conn)`` here and register it in MIGRATIONS
  3. Update SCHEMA_SQL to match the post-migration state
  4. Add a test in tests/test_migrations.py
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Protocol

from waypoint.db_schema import GRAPH_QUERIES_TABLE_SQL

logger = logging.getLogger(__name__)


class MigrationFn(Protocol):
    """Protocol for migration functions."""

    def __call__(self, conn: sqlite3.Connection) -> None: ...


def migrate_v1_to_v2(conn: sqlite3.Connection) -> None:
    """v1 → v2: Store the workflow archetype instead of inferring it.

    Changes:
      - workflows: add nullable 'archetype' column (NULL means infer from actions)
      - new index idx_workflows_archetype on workflows(archetype)
    """
    add_column(conn, "workflows", "archetype", "TEXT", default=None)
    add_index(conn, "idx_workflows_archetype", "workflows", ["archetype"])


def migrate_v2_to_v3(conn: sqlite3.Connection) -> None:
    """v2 → v3: Record graph query metrics.

    Changes:
      - new table graph_queries (no FK: queries may outlive their workflow)
      - new indexes idx_graph_queries_session, idx_graph_queries_type
    """
    conn.execute(GRAPH_QUERIES_TABLE_SQL)
    add_index(conn, "idx_graph_queries_session", "graph_queries", ["session_id", "created_at"])
    add_index(conn, "idx_graph_queries_type", "graph_queries", ["query_type"])


# Keys are the version being migrated FROM.
MIGRATIONS: dict[int, MigrationFn] = {
    1: migrate_v1_to_v2,
    2: migrate_v2_to_v3,
}


class MigrationError(Exception):
    """Raised when a migration fails."""

    def __init__(self, from_version: int, to_version: int, cause: Exception) -> None:
        self.from_version = from_version
        self.to_version = to_version
        self.cause = cause
        super().__init__(f"Migration v{from_version} → v{to_version} failed: {cause}")


def apply_pending_migrations(conn: sqlite3.Connection, target_version: int) -> int:
    """Apply all pending migrations from the current version up to *target_version*.

    Returns the number of migrations applied (0 if already up to date).

    Raises:
        MigrationError: If a migration is missing or fails. The database is
            left at the last successful version.
        ValueError: If the database is newer than *target_version*.
    """
    current: int = conn.execute("PRAGMA user_version").fetchone()[0]

    if current == target_version:
        return 0

    if current > target_version:
        msg = f"Database schema v{current} is newer than this version of waypoint (expects v{target_version}). Downgrade is not supported."
        raise ValueError(msg)

    applied = 0
    for version in range(current, target_version):
        migration = MIGRATIONS.get(version)
        if migration is None:
            msg = f"No migration registered for v{version} → v{version + 1}. Database is at v{version}, target is v{target_version}."
            raise MigrationError(version, version + 1, KeyError(msg))

        logger.info("Applying migration v%d → v%d ...", version, version + 1)
        try:
            conn.execute("BEGIN IMMEDIATE")
            migration(conn)
            conn.execute(f"PRAGMA user_version = {version + 1}")
            conn.commit()
            applied += 1
            logger.info("Migration v%d → v%d complete.", version, version + 1)
        except Exception as exc:
            conn.rollback()
            raise MigrationError(version, version + 1, exc) from exc

    return applied


# ---------------------------------------------------------------------------
# SQLite ALTER TABLE helpers
# ---------------------------------------------------------------------------


def add_column(
    conn: sqlite3.Connection,
    table: str,
    column: str,
    col_type: str = "TEXT",
    default: str | None = "''",
) -> None:
    """Add a column to a table (idempotent).

    ``default`` is a SQL literal such as ``"''"`` or ``"0"``; None adds no
    DEFAULT clause. SQLite requires a DEFAULT for ADD COLUMN with NOT NULL.
    """
    existing = {row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}
    if column in existing:
        return

    default_clause = f" DEFAULT {default}" if default is not None else ""
    conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {col_type}{default_clause}")


def add_index(
    conn: sqlite3.Connection,
    index_name: str,
    table: str,
    columns: list[str],
    *,
    unique: bool = False,
) -> None:
    """Create an index (idempotent via IF NOT EXISTS)."""
    unique_kw = "UNIQUE " if unique else ""
    cols = ", ".join(columns)
    conn.execute(f"CREATE {unique_kw}INDEX IF NOT EXISTS {index_name} ON {table}({cols})")
