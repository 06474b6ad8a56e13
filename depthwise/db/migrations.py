"""Database initialisation and migration helpers.

``init_db(conn)`` is idempotent and safe to call on an existing database.
``migrate(conn)`` runs incremental schema changes tracked in a version table.
"""

from __future__ import annotations

import sqlite3

from depthwise.config import settings
from depthwise.db.connection import transaction


# ---------------------------------------------------------------------------
# Migrations
# ---------------------------------------------------------------------------

# (version, sql) pairs applied in order on top of schema.sql.
MIGRATIONS: list[tuple[int, str]] = [
    (
        1,
        "CREATE INDEX IF NOT EXISTS idx_anonymous_sessions_client "
        "ON anonymous_sessions(client_id)",
    ),
]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def init_db(conn: sqlite3.Connection) -> None:
    """Create all tables and indexes, then apply pending migrations.

    Every DDL statement in ``schema.sql`` uses ``IF NOT EXISTS`` so calling
    this multiple times on the same database is safe.
    """
    sql = settings.schema_path.read_text(encoding="utf-8")
    conn.executescript(sql)
    _ensure_version_table(conn)
    migrate(conn)


def _ensure_version_table(conn: sqlite3.Connection) -> None:
    """Create the internal schema-version tracking table if absent."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_version (
            version     INTEGER PRIMARY KEY,
            applied_at  INTEGER DEFAULT (strftime('%s', 'now'))
        )
        """
    )


def current_version(conn: sqlite3.Connection) -> int:
    """Return the highest applied migration version (0 if none applied)."""
    row = conn.execute(
        "SELECT COALESCE(MAX(version), 0) FROM schema_version"
    ).fetchone()
    return row[0] if row else 0


def migrate(conn: sqlite3.Connection) -> None:
    """Run any pending incremental migrations from :data:`MIGRATIONS`."""
    applied = current_version(conn)
    for version, sql in MIGRATIONS:
        if version > applied:
            with transaction(conn):
                conn.execute(sql)
                conn.execute(
                    "INSERT INTO schema_version(version) VALUES (?)", (version,)
                )
