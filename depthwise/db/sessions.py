"""CRUD operations for the two session tables.

Every function takes the :class:`~depthwise.db.models.TreeFamily` it operates
on, so the same code serves account-bound and anonymous trees.  None of them
commit; wrap calls in :func:`depthwise.db.connection.transaction`.
"""

from __future__ import annotations

import sqlite3
import uuid
from time import time
from typing import Optional

from depthwise.db.models import ACCOUNT, Origin, Session, TreeFamily

TITLE_LENGTH = 100


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _row_to_session(row: sqlite3.Row, family: TreeFamily) -> Session:
    keys = row.keys()
    return Session(
        id=row["id"],
        root_query=row["root_query"],
        title=row["title"],
        node_count=row["node_count"],
        max_depth=row["max_depth"],
        user_id=row["user_id"] if "user_id" in keys else None,
        is_public=bool(row["is_public"]) if "is_public" in keys else False,
        origin=Origin(
            client_id=row["client_id"],
            ip_hash=row["ip_hash"],
            country=row["country"],
            region=row["region"],
            city=row["city"],
            user_agent=row["user_agent"],
        ),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        is_anonymous=family.is_anonymous,
    )


def title_for(query: str) -> str:
    """Session title: the first 100 characters of the root question."""
    return query[:TITLE_LENGTH]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def create_session(
    conn: sqlite3.Connection,
    family: TreeFamily,
    root_query: str,
    user_id: Optional[str] = None,
    origin: Optional[Origin] = None,
    title: Optional[str] = None,
    session_id: Optional[str] = None,
    now: Optional[int] = None,
) -> Session:
    """Insert a new session row with zeroed stats and return it.

    Args:
        family: Which table family to write to.
        root_query: The question the tree grows from.
        user_id: Owner; required for :data:`~depthwise.db.models.ACCOUNT`.
        origin: Request origin metadata copied onto the row.
        title: Explicit title (defaults to :func:`title_for` of the query).

    Raises:
        ValueError: When an account session is created without an owner.
    """
    if not family.is_anonymous and not user_id:
        raise ValueError("Account sessions require a user_id")

    sid = session_id or str(uuid.uuid4())
    ts = int(now if now is not None else time())
    origin = origin or Origin()
    values = {
        "id": sid,
        "root_query": root_query,
        "title": title if title is not None else title_for(root_query),
        "node_count": 0,
        "max_depth": 0,
        "client_id": origin.client_id,
        "ip_hash": origin.ip_hash,
        "country": origin.country,
        "region": origin.region,
        "city": origin.city,
        "user_agent": origin.user_agent,
        "created_at": ts,
        "updated_at": ts,
    }
    if family.is_anonymous:
        values["last_activity_at"] = ts
    else:
        values["user_id"] = user_id
        values["is_public"] = 0

    columns = ", ".join(values)
    placeholders = ", ".join("?" for _ in values)
    conn.execute(
        f"INSERT INTO {family.session_table} ({columns}) VALUES ({placeholders})",  # noqa: S608
        tuple(values.values()),
    )
    return get_session(conn, family, sid)  # type: ignore[return-value]


def get_session(
    conn: sqlite3.Connection, family: TreeFamily, session_id: str
) -> Optional[Session]:
    """Fetch a session by id.  Returns ``None`` if not found."""
    row = conn.execute(
        f"SELECT * FROM {family.session_table} WHERE id = ?", (session_id,)  # noqa: S608
    ).fetchone()
    return _row_to_session(row, family) if row else None


def list_sessions_for_user(conn: sqlite3.Connection, user_id: str) -> list[Session]:
    """Return a user's account sessions, most recently updated first."""
    rows = conn.execute(
        "SELECT * FROM graph_sessions WHERE user_id = ? ORDER BY updated_at DESC, created_at DESC",
        (user_id,),
    ).fetchall()
    return [_row_to_session(r, ACCOUNT) for r in rows]


def delete_session(conn: sqlite3.Connection, family: TreeFamily, session_id: str) -> bool:
    """Delete a session; nodes and edges go with it via CASCADE.

    Returns ``True`` when a row was removed.
    """
    cur = conn.execute(
        f"DELETE FROM {family.session_table} WHERE id = ?", (session_id,)  # noqa: S608
    )
    return cur.rowcount > 0


def set_visibility(
    conn: sqlite3.Connection, session_id: str, is_public: bool, now: Optional[int] = None
) -> Optional[Session]:
    """Mark an account session public or private."""
    ts = int(now if now is not None else time())
    conn.execute(
        "UPDATE graph_sessions SET is_public = ?, updated_at = ? WHERE id = ?",
        (1 if is_public else 0, ts, session_id),
    )
    return get_session(conn, ACCOUNT, session_id)


def touch_activity(
    conn: sqlite3.Connection, family: TreeFamily, session_id: str, now: Optional[int] = None
) -> None:
    """Refresh ``updated_at`` (and ``last_activity_at`` for anonymous rows)."""
    ts = int(now if now is not None else time())
    if family.is_anonymous:
        conn.execute(
            "UPDATE anonymous_sessions SET last_activity_at = ?, updated_at = ? WHERE id = ?",
            (ts, ts, session_id),
        )
    else:
        conn.execute(
            "UPDATE graph_sessions SET updated_at = ? WHERE id = ?", (ts, session_id)
        )


def recompute_stats(
    conn: sqlite3.Connection, family: TreeFamily, session_id: str
) -> tuple[int, int]:
    """Derive ``node_count`` and ``max_depth`` from the node rows.

    Returns:
        ``(node_count, max_depth)`` as written.
    """
    row = conn.execute(
        f"SELECT COUNT(*), COALESCE(MAX(depth), 0) FROM {family.node_table} "  # noqa: S608
        "WHERE session_id = ?",
        (session_id,),
    ).fetchone()
    node_count, max_depth = int(row[0]), int(row[1])
    conn.execute(
        f"UPDATE {family.session_table} SET node_count = ?, max_depth = ? WHERE id = ?",  # noqa: S608
        (node_count, max_depth, session_id),
    )
    return node_count, max_depth
