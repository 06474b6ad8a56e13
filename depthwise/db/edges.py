"""Operations on the edge tables (both families)."""

from __future__ import annotations

import sqlite3
import uuid
from time import time
from typing import Optional

from depthwise.db.models import Edge, GraphPayload, TreeFamily
from depthwise.db.nodes import list_nodes
from depthwise.db.sessions import get_session


def _row_to_edge(row: sqlite3.Row) -> Edge:
    return Edge(
        id=row["id"],
        session_id=row["session_id"],
        source_id=row["source_id"],
        target_id=row["target_id"],
        animated=bool(row["animated"]),
        created_at=row["created_at"],
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def create_edge(
    conn: sqlite3.Connection,
    family: TreeFamily,
    session_id: str,
    source_id: str,
    target_id: str,
    animated: bool = True,
    edge_id: Optional[str] = None,
    now: Optional[int] = None,
) -> Edge:
    """Create a directed parent → child edge and return it."""
    eid = edge_id or str(uuid.uuid4())
    ts = int(now if now is not None else time())
    conn.execute(
        f"""
        INSERT INTO {family.edge_table} (id, session_id, source_id, target_id, animated, created_at)
        VALUES (?, ?, ?, ?, ?, ?)
        """,  # noqa: S608
        (eid, session_id, source_id, target_id, 1 if animated else 0, ts),
    )
    return Edge(
        id=eid,
        session_id=session_id,
        source_id=source_id,
        target_id=target_id,
        animated=animated,
        created_at=ts,
    )


def list_edges(conn: sqlite3.Connection, family: TreeFamily, session_id: str) -> list[Edge]:
    """Return every edge of a session."""
    rows = conn.execute(
        f"SELECT * FROM {family.edge_table} WHERE session_id = ? "  # noqa: S608
        "ORDER BY created_at ASC, rowid ASC",
        (session_id,),
    ).fetchall()
    return [_row_to_edge(r) for r in rows]


def list_edges_from(conn: sqlite3.Connection, family: TreeFamily, source_id: str) -> list[Edge]:
    """Return the outgoing edges of *source_id*."""
    rows = conn.execute(
        f"SELECT * FROM {family.edge_table} WHERE source_id = ? "  # noqa: S608
        "ORDER BY created_at ASC, rowid ASC",
        (source_id,),
    ).fetchall()
    return [_row_to_edge(r) for r in rows]


def get_graph_data(
    conn: sqlite3.Connection, family: TreeFamily, session_id: str
) -> Optional[GraphPayload]:
    """Return a session with all of its nodes and edges, or ``None``."""
    session = get_session(conn, family, session_id)
    if session is None:
        return None
    return GraphPayload(
        session=session,
        nodes=list_nodes(conn, family, session_id),
        edges=list_edges(conn, family, session_id),
    )
