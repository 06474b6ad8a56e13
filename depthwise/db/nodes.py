"""CRUD operations for the node tables (both families)."""

from __future__ import annotations

import sqlite3
import uuid
from time import time
from typing import Optional

from depthwise.db.models import Node, TreeFamily


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _row_to_node(row: sqlite3.Row) -> Node:
    return Node(
        id=row["id"],
        session_id=row["session_id"],
        parent_id=row["parent_id"],
        title=row["title"],
        content=row["content"],
        summary=row["summary"],
        depth=row["depth"],
        x=row["position_x"],
        y=row["position_y"],
        explored=bool(row["explored"]),
        follow_up_type=row["follow_up_type"],
        created_at=row["created_at"],
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def create_node(
    conn: sqlite3.Connection,
    family: TreeFamily,
    session_id: str,
    title: str,
    depth: int,
    x: float = 0.0,
    y: float = 0.0,
    parent_id: Optional[str] = None,
    content: Optional[str] = None,
    summary: Optional[str] = None,
    explored: bool = False,
    follow_up_type: Optional[str] = None,
    node_id: Optional[str] = None,
    now: Optional[int] = None,
) -> Node:
    """Insert a node and return it.

    Args:
        family: Which table family to write to.
        session_id: Owning session.
        title: Display title (a sub-question or topic).
        depth: 1 for the root, parent depth + 1 otherwise.
        parent_id: ``None`` only for the root node.
        content: Full answer; required when ``explored`` is true.
        summary: Short preview shown before the node is expanded.
        node_id: Explicit UUID override (auto-generated when omitted).

    Raises:
        ValueError: If ``explored`` is set without content.
    """
    if explored and not content:
        raise ValueError("An explored node needs non-empty content")

    nid = node_id or str(uuid.uuid4())
    ts = int(now if now is not None else time())
    conn.execute(
        f"""
        INSERT INTO {family.node_table}
            (id, session_id, parent_id, title, content, summary, depth,
             position_x, position_y, explored, follow_up_type, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,  # noqa: S608
        (
            nid, session_id, parent_id, title, content, summary, depth,
            float(x), float(y), 1 if explored else 0, follow_up_type, ts,
        ),
    )
    return get_node(conn, family, nid)  # type: ignore[return-value]


def get_node(conn: sqlite3.Connection, family: TreeFamily, node_id: str) -> Optional[Node]:
    """Fetch a single node by its UUID.  Returns ``None`` if not found."""
    row = conn.execute(
        f"SELECT * FROM {family.node_table} WHERE id = ?", (node_id,)  # noqa: S608
    ).fetchone()
    return _row_to_node(row) if row else None


def list_nodes(conn: sqlite3.Connection, family: TreeFamily, session_id: str) -> list[Node]:
    """Return every node of a session in ascending depth order."""
    rows = conn.execute(
        f"SELECT * FROM {family.node_table} WHERE session_id = ? "  # noqa: S608
        "ORDER BY depth ASC, created_at ASC, rowid ASC",
        (session_id,),
    ).fetchall()
    return [_row_to_node(r) for r in rows]


def list_children(conn: sqlite3.Connection, family: TreeFamily, parent_id: str) -> list[Node]:
    """Return the direct children of *parent_id* in creation order."""
    rows = conn.execute(
        f"SELECT * FROM {family.node_table} WHERE parent_id = ? "  # noqa: S608
        "ORDER BY created_at ASC, rowid ASC",
        (parent_id,),
    ).fetchall()
    return [_row_to_node(r) for r in rows]


def list_siblings(conn: sqlite3.Connection, family: TreeFamily, node: Node) -> list[Node]:
    """Return nodes sharing *node*'s parent, excluding *node* itself.

    The root has no siblings.
    """
    if node.parent_id is None:
        return []
    return [n for n in list_children(conn, family, node.parent_id) if n.id != node.id]


def mark_explored(
    conn: sqlite3.Connection, family: TreeFamily, node_id: str, content: str
) -> Node:
    """Store the answer on a node and flip ``explored`` to true.

    Raises:
        ValueError: If *content* is empty or the node does not exist.
    """
    if not content or not content.strip():
        raise ValueError("Cannot mark a node explored with empty content")
    cur = conn.execute(
        f"UPDATE {family.node_table} SET content = ?, explored = 1 WHERE id = ?",  # noqa: S608
        (content, node_id),
    )
    if cur.rowcount == 0:
        raise ValueError(f"Node not found: {node_id!r}")
    return get_node(conn, family, node_id)  # type: ignore[return-value]


def update_position(
    conn: sqlite3.Connection, family: TreeFamily, node_id: str, x: float, y: float
) -> None:
    """Move a node (used when a later layout pass shifts it)."""
    conn.execute(
        f"UPDATE {family.node_table} SET position_x = ?, position_y = ? WHERE id = ?",  # noqa: S608
        (float(x), float(y), node_id),
    )
