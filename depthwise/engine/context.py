"""Context assembly for a generator call: ancestor path and covered topics."""

from __future__ import annotations

import sqlite3

from depthwise.db import nodes as node_store
from depthwise.db.models import Node, TreeFamily
from depthwise.errors import GraphIntegrityError


def ancestor_path(conn: sqlite3.Connection, family: TreeFamily, node: Node) -> list[Node]:
    """Return the nodes from the root down to *node* (inclusive).

    Every step up must land on a node exactly one level shallower, which also
    rules out cycles in the stored parent pointers.

    Raises:
        GraphIntegrityError: On a dangling parent, a depth skew, or a chain
            that does not end at depth 1.
    """
    chain = [node]
    current = node
    while current.parent_id is not None:
        parent = node_store.get_node(conn, family, current.parent_id)
        if parent is None or parent.session_id != node.session_id:
            raise GraphIntegrityError(
                "Ancestor missing while building the exploration path",
                nodeId=current.id,
            )
        if parent.depth != current.depth - 1:
            raise GraphIntegrityError(
                "Node depth does not decrease along its parent chain",
                nodeId=current.id,
            )
        chain.append(parent)
        current = parent
    if current.depth != 1:
        raise GraphIntegrityError("Parent chain does not end at a root node", nodeId=current.id)
    chain.reverse()
    return chain


def covered_topics(
    conn: sqlite3.Connection, family: TreeFamily, node: Node, include_children: bool = False
) -> list[str]:
    """Titles the generator must not repeat.

    Always the target's siblings; on a focus-term re-expansion also the
    target's existing children.
    """
    titles = [s.title for s in node_store.list_siblings(conn, family, node)]
    if include_children:
        titles += [c.title for c in node_store.list_children(conn, family, node.id)]
    return list(dict.fromkeys(titles))
