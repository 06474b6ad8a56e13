"""Focus view over an in-memory tree.

Pure functions over a snapshot of :class:`~depthwise.graph.GraphNode` /
:class:`~depthwise.graph.GraphEdge` records; nothing here performs I/O, so
callers can recompute on every render.

The visible set for a pivot ``P`` is the ancestor chain of ``P`` (root
included) plus every descendant of ``P``.  Siblings of ancestors and
unrelated subtrees are hidden.
"""

from __future__ import annotations

from collections import deque
from typing import Iterable, Mapping, Optional

from depthwise.errors import GraphIntegrityError
from depthwise.graph import GraphEdge, GraphNode


def ancestor_path(nodes: Mapping[str, GraphNode], node_id: str) -> list[GraphNode]:
    """Breadcrumb from the topmost reachable ancestor down to *node_id*.

    The walk stops early (without error) when a parent is not in *nodes*.
    Each step up must reach a strictly shallower node; anything else means
    corrupt parent pointers (a cycle included) and aborts the walk.

    Raises:
        GraphIntegrityError: If depth fails to decrease along the chain.
    """
    current = nodes.get(node_id)
    if current is None:
        return []
    chain = [current]
    while current.parent_id is not None:
        parent = nodes.get(current.parent_id)
        if parent is None:
            break
        if parent.depth >= current.depth:
            raise GraphIntegrityError(
                "Parent depth does not decrease along the chain", nodeId=current.id
            )
        chain.append(parent)
        current = parent
    chain.reverse()
    return chain


def children_index(nodes: Iterable[GraphNode]) -> dict[str, list[str]]:
    index: dict[str, list[str]] = {}
    for node in nodes:
        if node.parent_id is not None:
            index.setdefault(node.parent_id, []).append(node.id)
    return index


def descendant_ids(nodes: Mapping[str, GraphNode], node_id: str) -> set[str]:
    """Every node below *node_id* (unbounded depth), excluding itself."""
    index = children_index(nodes.values())
    found: set[str] = set()
    queue = deque(index.get(node_id, []))
    while queue:
        nid = queue.popleft()
        if nid in found or nid == node_id:
            continue
        found.add(nid)
        queue.extend(index.get(nid, []))
    return found


def visible_node_ids(nodes: Mapping[str, GraphNode], focus_id: Optional[str]) -> set[str]:
    """Ids shown while focused on *focus_id*; every id when not focused."""
    if focus_id is None or focus_id not in nodes:
        return set(nodes)
    visible = {n.id for n in ancestor_path(nodes, focus_id)}
    visible |= descendant_ids(nodes, focus_id)
    return visible


def visible_edges(edges: Iterable[GraphEdge], visible: set[str]) -> list[GraphEdge]:
    """Exactly the edges whose endpoints are both visible."""
    return [e for e in edges if e.source in visible and e.target in visible]


def deepest_explored(nodes: Iterable[GraphNode]) -> Optional[GraphNode]:
    """The explored node with the greatest depth (latest wins ties)."""
    best: Optional[GraphNode] = None
    for node in nodes:
        if node.explored and (best is None or node.depth >= best.depth):
            best = node
    return best


def auto_focus_target(nodes: Iterable[GraphNode], threshold: int) -> Optional[str]:
    """Pivot to use once the deepest explored depth reaches *threshold*."""
    node = deepest_explored(nodes)
    if node is None or node.depth < threshold:
        return None
    return node.id
