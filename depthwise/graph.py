"""Client-side graph records and normalisation of loaded session payloads.

Payloads come back from ``GET /sessions/{id}`` (or a share link) as loosely
typed JSON.  :func:`normalize_loaded_graph` turns them into
:class:`GraphNode` / :class:`GraphEdge` records, dropping anything malformed
rather than failing the whole load.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Optional

from depthwise.db.models import FOLLOW_UP_TYPES, Node
from depthwise.layout import MAX_SAFE_COORDINATE, fallback_position

UNTITLED = "Untitled node"


@dataclass
class GraphNode:
    id: str
    title: str
    depth: int
    x: float
    y: float
    parent_id: Optional[str] = None
    content: str = ""
    summary: str = ""
    explored: bool = False
    follow_up_type: Optional[str] = None

    @classmethod
    def from_node(cls, node: Node) -> "GraphNode":
        return cls(
            id=node.id,
            title=node.title,
            depth=node.depth,
            x=node.x,
            y=node.y,
            parent_id=node.parent_id,
            content=node.content or "",
            summary=node.summary or "",
            explored=node.explored,
            follow_up_type=node.follow_up_type,
        )


@dataclass
class GraphEdge:
    id: str
    source: str
    target: str
    animated: bool = True


# ---------------------------------------------------------------------------
# Coercion helpers
# ---------------------------------------------------------------------------

def _non_empty(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def _finite(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str):
        try:
            parsed = float(value)
        except ValueError:
            return None
        return parsed if math.isfinite(parsed) else None
    return None


def _depth(value: Any) -> int:
    parsed = _finite(value)
    if parsed is None:
        return 1
    return max(1, math.floor(parsed))


def _sane(value: Optional[float]) -> bool:
    return value is not None and abs(value) <= MAX_SAFE_COORDINATE


def _fields(raw: dict[str, Any]) -> dict[str, Any]:
    # Older payloads nest the node fields under "data".
    data = raw.get("data")
    return data if isinstance(data, dict) else raw


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def normalize_loaded_graph(
    nodes: Any, edges: Any
) -> tuple[list[GraphNode], list[GraphEdge]]:
    """Sanitise raw node/edge lists.

    * nodes without an id, or repeating an earlier id, are dropped
    * depth is floored and clamped to >= 1
    * coordinates that are missing or beyond ``MAX_SAFE_COORDINATE`` are
      replaced with :func:`~depthwise.layout.fallback_position`
    * unknown follow-up types become ``None``
    * edges without an id, repeating an id, or pointing at an unknown node are
      dropped
    """
    raw_nodes = [n for n in nodes if isinstance(n, dict)] if isinstance(nodes, list) else []

    depth_counts: dict[int, int] = {}
    for raw in raw_nodes:
        if _non_empty(raw.get("id")):
            d = _depth(_fields(raw).get("depth"))
            depth_counts[d] = depth_counts.get(d, 0) + 1

    depth_index: dict[int, int] = {}
    seen: set[str] = set()
    out_nodes: list[GraphNode] = []
    for raw in raw_nodes:
        node_id = _non_empty(raw.get("id"))
        if not node_id or node_id in seen:
            continue
        data = _fields(raw)
        depth = _depth(data.get("depth"))
        index = depth_index.get(depth, 0)
        depth_index[depth] = index + 1
        fx, fy = fallback_position(depth, index, depth_counts.get(depth, 1))

        position = raw.get("position") if isinstance(raw.get("position"), dict) else {}
        x, y = _finite(position.get("x")), _finite(position.get("y"))
        follow_up = data.get("followUpType")

        out_nodes.append(
            GraphNode(
                id=node_id,
                title=_non_empty(data.get("title")) or UNTITLED,
                depth=depth,
                x=x if _sane(x) else fx,  # type: ignore[arg-type]
                y=y if _sane(y) else fy,  # type: ignore[arg-type]
                parent_id=_non_empty(data.get("parentId")),
                content=data.get("content") if isinstance(data.get("content"), str) else "",
                summary=data.get("summary") if isinstance(data.get("summary"), str) else "",
                explored=data.get("explored") if isinstance(data.get("explored"), bool) else False,
                follow_up_type=follow_up if follow_up in FOLLOW_UP_TYPES else None,
            )
        )
        seen.add(node_id)

    return out_nodes, normalize_edges(edges, seen)


def normalize_edges(edges: Any, known_ids: set[str]) -> list[GraphEdge]:
    """Drop edges without an id, repeating an id, or with an unknown endpoint."""
    raw_edges = [e for e in edges if isinstance(e, dict)] if isinstance(edges, list) else []
    edge_ids: set[str] = set()
    out_edges: list[GraphEdge] = []
    for raw in raw_edges:
        edge_id = _non_empty(raw.get("id"))
        source, target = _non_empty(raw.get("source")), _non_empty(raw.get("target"))
        if not edge_id or edge_id in edge_ids or not source or not target:
            continue
        if source not in known_ids or target not in known_ids:
            continue
        animated = raw.get("animated")
        out_edges.append(
            GraphEdge(
                id=edge_id,
                source=source,
                target=target,
                animated=animated if isinstance(animated, bool) else True,
            )
        )
        edge_ids.add(edge_id)
    return out_edges
