"""Utilities for rendering exploration trees in the CLI."""

from __future__ import annotations

from typing import Iterable, Optional

import typer

from depthwise.errors import DepthwiseError
from depthwise.graph import GraphNode


def _marker(node: GraphNode, focus_id: Optional[str]) -> str:
    if node.id == focus_id:
        return ">"
    return "*" if node.explored else "o"


def render_tree(
    nodes: Iterable[GraphNode],
    visible: Optional[set[str]] = None,
    focus_id: Optional[str] = None,
) -> str:
    """Render a session tree as ASCII.

    Args:
        nodes: Every node of the session.
        visible: Ids to draw; ``None`` draws all of them.  Hidden nodes break
            the walk, so their subtrees are hidden too.
        focus_id: Node marked with ``>``.

    Returns:
        One line per node: ``<marker> <title>  [<id prefix>]``.  Explored
        nodes are marked ``*``, unexplored ones ``o``.
    """
    node_map = {n.id: n for n in nodes}
    shown = set(node_map) if visible is None else visible & set(node_map)

    children: dict[Optional[str], list[GraphNode]] = {}
    for node in node_map.values():
        if node.id in shown:
            parent = node.parent_id if node.parent_id in shown else None
            children.setdefault(parent, []).append(node)
    for siblings in children.values():
        siblings.sort(key=lambda n: (n.x, n.id))

    lines: list[str] = []

    def _render(node: GraphNode, prefix: str, is_last: bool, is_top: bool) -> None:
        label = f"{_marker(node, focus_id)} {node.title}  [{node.id[:8]}]"
        if is_top:
            lines.append(label)
            child_prefix = ""
        else:
            lines.append(f"{prefix}{'└── ' if is_last else '├── '}{label}")
            child_prefix = prefix + ("    " if is_last else "│   ")
        kids = children.get(node.id, [])
        for i, child in enumerate(kids):
            _render(child, child_prefix, i == len(kids) - 1, False)

    for top in sorted(children.get(None, []), key=lambda n: (n.depth, n.x)):
        _render(top, "", True, True)

    return "\n".join(lines)


def echo_error(command: str, exc: DepthwiseError) -> None:
    typer.echo(f"[{command}] Error ({exc.code}): {exc.message}", err=True)
