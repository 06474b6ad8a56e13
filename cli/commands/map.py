"""Commands for viewing and laying out the active session's tree."""

from __future__ import annotations

from typing import Optional

import typer

from depthwise.client import focus
from depthwise.config import settings
from depthwise.db import get_connection, init_db, transaction
from depthwise.db import edges as edge_store
from depthwise.db import nodes as node_store
from depthwise.db.models import family_for
from depthwise.errors import DepthwiseError
from depthwise.graph import GraphNode
from depthwise.layout import LayoutNode, apply_non_overlapping_layout

from cli.commands.session import resolve_node
from cli.context import load_context, require_session
from cli.rendering import echo_error, render_tree

map_app = typer.Typer(help="Visualise the active session's tree.")


@map_app.command("show")
@require_session
def map_show(
    focus_ref: Optional[str] = typer.Option(
        None, "--focus", help="Show only this node's ancestors and descendants."
    ),
    auto: bool = typer.Option(
        False, "--auto", help="Focus on the deepest explored node once it is deep enough."
    ),
    format: str = typer.Option("tree", "--format", help="Output format: tree | list"),
) -> None:
    """Display the session tree, optionally narrowed to a focus view."""
    ctx = load_context()
    conn = get_connection()
    init_db(conn)
    try:
        family = family_for(ctx.is_anonymous)
        graph = edge_store.get_graph_data(conn, family, ctx.active_session_id)  # type: ignore[arg-type]
        if graph is None:
            typer.echo("[map show] Active session no longer exists.")
            raise typer.Exit(code=1)
        focus_id = resolve_node(conn, ctx, focus_ref).id if focus_ref else None
    except DepthwiseError as exc:
        echo_error("map show", exc)
        raise typer.Exit(code=1)
    finally:
        conn.close()

    nodes = {n.id: GraphNode.from_node(n) for n in graph.nodes}
    if focus_id is None and auto:
        focus_id = focus.auto_focus_target(nodes.values(), settings.focus_depth_threshold)
    visible = focus.visible_node_ids(nodes, focus_id)

    if focus_id is not None:
        trail = " > ".join(n.title for n in focus.ancestor_path(nodes, focus_id))
        typer.echo(f"Focus: {trail}")
        typer.echo(f"Showing {len(visible)} of {len(nodes)} nodes")
        typer.echo("")

    if format == "list":
        for n in sorted(nodes.values(), key=lambda n: (n.depth, n.x)):
            if n.id in visible:
                typer.echo(f"  [{n.depth}] {n.title} ({n.id[:8]}...)")
        return
    typer.echo(render_tree(nodes.values(), visible, focus_id))


@map_app.command("layout")
@require_session
def map_layout(
    apply: bool = typer.Option(False, "--apply", help="Write the new positions back."),
) -> None:
    """Run the non-overlap pass over the whole tree and report what moves."""
    ctx = load_context()
    conn = get_connection()
    init_db(conn)
    try:
        family = family_for(ctx.is_anonymous)
        nodes = node_store.list_nodes(conn, family, ctx.active_session_id)  # type: ignore[arg-type]
        boxes = [LayoutNode(n.id, n.depth, n.x, n.y) for n in nodes]
        laid_out = apply_non_overlapping_layout(boxes)
        if laid_out is boxes:
            typer.echo("[map layout] Layout is already clean.")
            return

        moved = [
            (before, after)
            for before, after in zip(boxes, laid_out)
            if (before.x, before.y) != (after.x, after.y)
        ]
        for before, after in moved:
            typer.echo(
                f"  {before.id[:8]}  ({before.x:.0f}, {before.y:.0f}) -> ({after.x:.0f}, {after.y:.0f})"
            )
        if apply:
            with transaction(conn):
                for _, after in moved:
                    node_store.update_position(conn, family, after.id, after.x, after.y)
            typer.echo(f"[map layout] Moved {len(moved)} node(s).")
        else:
            typer.echo(f"[map layout] {len(moved)} node(s) would move. Run with --apply to save.")
    finally:
        conn.close()
