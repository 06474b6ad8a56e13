"""Session commands: start, grow, list, switch, delete and migrate trees."""

from __future__ import annotations

import sqlite3
from typing import Optional

import typer

from depthwise.db import get_connection, init_db
from depthwise.db import edges as edge_store
from depthwise.db import nodes as node_store
from depthwise.db import sessions as session_store
from depthwise.db import transaction
from depthwise.db.models import ACCOUNT, ANONYMOUS, Node, family_for
from depthwise.engine import ExpandRequest, create_session, expand_node, migrate_session
from depthwise.errors import AnonymousDepthLimit, DepthwiseError, InvalidInput
from depthwise.generator.client import ContentGenerator, LLMContentGenerator

from cli.context import CliContext, load_context, require_session, save_context
from cli.rendering import echo_error

session_app = typer.Typer(help="Create and grow exploration sessions.")


def _get_generator() -> ContentGenerator:
    """Return the configured content generator."""
    return LLMContentGenerator()


def _open() -> sqlite3.Connection:
    conn = get_connection()
    init_db(conn)
    return conn


def resolve_node(conn: sqlite3.Connection, ctx: CliContext, ref: str) -> Node:
    """Find a node of the active session by full id or unique id prefix."""
    family = family_for(ctx.is_anonymous)
    matches = [
        n for n in node_store.list_nodes(conn, family, ctx.active_session_id)  # type: ignore[arg-type]
        if n.id == ref or n.id.startswith(ref)
    ]
    if len(matches) != 1:
        raise InvalidInput(
            f"Node reference {ref!r} matches {len(matches)} nodes in the active session"
        )
    return matches[0]


def run_migration(conn: sqlite3.Connection, ctx: CliContext) -> Optional[str]:
    """Migrate ``ctx.pending_migration`` into the signed-in account.

    The marker is cleared whether or not the migration succeeds.  Returns the
    new session id, or ``None`` on failure.
    """
    source = ctx.pending_migration
    if source is None:
        return None
    try:
        session = migrate_session(conn, source, ctx.identity())
    except DepthwiseError as exc:
        echo_error("session migrate", exc)
        return None
    finally:
        ctx.pending_migration = None
        save_context(ctx)

    if ctx.active_session_id == source:
        ctx.switch_to(session.id, is_anonymous=False)
        save_context(ctx)
    typer.echo(f"[session migrate] Saved to your account as {session.id}")
    return session.id


@session_app.command("create")
def session_create(
    query: str = typer.Argument(..., help="The question to start from."),
) -> None:
    """Start a new exploration and make it the active session."""
    ctx = load_context()
    conn = _open()
    try:
        typer.echo(f"[session create] Exploring {query!r} …")
        result = create_session(conn, _get_generator(), query, ctx.identity())
    except DepthwiseError as exc:
        echo_error("session create", exc)
        raise typer.Exit(code=1)
    finally:
        conn.close()

    ctx.switch_to(result.session.id, result.session.is_anonymous)
    save_context(ctx)

    kind = "anonymous" if result.session.is_anonymous else "account"
    typer.echo(f"[session create] Created {kind} session {result.session.id}")
    typer.echo("")
    typer.echo(result.root.content or "")
    typer.echo("")
    for child in result.children:
        typer.echo(f"  o {child.title}  [{child.id[:8]}]")
    if result.key_terms:
        typer.echo(f"\nKey terms: {', '.join(result.key_terms)}")


@session_app.command("expand")
@require_session
def session_expand(
    node: str = typer.Argument(..., help="Node id or id prefix."),
    explore_type: Optional[str] = typer.Option(
        None, "--type", help="Intent: why | how | what | example | compare."
    ),
    focus_term: Optional[str] = typer.Option(
        None, "--focus-term", help="Re-expand an explored node around this term."
    ),
) -> None:
    """Expand a node of the active session into children."""
    ctx = load_context()
    conn = _open()
    try:
        target = resolve_node(conn, ctx, node)
        result = expand_node(
            conn,
            _get_generator(),
            ExpandRequest(
                session_id=ctx.active_session_id,  # type: ignore[arg-type]
                parent_id=target.id,
                is_anonymous=ctx.is_anonymous,
                intent=explore_type,
                focus_term=focus_term,
            ),
            ctx.identity(),
        )
    except AnonymousDepthLimit as exc:
        ctx.pending_migration = ctx.active_session_id
        save_context(ctx)
        echo_error("session expand", exc)
        typer.echo("Run 'account login' to keep exploring; this session will be saved to your account.")
        raise typer.Exit(code=1)
    except DepthwiseError as exc:
        echo_error("session expand", exc)
        raise typer.Exit(code=1)
    finally:
        conn.close()

    verb = "Existing" if result.reused else "New"
    typer.echo(f"[session expand] {result.parent.title}")
    typer.echo("")
    typer.echo(result.parent_content)
    typer.echo("")
    typer.echo(f"{verb} branches ({len(result.children)}):")
    for child in result.children:
        typer.echo(f"  o {child.title}  [{child.id[:8]}]")


@session_app.command("list")
def session_list() -> None:
    """List the signed-in user's sessions."""
    ctx = load_context()
    if not ctx.user_id:
        typer.echo("[session list] Sign in with 'account login' to list saved sessions.")
        raise typer.Exit(code=1)
    conn = _open()
    try:
        sessions = session_store.list_sessions_for_user(conn, ctx.user_id)
    finally:
        conn.close()

    if not sessions:
        typer.echo("No sessions found.")
        return
    typer.echo("Sessions:")
    for s in sessions:
        marker = "*" if s.id == ctx.active_session_id else " "
        typer.echo(f"{marker} {s.title} \t[{s.id}] nodes={s.node_count} depth={s.max_depth}")


@session_app.command("use")
def session_use(
    session_id: str = typer.Argument(..., help="Session UUID."),
) -> None:
    """Switch the active session."""
    ctx = load_context()
    conn = _open()
    try:
        account = session_store.get_session(conn, ACCOUNT, session_id)
        if account is not None and account.user_id == ctx.user_id:
            session, anonymous = account, False
        else:
            session = session_store.get_session(conn, ANONYMOUS, session_id)
            anonymous = True
    finally:
        conn.close()

    if session is None:
        typer.echo(f"[session use] Session {session_id!r} not found.")
        raise typer.Exit(code=1)
    ctx.switch_to(session.id, anonymous)
    save_context(ctx)
    typer.echo(f"[session use] Active session: {session.title}")


@session_app.command("delete")
def session_delete(
    session_id: str = typer.Argument(..., help="Session UUID."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation."),
) -> None:
    """Delete one of your sessions with its whole tree."""
    ctx = load_context()
    conn = _open()
    try:
        session = session_store.get_session(conn, ACCOUNT, session_id)
        if session is None or session.user_id != ctx.user_id:
            typer.echo(f"[session delete] Session {session_id!r} not found.")
            raise typer.Exit(code=1)
        if not yes:
            typer.confirm(f"Delete {session.title!r}?", abort=True)
        with transaction(conn):
            session_store.delete_session(conn, ACCOUNT, session_id)
    finally:
        conn.close()

    if ctx.active_session_id == session_id:
        ctx.active_session_id = None
        save_context(ctx)
    typer.echo(f"[session delete] Deleted {session_id}")


@session_app.command("migrate")
def session_migrate(
    session_id: Optional[str] = typer.Argument(
        None, help="Anonymous session UUID (defaults to the pending one)."
    ),
) -> None:
    """Save an anonymous session into your account."""
    ctx = load_context()
    if not ctx.user_id:
        typer.echo("[session migrate] Sign in with 'account login' first.")
        raise typer.Exit(code=1)
    ctx.pending_migration = session_id or ctx.pending_migration or (
        ctx.active_session_id if ctx.is_anonymous else None
    )
    if ctx.pending_migration is None:
        typer.echo("[session migrate] Nothing to migrate.")
        raise typer.Exit(code=1)

    conn = _open()
    try:
        new_id = run_migration(conn, ctx)
    finally:
        conn.close()
    if new_id is None:
        raise typer.Exit(code=1)


@session_app.command("show")
@require_session
def session_show() -> None:
    """Print the active session's stats."""
    ctx = load_context()
    conn = _open()
    try:
        graph = edge_store.get_graph_data(
            conn, family_for(ctx.is_anonymous), ctx.active_session_id  # type: ignore[arg-type]
        )
    finally:
        conn.close()
    if graph is None:
        typer.echo("[session show] Active session no longer exists.")
        raise typer.Exit(code=1)
    s = graph.session
    typer.echo(f"{s.title}")
    typer.echo(f"  id        : {s.id}")
    typer.echo(f"  kind      : {'anonymous' if s.is_anonymous else 'account'}")
    typer.echo(f"  nodes     : {s.node_count}")
    typer.echo(f"  max depth : {s.max_depth}")
    typer.echo(f"  public    : {s.is_public}")
