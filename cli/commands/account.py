"""Account commands: sign in/out locally and inspect usage."""

from __future__ import annotations

from time import time
from typing import Optional

import typer

from depthwise.config import settings
from depthwise.db import get_connection, init_db, transaction
from depthwise.db import users as user_store
from depthwise.engine.tiers import TIERS, policy_for, remaining
from depthwise.errors import DepthwiseError
from depthwise.identity import decode_bearer_token

from cli.commands.session import run_migration
from cli.context import load_context, save_context
from cli.rendering import echo_error

account_app = typer.Typer(help="Identity and usage.")


@account_app.command("login")
def account_login(
    user_id: Optional[str] = typer.Option(None, "--user-id", help="Stable user id."),
    email: Optional[str] = typer.Option(None, "--email", help="Account email."),
    token: Optional[str] = typer.Option(None, "--token", help="Bearer token to verify instead."),
) -> None:
    """Sign in, then save any session waiting for migration."""
    if token:
        try:
            identity = decode_bearer_token(token)
        except DepthwiseError as exc:
            echo_error("account login", exc)
            raise typer.Exit(code=1)
        user_id, email = identity.user_id, identity.email or email
    if not user_id:
        typer.echo("[account login] Pass --user-id or --token.")
        raise typer.Exit(code=1)

    ctx = load_context()
    ctx.user_id, ctx.email = user_id, email
    save_context(ctx)
    typer.echo(f"[account login] Signed in as {email or user_id}")

    if ctx.pending_migration:
        conn = get_connection()
        init_db(conn)
        try:
            run_migration(conn, ctx)
        finally:
            conn.close()


@account_app.command("logout")
def account_logout() -> None:
    """Forget the signed-in identity and the active account session."""
    ctx = load_context()
    ctx.user_id = ctx.email = None
    if not ctx.is_anonymous:
        ctx.active_session_id = None
        ctx.is_anonymous = True
    save_context(ctx)
    typer.echo("[account logout] Signed out.")


@account_app.command("usage")
def account_usage() -> None:
    """Show tier, monthly allowance and token totals."""
    ctx = load_context()
    if not ctx.user_id:
        typer.echo("[account usage] Not signed in.")
        raise typer.Exit(code=1)

    now = int(time())
    conn = get_connection()
    init_db(conn)
    try:
        with transaction(conn):
            user = user_store.ensure_user(conn, ctx.user_id, ctx.email, now=now)
            user = user_store.reset_if_due(conn, user, settings.quota_window_days, now=now)
    finally:
        conn.close()

    policy = policy_for(user.subscription_tier)
    left = remaining(user, now, settings.quota_window_days)
    typer.echo(f"Tier              : {policy.name} (max depth {policy.max_depth})")
    typer.echo(f"Explorations used : {user.explorations_used}")
    typer.echo(f"Remaining         : {'unlimited' if left is None else left}")
    typer.echo(f"Tokens in / out   : {user.total_input_tokens} / {user.total_output_tokens}")
    typer.echo(f"Estimated cost    : ${user.total_estimated_cost_usd:.4f}")


@account_app.command("set-tier")
def account_set_tier(
    tier: str = typer.Argument(..., help="FREE | STARTER | PRO"),
) -> None:
    """Change the local user's tier (development databases only)."""
    ctx = load_context()
    if not ctx.user_id:
        typer.echo("[account set-tier] Not signed in.")
        raise typer.Exit(code=1)
    if tier.upper() not in TIERS:
        typer.echo(f"[account set-tier] Unknown tier {tier!r}. Use: {' | '.join(TIERS)}")
        raise typer.Exit(code=1)

    conn = get_connection()
    init_db(conn)
    try:
        with transaction(conn):
            user_store.ensure_user(conn, ctx.user_id, ctx.email)
            user_store.set_tier(conn, ctx.user_id, tier)
    finally:
        conn.close()
    typer.echo(f"[account set-tier] Tier set to {tier.upper()}")
