"""Depthwise CLI: local front-end to the exploration engine.

Usage:
    depthwise --help

Command groups:
    db        database setup
    session   create, expand, list, switch, delete and migrate sessions
    account   sign in/out, usage
    map       tree view, focus view and layout
    serve     run the HTTP API
"""

from __future__ import annotations

import typer

from depthwise.config import configure_logging, settings
from depthwise.db import get_connection, init_db
from depthwise.db.migrations import current_version

from cli.commands.account import account_app
from cli.commands.map import map_app
from cli.commands.session import session_app

app = typer.Typer(
    name="depthwise",
    help="Depthwise exploration CLI.",
    no_args_is_help=True,
)

db_app = typer.Typer(help="Database operations.", no_args_is_help=True)
app.add_typer(db_app, name="db")
app.add_typer(session_app, name="session")
app.add_typer(account_app, name="account")
app.add_typer(map_app, name="map")


@app.callback()
def main(
    log_level: str = typer.Option(settings.log_level, "--log-level", help="Logging level."),
) -> None:
    configure_logging(log_level.upper())


@db_app.command("init")
def db_init() -> None:
    """Initialise the SQLite database (create tables if they do not exist)."""
    conn = get_connection()
    init_db(conn)
    version = current_version(conn)
    conn.close()
    typer.echo(f"[db init] Database ready at {settings.db_path} (schema v{version})")


@app.command("serve")
def serve(
    host: str = typer.Option("127.0.0.1", help="Bind address."),
    port: int = typer.Option(8000, help="Port."),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes."),
) -> None:
    """Run the HTTP API with uvicorn."""
    import uvicorn

    typer.echo(f"[serve] Listening on http://{host}:{port}")
    uvicorn.run("depthwise.api.app:app", host=host, port=port, reload=reload)


# ---------------------------------------------------------------------------
# Entry-point
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    app()
