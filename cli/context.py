"""Persistent state for the Depthwise CLI.

Tracks the active session, the signed-in identity and the pending-migration
marker left behind when an anonymous session hits its depth limit.
Stored in ``<cli_config_dir>/context.json``.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from functools import wraps
from pathlib import Path
from typing import Any, Callable, Optional

import typer

from depthwise.config import settings
from depthwise.identity import ANONYMOUS_IDENTITY, Identity


@dataclass
class CliContext:
    active_session_id: Optional[str] = None
    is_anonymous: bool = True
    user_id: Optional[str] = None
    email: Optional[str] = None
    pending_migration: Optional[str] = None
    user_preferences: dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        return json.dumps(asdict(self), indent=2)

    @classmethod
    def from_json(cls, data: str) -> CliContext:
        try:
            raw = json.loads(data)
            return cls(**raw)
        except (json.JSONDecodeError, TypeError):
            return cls()

    def identity(self) -> Identity:
        if not self.user_id:
            return ANONYMOUS_IDENTITY
        return Identity(user_id=self.user_id, email=self.email)

    def switch_to(self, session_id: str, is_anonymous: bool) -> None:
        self.active_session_id = session_id
        self.is_anonymous = is_anonymous


def _get_context_path() -> Path:
    """Return the path to the context JSON file."""
    return settings.cli_config_dir / "context.json"


def load_context() -> CliContext:
    """Load the CLI context from disk. Returns defaults if missing/corrupt."""
    path = _get_context_path()
    if not path.exists():
        return CliContext()
    try:
        return CliContext.from_json(path.read_text(encoding="utf-8"))
    except OSError:
        return CliContext()


def save_context(ctx: CliContext) -> None:
    """Save the CLI context to disk."""
    settings.cli_config_dir.mkdir(parents=True, exist_ok=True)
    _get_context_path().write_text(ctx.to_json(), encoding="utf-8")


def require_session(func: Callable) -> Callable:
    """Decorator for commands that need an active session.

    Aborts with exit code 1 when none is selected; the command itself calls
    :func:`load_context` for the details.
    """

    @wraps(func)
    def wrapper(*args, **kwargs):
        ctx = load_context()
        if not ctx.active_session_id:
            typer.echo("No active session.")
            typer.echo("Run 'session create <question>' or 'session use <id>' first.")
            raise typer.Exit(code=1)
        return func(*args, **kwargs)

    return wrapper
