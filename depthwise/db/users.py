"""Operations on the ``users`` table: tier and quota counters."""

from __future__ import annotations

import sqlite3
from time import time
from typing import Optional

from depthwise.db.models import User

SECONDS_PER_DAY = 24 * 60 * 60


def _row_to_user(row: sqlite3.Row) -> User:
    return User(
        id=row["id"],
        email=row["email"],
        subscription_tier=row["subscription_tier"],
        explorations_used=row["explorations_used"],
        explorations_total=row["explorations_total"],
        explorations_reset_at=row["explorations_reset_at"],
        total_input_tokens=row["total_input_tokens"],
        total_output_tokens=row["total_output_tokens"],
        total_estimated_cost_usd=row["total_estimated_cost_usd"],
        last_seen_at=row["last_seen_at"],
        created_at=row["created_at"],
    )


def get_user(conn: sqlite3.Connection, user_id: str) -> Optional[User]:
    """Fetch a user by identity id.  Returns ``None`` if not found."""
    row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
    return _row_to_user(row) if row else None


def ensure_user(
    conn: sqlite3.Connection,
    user_id: str,
    email: Optional[str] = None,
    now: Optional[int] = None,
) -> User:
    """Get-or-create the row for an authenticated identity.

    New users start on ``FREE`` with their quota window opening now.
    """
    ts = int(now if now is not None else time())
    conn.execute(
        """
        INSERT OR IGNORE INTO users (id, email, explorations_reset_at, last_seen_at, created_at)
        VALUES (?, ?, ?, ?, ?)
        """,
        (user_id, email, ts, ts, ts),
    )
    if email:
        conn.execute(
            "UPDATE users SET email = ? WHERE id = ? AND email IS NULL", (email, user_id)
        )
    return get_user(conn, user_id)  # type: ignore[return-value]


def set_tier(conn: sqlite3.Connection, user_id: str, tier: str) -> None:
    conn.execute(
        "UPDATE users SET subscription_tier = ? WHERE id = ?", (tier.upper(), user_id)
    )


def reset_if_due(
    conn: sqlite3.Connection, user: User, window_days: int, now: Optional[int] = None
) -> User:
    """Zero the monthly counter once *window_days* have passed since the last reset.

    Returns the (possibly refreshed) user.
    """
    ts = int(now if now is not None else time())
    if ts - user.explorations_reset_at < window_days * SECONDS_PER_DAY:
        return user
    conn.execute(
        "UPDATE users SET explorations_used = 0, explorations_reset_at = ? WHERE id = ?",
        (ts, user.id),
    )
    return get_user(conn, user.id)  # type: ignore[return-value]


def record_usage(
    conn: sqlite3.Connection,
    user_id: str,
    input_tokens: int = 0,
    output_tokens: int = 0,
    estimated_cost_usd: float = 0.0,
    count_exploration: bool = True,
    now: Optional[int] = None,
) -> None:
    """Add token/cost totals and, for expansions, bump the exploration counters."""
    ts = int(now if now is not None else time())
    increment = 1 if count_exploration else 0
    cur = conn.execute(
        """
        UPDATE users
        SET explorations_used        = explorations_used + ?,
            explorations_total       = explorations_total + ?,
            total_input_tokens       = total_input_tokens + ?,
            total_output_tokens      = total_output_tokens + ?,
            total_estimated_cost_usd = total_estimated_cost_usd + ?,
            last_seen_at             = ?
        WHERE id = ?
        """,
        (
            increment,
            increment,
            max(0, int(input_tokens)),
            max(0, int(output_tokens)),
            max(0.0, float(estimated_cost_usd)),
            ts,
            user_id,
        ),
    )
    if cur.rowcount == 0:
        raise ValueError(f"User not found: {user_id!r}")

