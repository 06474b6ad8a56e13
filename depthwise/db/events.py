"""Telemetry rows written after the graph transaction commits."""

from __future__ import annotations

import json
import sqlite3
import uuid
from time import time
from typing import Any, Optional

from depthwise.db.models import UsageEvent


def _row_to_event(row: sqlite3.Row) -> UsageEvent:
    return UsageEvent(
        id=row["id"],
        event_name=row["event_name"],
        user_id=row["user_id"],
        session_id=row["session_id"],
        anonymous_session_id=row["anonymous_session_id"],
        request_id=row["request_id"],
        route=row["route"],
        success=bool(row["success"]),
        status_code=row["status_code"],
        latency_ms=row["latency_ms"],
        model=row["model"],
        input_tokens=row["input_tokens"],
        output_tokens=row["output_tokens"],
        estimated_cost_usd=row["estimated_cost_usd"],
        metadata=json.loads(row["metadata"] or "{}"),
        created_at=row["created_at"],
    )


def record_usage_event(
    conn: sqlite3.Connection,
    event_name: str,
    user_id: Optional[str] = None,
    session_id: Optional[str] = None,
    anonymous_session_id: Optional[str] = None,
    request_id: Optional[str] = None,
    route: Optional[str] = None,
    success: bool = True,
    status_code: Optional[int] = None,
    latency_ms: Optional[float] = None,
    model: Optional[str] = None,
    input_tokens: int = 0,
    output_tokens: int = 0,
    estimated_cost_usd: float = 0.0,
    metadata: Optional[dict[str, Any]] = None,
    now: Optional[int] = None,
) -> UsageEvent:
    """Insert one telemetry row and return it."""
    event = UsageEvent(
        id=str(uuid.uuid4()),
        event_name=event_name,
        user_id=user_id,
        session_id=session_id,
        anonymous_session_id=anonymous_session_id,
        request_id=request_id,
        route=route,
        success=success,
        status_code=status_code,
        latency_ms=latency_ms,
        model=model,
        input_tokens=max(0, int(input_tokens)),
        output_tokens=max(0, int(output_tokens)),
        estimated_cost_usd=max(0.0, float(estimated_cost_usd)),
        metadata=metadata or {},
        created_at=int(now if now is not None else time()),
    )
    conn.execute(
        """
        INSERT INTO usage_events
            (id, event_name, user_id, session_id, anonymous_session_id, request_id,
             route, success, status_code, latency_ms, model, input_tokens,
             output_tokens, estimated_cost_usd, metadata, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            event.id, event.event_name, event.user_id, event.session_id,
            event.anonymous_session_id, event.request_id, event.route,
            1 if event.success else 0, event.status_code, event.latency_ms,
            event.model, event.input_tokens, event.output_tokens,
            event.estimated_cost_usd, event.metadata_json(), event.created_at,
        ),
    )
    return event


def list_events(
    conn: sqlite3.Connection, user_id: Optional[str] = None, event_name: Optional[str] = None
) -> list[UsageEvent]:
    """Return telemetry rows, newest first, optionally filtered."""
    clauses: list[str] = []
    params: list[Any] = []
    if user_id is not None:
        clauses.append("user_id = ?")
        params.append(user_id)
    if event_name is not None:
        clauses.append("event_name = ?")
        params.append(event_name)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    rows = conn.execute(
        f"SELECT * FROM usage_events {where} ORDER BY created_at DESC, rowid DESC",  # noqa: S608
        params,
    ).fetchall()
    return [_row_to_event(r) for r in rows]
