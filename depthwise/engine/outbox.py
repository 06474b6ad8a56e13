"""Post-commit outbox.

Side effects that must never roll back graph state (usage counters,
telemetry) are queued while a request runs and flushed once the graph
transaction has committed.  Each task runs on its own; a failure is logged
at WARNING and recorded in the returned :class:`TaskOutcome` list, and the
remaining tasks still run.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from time import perf_counter
from typing import Any, Callable, Optional

from depthwise.db import events as event_store
from depthwise.db import users as user_store
from depthwise.db.connection import transaction
from depthwise.generator.client import GenerationUsage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaskOutcome:
    name: str
    ok: bool
    error: Optional[str] = None


class PostCommitQueue:
    def __init__(self) -> None:
        self._tasks: list[tuple[str, Callable[[], object]]] = []

    def __len__(self) -> int:
        return len(self._tasks)

    @property
    def pending(self) -> list[str]:
        return [name for name, _ in self._tasks]

    def enqueue(self, name: str, task: Callable[[], object]) -> None:
        self._tasks.append((name, task))

    def flush(self) -> list[TaskOutcome]:
        """Run every queued task in order and empty the queue."""
        tasks, self._tasks = self._tasks, []
        outcomes: list[TaskOutcome] = []
        for name, task in tasks:
            try:
                task()
            except Exception as exc:  # noqa: BLE001
                logger.warning("Post-commit task %r failed: %s", name, exc, exc_info=True)
                outcomes.append(TaskOutcome(name, ok=False, error=str(exc) or type(exc).__name__))
            else:
                outcomes.append(TaskOutcome(name, ok=True))
        return outcomes


# ---------------------------------------------------------------------------
# Standard tasks
# ---------------------------------------------------------------------------

def record_user_usage(
    conn: sqlite3.Connection,
    user_id: str,
    usage: GenerationUsage,
    now: int,
    count_exploration: bool,
) -> None:
    """Add one call's tokens/cost (and optionally one exploration) to a user."""
    with transaction(conn):
        user_store.record_usage(
            conn,
            user_id,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            estimated_cost_usd=usage.estimated_cost,
            count_exploration=count_exploration,
            now=now,
        )


def record_event(
    conn: sqlite3.Connection,
    event_name: str,
    *,
    session_id: Optional[str],
    is_anonymous: bool,
    user_id: Optional[str],
    route: str,
    now: int,
    started: float,
    request_id: Optional[str] = None,
    client_id: Optional[str] = None,
    usage: Optional[GenerationUsage] = None,
    success: bool = True,
    status_code: int = 200,
    metadata: Optional[dict[str, Any]] = None,
) -> None:
    """Write one telemetry row for a finished request."""
    with transaction(conn):
        event_store.record_usage_event(
            conn,
            event_name,
            user_id=user_id,
            session_id=None if is_anonymous else session_id,
            anonymous_session_id=session_id if is_anonymous else None,
            request_id=request_id,
            route=route,
            success=success,
            status_code=status_code,
            latency_ms=round((perf_counter() - started) * 1000, 2),
            model=usage.model if usage else None,
            input_tokens=usage.input_tokens if usage else 0,
            output_tokens=usage.output_tokens if usage else 0,
            estimated_cost_usd=usage.estimated_cost if usage else 0.0,
            metadata={"clientId": client_id, **(metadata or {})},
            now=now,
        )
