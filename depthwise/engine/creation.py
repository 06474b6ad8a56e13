"""Starting a new exploration: session, root node and first branches."""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from functools import partial
from time import perf_counter, time
from typing import Optional

from depthwise.db import edges as edge_store
from depthwise.db import nodes as node_store
from depthwise.db import sessions as session_store
from depthwise.db import users as user_store
from depthwise.db.connection import transaction
from depthwise.db.models import Edge, Node, Origin, Session, family_for
from depthwise.engine.exploration import ExplorationPolicy
from depthwise.engine.outbox import (
    PostCommitQueue,
    TaskOutcome,
    record_event,
    record_user_usage,
)
from depthwise.generator.client import (
    ContentGenerator,
    GenerationRequest,
    GenerationUsage,
    GeneratorError,
    classify_generator_failure,
)
from depthwise.identity import Identity
from depthwise.layout import get_profile, place_children
from depthwise.validation import sanitize_query

logger = logging.getLogger(__name__)

ROUTE = "POST /create-session"


@dataclass
class CreationResult:
    session: Session
    root: Node
    children: list[Node]
    edges: list[Edge]
    key_terms: list[str] = field(default_factory=list)
    usage: Optional[GenerationUsage] = None
    outbox: list[TaskOutcome] = field(default_factory=list)


def create_session(
    conn: sqlite3.Connection,
    generator: ContentGenerator,
    query: str,
    identity: Identity,
    *,
    origin: Optional[Origin] = None,
    policy: Optional[ExplorationPolicy] = None,
    request_id: Optional[str] = None,
    now: Optional[int] = None,
    outbox: Optional[PostCommitQueue] = None,
) -> CreationResult:
    """Sanitise *query*, generate the first answer and persist the new tree.

    Authenticated callers get an account session, everyone else an anonymous
    one.  No depth or quota gate applies here; request-rate limiting at the
    HTTP layer bounds how often this runs.

    Raises:
        InvalidInput: If the query fails sanitisation.
        UpstreamTransient, ServerError: If the generator fails; nothing is
            written.
    """
    policy = policy or ExplorationPolicy.from_settings()
    ts = int(now if now is not None else time())
    outbox = outbox if outbox is not None else PostCommitQueue()
    origin = origin or Origin()
    started = perf_counter()

    question = sanitize_query(query)
    family = family_for(not identity.authenticated)

    try:
        result = generator.generate(GenerationRequest.seed(question))
    except GeneratorError as exc:
        logger.error("Generator failed creating a session (%s): %s", type(exc).__name__, exc)
        raise classify_generator_failure(exc) from exc

    spacing = get_profile(policy.layout_profile).level1
    positions = place_children(0.0, 0.0, len(result.branches), spacing)

    children: list[Node] = []
    new_edges: list[Edge] = []
    with transaction(conn):
        if identity.authenticated:
            user_store.ensure_user(conn, identity.user_id, identity.email, now=ts)  # type: ignore[arg-type]
        session = session_store.create_session(
            conn, family, question, user_id=identity.user_id, origin=origin, now=ts
        )
        root = node_store.create_node(
            conn,
            family,
            session.id,
            title=question,
            depth=1,
            x=0.0,
            y=0.0,
            content=result.answer,
            explored=True,
            now=ts,
        )
        for branch, (x, y) in zip(result.branches, positions):
            child = node_store.create_node(
                conn,
                family,
                session.id,
                title=branch.title,
                depth=2,
                x=x,
                y=y,
                parent_id=root.id,
                content=branch.summary,
                summary=branch.summary,
                follow_up_type=branch.follow_up_type,
                now=ts,
            )
            children.append(child)
            new_edges.append(
                edge_store.create_edge(conn, family, session.id, root.id, child.id, now=ts)
            )
        session_store.recompute_stats(conn, family, session.id)
        session = session_store.get_session(conn, family, session.id)  # type: ignore[assignment]

    logger.info(
        "Created %s session %s with %d branches",
        family.name, session.id, len(children),
    )

    usage = result.usage
    if identity.authenticated:
        outbox.enqueue(
            "usage_counters",
            partial(record_user_usage, conn, identity.user_id, usage, ts, count_exploration=False),
        )
    outbox.enqueue(
        "telemetry",
        partial(
            record_event,
            conn,
            "session_created_anonymous" if family.is_anonymous else "session_created",
            session_id=session.id,
            is_anonymous=family.is_anonymous,
            user_id=identity.user_id,
            route=ROUTE,
            now=ts,
            started=started,
            request_id=request_id,
            client_id=origin.client_id,
            usage=usage,
            metadata={
                "branchCount": len(children),
                "keyTermCount": len(result.key_terms),
                "isAuthenticated": identity.authenticated,
            },
        ),
    )

    return CreationResult(
        session=session,
        root=root,
        children=children,
        edges=new_edges,
        key_terms=result.key_terms,
        usage=usage,
        outbox=outbox.flush(),
    )
