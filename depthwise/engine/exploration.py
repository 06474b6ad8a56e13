"""Expansion of a single node into its children.

:func:`expand_node` is the whole protocol for one "expand" request:

    1. validate ids and options
    2. load the session and target node (ownership checked for account trees)
    3. depth gate (anonymous cap, then tier cap)
    4. monthly quota gate (account trees only)
    5. idempotent return of existing children for an explored node
    6. context assembly (ancestor path, covered topics)
    7. one generator call
    8. one transaction writing children, edges, parent answer and stats
    9. post-commit usage counters and telemetry through the outbox
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from functools import partial
from time import perf_counter, time
from typing import Optional

from depthwise.config import settings
from depthwise.db import edges as edge_store
from depthwise.db import nodes as node_store
from depthwise.db import sessions as session_store
from depthwise.db import users as user_store
from depthwise.db.connection import transaction
from depthwise.db.models import Edge, Node, Session, TreeFamily, User, family_for
from depthwise.engine.context import ancestor_path, covered_topics
from depthwise.engine.outbox import (
    PostCommitQueue,
    TaskOutcome,
    record_event,
    record_user_usage,
)
from depthwise.engine.tiers import can_explore, policy_for
from depthwise.errors import (
    AnonymousDepthLimit,
    AuthenticationRequired,
    DepthLimitReached,
    LimitReached,
    NodeNotFound,
    SessionNotFound,
)
from depthwise.generator.client import (
    ContentGenerator,
    GenerationRequest,
    GenerationResult,
    GenerationUsage,
    GeneratorError,
    classify_generator_failure,
)
from depthwise.identity import Identity
from depthwise.layout import (
    LayoutNode,
    LayoutOptions,
    apply_non_overlapping_layout,
    get_profile,
    place_children,
)
from depthwise.validation import require_uuid, validate_focus_term, validate_intent

logger = logging.getLogger(__name__)

ROUTE = "POST /expand-node"


@dataclass(frozen=True)
class ExplorationPolicy:
    anonymous_max_depth: int = 2
    quota_window_days: int = 30
    layout_profile: str = "desktop"

    @classmethod
    def from_settings(cls) -> "ExplorationPolicy":
        return cls(
            anonymous_max_depth=settings.anonymous_max_depth,
            quota_window_days=settings.quota_window_days,
            layout_profile=settings.layout_profile,
        )


@dataclass
class ExpandRequest:
    session_id: str
    parent_id: str
    is_anonymous: bool = False
    intent: Optional[str] = None
    focus_term: Optional[str] = None
    client_id: Optional[str] = None
    request_id: Optional[str] = None


@dataclass
class ExpansionResult:
    parent: Node
    children: list[Node]
    edges: list[Edge]
    reused: bool
    key_terms: list[str] = field(default_factory=list)
    usage: Optional[GenerationUsage] = None
    outbox: list[TaskOutcome] = field(default_factory=list)

    @property
    def parent_content(self) -> str:
        return self.parent.content or ""


# ---------------------------------------------------------------------------
# Gates
# ---------------------------------------------------------------------------

def load_target(
    conn: sqlite3.Connection, family: TreeFamily, session_id: str, node_id: str, identity: Identity
) -> tuple[Session, Node]:
    """Load a session and one of its nodes, enforcing account ownership."""
    session = session_store.get_session(conn, family, session_id)
    if session is None:
        raise SessionNotFound()
    if not family.is_anonymous:
        if not identity.authenticated:
            raise AuthenticationRequired("Sign in to continue this exploration")
        if session.user_id != identity.user_id:
            raise SessionNotFound()

    node = node_store.get_node(conn, family, node_id)
    if node is None or node.session_id != session.id:
        raise NodeNotFound()
    return session, node


def _check_depth(node: Node, family: TreeFamily, user: Optional[User], policy: ExplorationPolicy) -> None:
    target_depth = node.depth + 1
    if family.is_anonymous:
        if target_depth > policy.anonymous_max_depth:
            raise AnonymousDepthLimit(
                "Sign in to explore deeper",
                currentDepth=node.depth,
                maxDepth=policy.anonymous_max_depth,
            )
        return

    tier = policy_for(user.subscription_tier if user else None)
    if target_depth > tier.max_depth:
        raise DepthLimitReached(
            f"Your {tier.name} plan allows exploring up to {tier.max_depth} levels deep",
            tier=tier.name,
            maxDepth=tier.max_depth,
            currentDepth=node.depth,
        )


def _check_quota(user: User, now: int, policy: ExplorationPolicy) -> None:
    decision = can_explore(user, now, policy.quota_window_days)
    if not decision.allowed:
        raise LimitReached(decision.reason, tier=policy_for(user.subscription_tier).name)


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

def _child_positions(
    parent: Node,
    count: int,
    existing: list[Node],
    policy: ExplorationPolicy,
) -> tuple[list[tuple[float, float]], dict[str, tuple[float, float]]]:
    """Positions for *count* new children, plus moves for existing ones.

    A first expansion is a plain symmetric placement.  When children already
    exist (focus-term re-expansion) the combined row goes through the
    non-overlap pass so new nodes never sit on top of old ones.
    """
    spacing = get_profile(policy.layout_profile).for_parent_depth(parent.depth)
    placed = place_children(parent.x, parent.y, count, spacing)
    if not existing:
        return placed, {}

    new_ids = [f"new-{i}" for i in range(count)]
    row = [LayoutNode(c.id, c.depth, c.x, c.y) for c in existing]
    row += [LayoutNode(nid, parent.depth + 1, x, y) for nid, (x, y) in zip(new_ids, placed)]
    laid_out = {n.id: (n.x, n.y) for n in apply_non_overlapping_layout(row, LayoutOptions())}

    moves = {
        c.id: laid_out[c.id]
        for c in existing
        if laid_out[c.id] != (c.x, c.y)
    }
    return [laid_out[nid] for nid in new_ids], moves


def _persist_expansion(
    conn: sqlite3.Connection,
    family: TreeFamily,
    session: Session,
    parent: Node,
    result: GenerationResult,
    existing: list[Node],
    policy: ExplorationPolicy,
    now: int,
) -> tuple[Node, list[Node], list[Edge]]:
    positions, moves = _child_positions(parent, len(result.branches), existing, policy)

    children: list[Node] = []
    new_edges: list[Edge] = []
    with transaction(conn):
        for node_id, (x, y) in moves.items():
            node_store.update_position(conn, family, node_id, x, y)
        for branch, (x, y) in zip(result.branches, positions):
            child = node_store.create_node(
                conn,
                family,
                session.id,
                title=branch.title,
                depth=parent.depth + 1,
                x=x,
                y=y,
                parent_id=parent.id,
                content=branch.summary,
                summary=branch.summary,
                follow_up_type=branch.follow_up_type,
                now=now,
            )
            children.append(child)
            new_edges.append(
                edge_store.create_edge(conn, family, session.id, parent.id, child.id, now=now)
            )
        updated_parent = node_store.mark_explored(conn, family, parent.id, result.answer)
        session_store.recompute_stats(conn, family, session.id)
        session_store.touch_activity(conn, family, session.id, now=now)
    return updated_parent, children, new_edges


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def expand_node(
    conn: sqlite3.Connection,
    generator: ContentGenerator,
    request: ExpandRequest,
    identity: Identity,
    *,
    policy: Optional[ExplorationPolicy] = None,
    now: Optional[int] = None,
    outbox: Optional[PostCommitQueue] = None,
) -> ExpansionResult:
    """Expand ``request.parent_id`` into a set of children.

    Raises:
        InvalidInput, AuthenticationRequired, SessionNotFound, NodeNotFound,
        AnonymousDepthLimit, DepthLimitReached, LimitReached: Before any
            generator call or write.
        UpstreamTransient, ServerError: When the generator fails; nothing is
            written.
    """
    policy = policy or ExplorationPolicy.from_settings()
    ts = int(now if now is not None else time())
    outbox = outbox if outbox is not None else PostCommitQueue()
    started = perf_counter()

    # 1: validate
    require_uuid(request.session_id, "sessionId")
    require_uuid(request.parent_id, "parentId")
    intent = validate_intent(request.intent)
    focus_term = validate_focus_term(request.focus_term)

    # 2: load
    family = family_for(request.is_anonymous)
    session, node = load_target(conn, family, request.session_id, request.parent_id, identity)

    user: Optional[User] = None
    if not family.is_anonymous:
        with transaction(conn):
            user = user_store.ensure_user(conn, identity.user_id, identity.email, now=ts)  # type: ignore[arg-type]
            user = user_store.reset_if_due(conn, user, policy.quota_window_days, now=ts)

    # 3, 4: policy gates
    _check_depth(node, family, user, policy)
    if user is not None:
        _check_quota(user, ts, policy)

    # 5: idempotent re-expansion
    if node.explored and focus_term is None:
        logger.debug("Node %s already explored; returning existing children", node.id)
        return ExpansionResult(
            parent=node,
            children=node_store.list_children(conn, family, node.id),
            edges=edge_store.list_edges_from(conn, family, node.id),
            reused=True,
        )

    # 6: context
    path = ancestor_path(conn, family, node)
    existing = node_store.list_children(conn, family, node.id) if focus_term else []
    gen_request = GenerationRequest(
        root_question=session.root_query,
        path=[n.title for n in path],
        title=node.title,
        content=node.content or node.summary or "",
        depth=node.depth,
        covered_topics=covered_topics(conn, family, node, include_children=bool(existing)),
        intent=intent,
        focus_term=focus_term,
    )

    event = partial(
        record_event,
        conn,
        session_id=session.id,
        is_anonymous=family.is_anonymous,
        user_id=identity.user_id,
        route=ROUTE,
        now=ts,
        started=started,
        request_id=request.request_id,
        client_id=request.client_id,
    )

    # 7: generator
    try:
        result = generator.generate(gen_request)
    except GeneratorError as exc:
        error = classify_generator_failure(exc)
        logger.error(
            "Generator failed expanding node %s (%s): %s", node.id, type(exc).__name__, exc
        )
        outbox.enqueue(
            "telemetry",
            partial(
                event,
                "node_expansion_failed",
                success=False,
                status_code=error.status_code,
                metadata={"error": type(exc).__name__, "depth": node.depth},
            ),
        )
        outbox.flush()
        raise error from exc

    # 8: persist
    parent, children, new_edges = _persist_expansion(
        conn, family, session, node, result, existing, policy, ts
    )
    logger.info(
        "Expanded node %s in session %s: %d children at depth %d",
        node.id, session.id, len(children), node.depth + 1,
    )

    # 9: post-commit
    usage = result.usage
    if user is not None:
        outbox.enqueue(
            "usage_counters",
            partial(record_user_usage, conn, user.id, usage, ts, count_exploration=True),
        )
    outbox.enqueue(
        "telemetry",
        partial(
            event,
            "node_expanded_anonymous" if family.is_anonymous else "node_expanded",
            usage=usage,
            metadata={
                "depth": node.depth + 1,
                "branchCount": len(children),
                "intent": intent,
                "focusTerm": bool(focus_term),
            },
        ),
    )
    outcomes = outbox.flush()

    # 10: result
    return ExpansionResult(
        parent=parent,
        children=children,
        edges=new_edges,
        reused=False,
        key_terms=result.key_terms,
        usage=usage,
        outbox=outcomes,
    )

