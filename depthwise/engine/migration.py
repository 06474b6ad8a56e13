"""Moving an anonymous exploration tree into the caller's account."""

from __future__ import annotations

import logging
import sqlite3
from time import time
from typing import Optional

from depthwise.db import edges as edge_store
from depthwise.db import nodes as node_store
from depthwise.db import sessions as session_store
from depthwise.db import users as user_store
from depthwise.db.connection import transaction
from depthwise.db.models import ACCOUNT, ANONYMOUS, Session
from depthwise.errors import AuthenticationRequired, GraphIntegrityError, SessionNotFound
from depthwise.identity import Identity
from depthwise.validation import require_uuid

logger = logging.getLogger(__name__)


def migrate_session(
    conn: sqlite3.Connection,
    anonymous_session_id: str,
    identity: Identity,
    *,
    now: Optional[int] = None,
) -> Session:
    """Copy an anonymous tree into a new account session and delete the source.

    Nodes are replayed shallowest first through an old → new id table so
    every parent exists before its children; edges go through the same
    table.  Everything happens in one transaction: on any failure nothing is
    written and the anonymous session is left intact.

    Returns:
        The new account-bound :class:`~depthwise.db.models.Session`.

    Raises:
        AuthenticationRequired: If the caller is not signed in.
        InvalidInput: If the id is malformed.
        SessionNotFound: If the anonymous session does not exist.
        GraphIntegrityError: If a node's parent was not replayed first.
    """
    if not identity.authenticated:
        raise AuthenticationRequired("Sign in to save this exploration")
    require_uuid(anonymous_session_id, "anonymousSessionId")
    ts = int(now if now is not None else time())

    with transaction(conn):
        graph = edge_store.get_graph_data(conn, ANONYMOUS, anonymous_session_id)
        if graph is None:
            raise SessionNotFound("Anonymous session not found")
        source = graph.session

        user_store.ensure_user(conn, identity.user_id, identity.email, now=ts)  # type: ignore[arg-type]
        target = session_store.create_session(
            conn,
            ACCOUNT,
            source.root_query,
            user_id=identity.user_id,
            origin=source.origin,
            title=source.title,
            now=ts,
        )

        remap: dict[str, str] = {}
        for node in sorted(graph.nodes, key=lambda n: n.depth):
            parent_id: Optional[str] = None
            if node.parent_id is not None:
                if node.parent_id not in remap:
                    raise GraphIntegrityError(
                        "Node replayed before its parent", nodeId=node.id
                    )
                parent_id = remap[node.parent_id]
            copy = node_store.create_node(
                conn,
                ACCOUNT,
                target.id,
                title=node.title,
                depth=node.depth,
                x=node.x,
                y=node.y,
                parent_id=parent_id,
                content=node.content,
                summary=node.summary,
                explored=node.explored,
                follow_up_type=node.follow_up_type,
                now=node.created_at,
            )
            remap[node.id] = copy.id

        for edge in graph.edges:
            if edge.source_id not in remap or edge.target_id not in remap:
                raise GraphIntegrityError("Edge references an unknown node", edgeId=edge.id)
            edge_store.create_edge(
                conn,
                ACCOUNT,
                target.id,
                remap[edge.source_id],
                remap[edge.target_id],
                animated=edge.animated,
                now=edge.created_at,
            )

        session_store.recompute_stats(conn, ACCOUNT, target.id)
        session_store.delete_session(conn, ANONYMOUS, source.id)
        migrated = session_store.get_session(conn, ACCOUNT, target.id)

    logger.info(
        "Migrated anonymous session %s to %s for user %s (%d nodes, %d edges)",
        source.id, target.id, identity.user_id, len(graph.nodes), len(graph.edges),
    )
    return migrated  # type: ignore[return-value]
