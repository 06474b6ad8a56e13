"""Session read/delete/share endpoints.

Routes
------
GET    /sessions                   The caller's sessions, newest first
GET    /sessions/{id}              Full tree (owner only; ``?anonymous=true`` for anonymous trees)
DELETE /sessions/{id}              Delete a session and its tree
POST   /sessions/{id}/share        Body: {"isPublic": bool}
GET    /share/{id}                 Public read of a shared tree
"""

from __future__ import annotations

import sqlite3
from typing import Any

from fastapi import APIRouter, Depends

from depthwise.api.deps import get_db, get_identity, require_identity
from depthwise.api.schemas import ShareBody, edge_dict, node_dict, session_dict
from depthwise.db import transaction
from depthwise.db import edges as edge_store
from depthwise.db import sessions as session_store
from depthwise.db.models import ACCOUNT, ANONYMOUS, GraphPayload, Session
from depthwise.errors import AuthenticationRequired, SessionNotFound
from depthwise.identity import Identity
from depthwise.validation import require_uuid

router = APIRouter()


def _graph_dict(graph: GraphPayload) -> dict[str, Any]:
    return {
        "session": session_dict(graph.session),
        "nodes": [node_dict(n) for n in graph.nodes],
        "edges": [edge_dict(e) for e in graph.edges],
    }


def _owned_session(conn: sqlite3.Connection, session_id: str, identity: Identity) -> Session:
    require_uuid(session_id, "sessionId")
    session = session_store.get_session(conn, ACCOUNT, session_id)
    if session is None or session.user_id != identity.user_id:
        raise SessionNotFound()
    return session


@router.get("/sessions")
def list_sessions_endpoint(
    conn: sqlite3.Connection = Depends(get_db),
    identity: Identity = Depends(require_identity),
) -> dict[str, Any]:
    sessions = session_store.list_sessions_for_user(conn, identity.user_id)  # type: ignore[arg-type]
    return {"sessions": [session_dict(s) for s in sessions]}


@router.get("/sessions/{session_id}")
def get_session_endpoint(
    session_id: str,
    anonymous: bool = False,
    conn: sqlite3.Connection = Depends(get_db),
    identity: Identity = Depends(get_identity),
) -> dict[str, Any]:
    """Return a session with all of its nodes and edges."""
    if anonymous:
        require_uuid(session_id, "sessionId")
        graph = edge_store.get_graph_data(conn, ANONYMOUS, session_id)
        if graph is None:
            raise SessionNotFound()
        return _graph_dict(graph)

    if not identity.authenticated:
        raise AuthenticationRequired()
    _owned_session(conn, session_id, identity)
    return _graph_dict(edge_store.get_graph_data(conn, ACCOUNT, session_id))  # type: ignore[arg-type]


@router.delete("/sessions/{session_id}")
def delete_session_endpoint(
    session_id: str,
    conn: sqlite3.Connection = Depends(get_db),
    identity: Identity = Depends(require_identity),
) -> dict[str, Any]:
    with transaction(conn):
        _owned_session(conn, session_id, identity)
        session_store.delete_session(conn, ACCOUNT, session_id)
    return {"success": True}


@router.post("/sessions/{session_id}/share")
def share_session_endpoint(
    session_id: str,
    body: ShareBody,
    conn: sqlite3.Connection = Depends(get_db),
    identity: Identity = Depends(require_identity),
) -> dict[str, Any]:
    with transaction(conn):
        _owned_session(conn, session_id, identity)
        session = session_store.set_visibility(conn, session_id, body.is_public)
    return {"success": True, "session": session_dict(session)}  # type: ignore[arg-type]


@router.get("/share/{session_id}")
def shared_session_endpoint(
    session_id: str,
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    """Read-only view of a public session; private ones look missing."""
    require_uuid(session_id, "sessionId")
    graph = edge_store.get_graph_data(conn, ACCOUNT, session_id)
    if graph is None or not graph.session.is_public:
        raise SessionNotFound("Shared session not found")
    return _graph_dict(graph)
