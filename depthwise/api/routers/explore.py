"""Tree-growth endpoints.

Routes
------
POST /create-session    Body: {"query": "...", "clientId"?}
POST /expand-node       Body: {"sessionId", "parentId", "isAnonymous", "exploreType"?, "focusTerm"?}
POST /migrate-session   Body: {"anonymousSessionId"}  (signed in)
"""

from __future__ import annotations

import sqlite3
from typing import Any

from fastapi import APIRouter, Depends, Request

from depthwise.api.context import client_id_for, request_id_for, request_origin
from depthwise.api.deps import get_db, get_generator, get_identity, require_identity
from depthwise.api.ratelimit import rate_limit
from depthwise.api.schemas import (
    CreateSessionBody,
    ExpandNodeBody,
    MigrateSessionBody,
    edge_dict,
    node_dict,
)
from depthwise.engine import ExpandRequest, create_session, expand_node, migrate_session
from depthwise.generator.client import ContentGenerator
from depthwise.identity import Identity
from depthwise.validation import sanitize_boolean

router = APIRouter()


@router.post("/create-session", dependencies=[Depends(rate_limit("create"))])
def create_session_endpoint(
    body: CreateSessionBody,
    request: Request,
    conn: sqlite3.Connection = Depends(get_db),
    identity: Identity = Depends(get_identity),
    generator: ContentGenerator = Depends(get_generator),
) -> dict[str, Any]:
    """Start a new exploration from a question."""
    result = create_session(
        conn,
        generator,
        body.query,
        identity,
        origin=request_origin(request, body.client_id),
        request_id=request_id_for(request),
    )
    root = node_dict(result.root)
    root["exploreTerms"] = result.key_terms
    return {
        "sessionId": result.session.id,
        "isAnonymous": result.session.is_anonymous,
        "createdAt": result.session.created_at,
        "rootNode": root,
        "branches": [node_dict(c) for c in result.children],
        "edges": [edge_dict(e) for e in result.edges],
    }


@router.post("/expand-node", dependencies=[Depends(rate_limit("explore"))])
def expand_node_endpoint(
    body: ExpandNodeBody,
    request: Request,
    conn: sqlite3.Connection = Depends(get_db),
    identity: Identity = Depends(get_identity),
    generator: ContentGenerator = Depends(get_generator),
) -> dict[str, Any]:
    """Expand one node into children, or return the existing ones."""
    result = expand_node(
        conn,
        generator,
        ExpandRequest(
            session_id=body.session_id,
            parent_id=body.parent_id,
            is_anonymous=sanitize_boolean(body.is_anonymous, "isAnonymous"),
            intent=body.explore_type,
            focus_term=body.focus_term,
            client_id=client_id_for(request, body.client_id),
            request_id=request_id_for(request),
        ),
        identity,
    )
    return {
        "parentId": result.parent.id,
        "parentContent": result.parent_content,
        "parentTerms": result.key_terms,
        "branches": [node_dict(c) for c in result.children],
        "edges": [edge_dict(e) for e in result.edges],
        "reused": result.reused,
    }


@router.post("/migrate-session")
def migrate_session_endpoint(
    body: MigrateSessionBody,
    conn: sqlite3.Connection = Depends(get_db),
    identity: Identity = Depends(require_identity),
) -> dict[str, Any]:
    """Move an anonymous tree into the caller's account."""
    session = migrate_session(conn, body.anonymous_session_id, identity)
    return {"success": True, "sessionId": session.id}
