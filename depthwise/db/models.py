"""Dataclass models representing DB rows.

These are plain Python objects – not ORM models.  The DB layer serialises /
deserialises to and from these types.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Optional

FOLLOW_UP_TYPES = ("why", "how", "what", "example", "compare")


@dataclass(frozen=True)
class TreeFamily:
    """One of the two parallel table families holding session trees."""

    name: str
    session_table: str
    node_table: str
    edge_table: str

    @property
    def is_anonymous(self) -> bool:
        return self.name == "anonymous"


ACCOUNT = TreeFamily("account", "graph_sessions", "graph_nodes", "graph_edges")
ANONYMOUS = TreeFamily(
    "anonymous", "anonymous_sessions", "anonymous_nodes", "anonymous_edges"
)


def family_for(is_anonymous: bool) -> TreeFamily:
    return ANONYMOUS if is_anonymous else ACCOUNT


@dataclass
class Origin:
    """Where a session was started from (copied onto the session row)."""

    client_id: Optional[str] = None
    ip_hash: Optional[str] = None
    country: Optional[str] = None
    region: Optional[str] = None
    city: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass
class Session:
    id: str
    root_query: str
    title: str
    node_count: int
    max_depth: int
    user_id: Optional[str]
    is_public: bool
    origin: Origin
    created_at: int
    updated_at: int
    is_anonymous: bool = False

    @property
    def visibility(self) -> str:
        return "public" if self.is_public else "private"


@dataclass
class Node:
    id: str
    session_id: str
    parent_id: Optional[str]
    title: str
    content: Optional[str]
    summary: Optional[str]
    depth: int
    x: float
    y: float
    explored: bool
    follow_up_type: Optional[str]
    created_at: int

    @property
    def is_root(self) -> bool:
        return self.parent_id is None


@dataclass
class Edge:
    id: str
    session_id: str
    source_id: str
    target_id: str
    animated: bool
    created_at: int


@dataclass
class User:
    id: str
    email: Optional[str]
    subscription_tier: str
    explorations_used: int
    explorations_total: int
    explorations_reset_at: int
    total_input_tokens: int
    total_output_tokens: int
    total_estimated_cost_usd: float
    last_seen_at: Optional[int]
    created_at: int


@dataclass
class UsageEvent:
    id: str
    event_name: str
    user_id: Optional[str]
    session_id: Optional[str]
    anonymous_session_id: Optional[str]
    request_id: Optional[str]
    route: Optional[str]
    success: bool
    status_code: Optional[int]
    latency_ms: Optional[float]
    model: Optional[str]
    input_tokens: int
    output_tokens: int
    estimated_cost_usd: float
    metadata: dict[str, Any]
    created_at: int

    # ------------------------------------------------------------------
    # Convenience helpers
    # ------------------------------------------------------------------
    def metadata_json(self) -> str:
        """Serialise metadata dict to a JSON string for storage."""
        return json.dumps(self.metadata)


@dataclass
class GraphPayload:
    session: Session
    nodes: list[Node] = field(default_factory=list)
    edges: list[Edge] = field(default_factory=list)
