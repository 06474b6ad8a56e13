"""Request bodies and JSON serialisers.

Wire names are camelCase; request models accept either spelling.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from depthwise.db.models import Edge, Node, Session, User
from depthwise.db.users import SECONDS_PER_DAY
from depthwise.engine.tiers import policy_for, remaining


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------

class ExpandNodeBody(CamelModel):
    session_id: Any = None
    parent_id: Any = None
    is_anonymous: Any = False
    explore_type: Any = None
    focus_term: Any = None
    client_id: Optional[str] = None


class CreateSessionBody(CamelModel):
    # Typed loosely so sanitisation owns the error messages.
    query: Any = None
    client_id: Optional[str] = None


class MigrateSessionBody(CamelModel):
    anonymous_session_id: Any = None


class ShareBody(CamelModel):
    is_public: bool


# ---------------------------------------------------------------------------
# Serialisation helpers
# ---------------------------------------------------------------------------

def node_dict(node: Node) -> dict[str, Any]:
    return {
        "id": node.id,
        "parentId": node.parent_id,
        "title": node.title,
        "content": node.content or "",
        "summary": node.summary or "",
        "depth": node.depth,
        "position": {"x": node.x, "y": node.y},
        "explored": node.explored,
        "followUpType": node.follow_up_type,
    }


def edge_dict(edge: Edge) -> dict[str, Any]:
    return {
        "id": edge.id,
        "source": edge.source_id,
        "target": edge.target_id,
        "animated": edge.animated,
    }


def session_dict(session: Session) -> dict[str, Any]:
    return {
        "id": session.id,
        "rootQuery": session.root_query,
        "title": session.title,
        "nodeCount": session.node_count,
        "maxDepth": session.max_depth,
        "isPublic": session.is_public,
        "isAnonymous": session.is_anonymous,
        "createdAt": session.created_at,
        "updatedAt": session.updated_at,
    }


def usage_dict(user: User, now: int, window_days: int) -> dict[str, Any]:
    policy = policy_for(user.subscription_tier)
    return {
        "tier": policy.name,
        "maxDepth": policy.max_depth,
        "monthlyLimit": policy.monthly_quota,
        "explorationsUsed": user.explorations_used,
        "explorationsTotal": user.explorations_total,
        "remaining": remaining(user, now, window_days),
        "resetsAt": user.explorations_reset_at + window_days * SECONDS_PER_DAY,
        "totalInputTokens": user.total_input_tokens,
        "totalOutputTokens": user.total_output_tokens,
        "totalEstimatedCostUsd": round(user.total_estimated_cost_usd, 6),
    }
