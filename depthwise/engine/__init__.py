"""Tree-growth engine: creation, expansion and migration of sessions."""

from depthwise.engine.creation import CreationResult, create_session
from depthwise.engine.exploration import (
    ExpandRequest,
    ExpansionResult,
    ExplorationPolicy,
    expand_node,
)
from depthwise.engine.migration import migrate_session

__all__ = [
    "CreationResult",
    "ExpandRequest",
    "ExpansionResult",
    "ExplorationPolicy",
    "create_session",
    "expand_node",
    "migrate_session",
]
