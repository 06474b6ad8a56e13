"""Session-scoped graph controller.

One :class:`GraphController` mirrors one session's tree in memory: nodes,
edges, session flags, the pending-migration marker, an error banner and the
focus pivot.  Views get the controller passed in; there is no module-level
store.

Per-node transient status is one of four variants:

``Skeleton``  placeholder shown under a node while its expansion is in flight
``Pending``   a real, unexplored node (``in_flight`` while being expanded)
``Explored``  a real node whose answer and children are loaded
``Errored``   the last expansion of this node failed
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Union

from depthwise.client import focus
from depthwise.client.api import DepthwiseClient
from depthwise.config import settings
from depthwise.errors import (
    AnonymousDepthLimit,
    DepthLimitReached,
    DepthwiseError,
    LimitReached,
)
from depthwise.graph import GraphEdge, GraphNode, normalize_edges, normalize_loaded_graph
from depthwise.layout import (
    LayoutNode,
    LayoutOptions,
    apply_non_overlapping_layout,
    get_profile,
    place_children,
)

logger = logging.getLogger(__name__)

SKELETON_COUNT = 3


@dataclass(frozen=True)
class Skeleton:
    parent_id: str


@dataclass(frozen=True)
class Pending:
    in_flight: bool = False


@dataclass(frozen=True)
class Explored:
    pass


@dataclass(frozen=True)
class Errored:
    message: str


NodeStatus = Union[Skeleton, Pending, Explored, Errored]


class ExpansionRejected(Exception):
    """Raised by :meth:`GraphController.explore` when a request is not sent."""


class GraphController:
    def __init__(
        self,
        api: Optional[DepthwiseClient] = None,
        focus_threshold: Optional[int] = None,
        layout_profile: Optional[str] = None,
    ) -> None:
        self.api = api
        self.focus_threshold = focus_threshold or settings.focus_depth_threshold
        self.layout_profile = layout_profile or settings.layout_profile
        self.reset()

    def reset(self) -> None:
        self.session_id: Optional[str] = None
        self.root_query: Optional[str] = None
        self.is_anonymous = False
        self.is_public = False
        self.nodes: dict[str, GraphNode] = {}
        self.edges: dict[str, GraphEdge] = {}
        self.key_terms: dict[str, list[str]] = {}
        self._status: dict[str, NodeStatus] = {}
        self.pending_migration: Optional[str] = None
        self.error: Optional[str] = None
        self.focus_id: Optional[str] = None

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load(
        self,
        session_id: str,
        nodes: Any,
        edges: Any,
        root_query: Optional[str] = None,
        is_anonymous: bool = False,
        is_public: bool = False,
    ) -> None:
        """Replace the current snapshot with a normalised one."""
        self.reset()
        self.session_id = session_id
        self.root_query = root_query
        self.is_anonymous = is_anonymous
        self.is_public = is_public
        clean_nodes, clean_edges = normalize_loaded_graph(nodes, edges)
        self.add_nodes(clean_nodes)
        self.add_edges(clean_edges)
        self.maybe_auto_focus()
        self.relayout()

    def load_payload(self, payload: dict[str, Any]) -> None:
        """Load a ``GET /sessions/{id}`` or ``GET /share/{id}`` body."""
        session = payload.get("session") or {}
        self.load(
            session.get("id", ""),
            payload.get("nodes"),
            payload.get("edges"),
            root_query=session.get("rootQuery"),
            is_anonymous=bool(session.get("isAnonymous", False)),
            is_public=bool(session.get("isPublic", False)),
        )

    def load_created(self, payload: dict[str, Any]) -> None:
        """Load a ``POST /create-session`` body."""
        root = dict(payload["rootNode"])
        self.load(
            payload["sessionId"],
            [root, *payload.get("branches", [])],
            payload.get("edges", []),
            root_query=root.get("title"),
            is_anonymous=bool(payload.get("isAnonymous", False)),
        )
        self.key_terms[root["id"]] = list(root.get("exploreTerms") or [])

    # ------------------------------------------------------------------
    # Snapshot access / mutation
    # ------------------------------------------------------------------

    def add_nodes(self, nodes: Iterable[GraphNode]) -> None:
        for node in nodes:
            self.nodes[node.id] = node

    def add_edges(self, edges: Iterable[GraphEdge]) -> None:
        for edge in edges:
            if edge.source in self.nodes and edge.target in self.nodes:
                self.edges[edge.id] = edge

    def remove_node(self, node_id: str) -> None:
        """Drop a node together with every edge touching it."""
        self.nodes.pop(node_id, None)
        self._status.pop(node_id, None)
        self.edges = {
            eid: e for eid, e in self.edges.items() if node_id not in (e.source, e.target)
        }

    def status(self, node_id: str) -> NodeStatus:
        explicit = self._status.get(node_id)
        if explicit is not None:
            return explicit
        node = self.nodes.get(node_id)
        if node is not None and node.explored:
            return Explored()
        return Pending()

    def real_nodes(self) -> list[GraphNode]:
        return [n for n in self.nodes.values() if not isinstance(self._status.get(n.id), Skeleton)]

    def children_of(self, node_id: str) -> list[GraphNode]:
        return [n for n in self.real_nodes() if n.parent_id == node_id]

    def max_depth(self) -> int:
        return max((n.depth for n in self.real_nodes()), default=0)

    # ------------------------------------------------------------------
    # Expansion lifecycle
    # ------------------------------------------------------------------

    def begin_expansion(self, node_id: str, count: int = SKELETON_COUNT) -> list[str]:
        """Mark *node_id* in flight and hang skeleton placeholders under it."""
        parent = self.nodes[node_id]
        self._status[node_id] = Pending(in_flight=True)
        self.error = None

        spacing = get_profile(self.layout_profile).for_parent_depth(parent.depth)
        ids: list[str] = []
        for index, (x, y) in enumerate(place_children(parent.x, parent.y, count, spacing)):
            sid = f"skeleton-{node_id}-{index}"
            self.nodes[sid] = GraphNode(id=sid, title="", depth=parent.depth + 1, x=x, y=y, parent_id=node_id)
            self._status[sid] = Skeleton(parent_id=node_id)
            self.edges[f"edge-{node_id}-{sid}"] = GraphEdge(
                id=f"edge-{node_id}-{sid}", source=node_id, target=sid
            )
            ids.append(sid)
        return ids

    def _clear_skeletons(self, node_id: str) -> None:
        for sid, status in list(self._status.items()):
            if isinstance(status, Skeleton) and status.parent_id == node_id:
                self.remove_node(sid)

    def complete_expansion(self, node_id: str, response: dict[str, Any]) -> None:
        """Apply a successful ``POST /expand-node`` body."""
        self._clear_skeletons(node_id)
        parent = self.nodes[node_id]
        if response.get("parentContent"):
            parent.content = response["parentContent"]
        terms = list(response.get("parentTerms") or [])
        if terms or not response.get("reused"):
            self.key_terms[node_id] = terms

        branches = [
            dict(b, parentId=b.get("parentId") or node_id) for b in response.get("branches", [])
        ]
        new_nodes, _ = normalize_loaded_graph(branches, [])
        self.add_nodes(new_nodes)
        self.add_edges(normalize_edges(response.get("edges", []), set(self.nodes)))

        parent.explored = True
        self._status.pop(node_id, None)
        if self.focus_id is not None:
            self.focus_id = node_id
        else:
            self.maybe_auto_focus()
        self.relayout()

    def fail_expansion(self, node_id: str, error: DepthwiseError) -> None:
        """Undo the in-flight state after a rejected or failed expansion."""
        self._clear_skeletons(node_id)
        if isinstance(error, AnonymousDepthLimit):
            self.pending_migration = self.session_id
            self._status.pop(node_id, None)
        elif isinstance(error, (DepthLimitReached, LimitReached)):
            self.error = error.message
            self._status.pop(node_id, None)
        else:
            self.error = error.message
            self._status[node_id] = Errored(error.message)

    def explore(
        self,
        node_id: str,
        explore_type: Optional[str] = None,
        focus_term: Optional[str] = None,
    ) -> dict[str, Any]:
        """Expand a node through the API and fold the result into the snapshot.

        Raises:
            ExpansionRejected: If the node is unknown, a placeholder, already
                in flight, or already explored without a focus term.
            DepthwiseError: Whatever the API raised, after state is restored.
        """
        if self.api is None or self.session_id is None:
            raise ExpansionRejected("No session loaded")
        node = self.nodes.get(node_id)
        status = self.status(node_id)
        if node is None or isinstance(status, Skeleton):
            raise ExpansionRejected(f"Unknown node {node_id!r}")
        if isinstance(status, Pending) and status.in_flight:
            raise ExpansionRejected("Expansion already in progress")
        if isinstance(status, Explored) and not focus_term:
            raise ExpansionRejected("Node already explored")

        self.begin_expansion(node_id)
        try:
            response = self.api.expand_node(
                self.session_id, node_id, self.is_anonymous, explore_type, focus_term
            )
        except DepthwiseError as exc:
            self.fail_expansion(node_id, exc)
            raise
        self.complete_expansion(node_id, response)
        return response

    def migrate_pending(self) -> Optional[str]:
        """Migrate the session flagged by an anonymous depth limit.

        The marker is cleared whatever happens so a permanent failure cannot
        trigger endless retries.  Returns the new session id, or ``None``.
        """
        source = self.pending_migration
        if source is None or self.api is None:
            return None
        try:
            body = self.api.migrate_session(source)
        except DepthwiseError as exc:
            logger.warning("Migration of %s failed: %s", source, exc.message)
            self.error = exc.message
            return None
        finally:
            self.pending_migration = None

        new_id = body["sessionId"]
        if self.session_id == source:
            self.load_payload(self.api.get_session(new_id))
        return new_id

    # ------------------------------------------------------------------
    # Focus view
    # ------------------------------------------------------------------

    @property
    def focus_mode(self) -> bool:
        return self.focus_id is not None

    def focus_on(self, node_id: str) -> None:
        if node_id not in self.nodes:
            raise KeyError(node_id)
        self.focus_id = node_id

    def exit_focus(self) -> None:
        self.focus_id = None

    def maybe_auto_focus(self) -> Optional[str]:
        """Pivot to the deepest explored node once it is deep enough."""
        if self.focus_mode:
            return None
        target = focus.auto_focus_target(self.real_nodes(), self.focus_threshold)
        if target is not None:
            self.focus_id = target
        return target

    def visible_node_ids(self) -> set[str]:
        return focus.visible_node_ids(self.nodes, self.focus_id)

    def visible_nodes(self) -> list[GraphNode]:
        visible = self.visible_node_ids()
        return [n for n in self.nodes.values() if n.id in visible]

    def visible_edges(self) -> list[GraphEdge]:
        return focus.visible_edges(self.edges.values(), self.visible_node_ids())

    def breadcrumb(self) -> list[GraphNode]:
        if self.focus_id is None:
            return []
        return focus.ancestor_path(self.nodes, self.focus_id)

    def relayout(self, options: Optional[LayoutOptions] = None) -> bool:
        """Run the non-overlap pass over visible nodes; True when anything moved."""
        boxes = [LayoutNode(n.id, n.depth, n.x, n.y) for n in self.visible_nodes()]
        laid_out = apply_non_overlapping_layout(boxes, options)
        if laid_out is boxes:
            return False
        for box in laid_out:
            self.nodes[box.id].x, self.nodes[box.id].y = box.x, box.y
        return True
