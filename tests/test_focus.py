"""Focus view tests."""

from __future__ import annotations

import pytest

from depthwise.client.focus import (
    ancestor_path,
    auto_focus_target,
    descendant_ids,
    visible_edges,
    visible_node_ids,
)
from depthwise.errors import GraphIntegrityError
from depthwise.graph import GraphEdge, GraphNode


def _node(node_id, depth, parent_id=None, explored=False):
    return GraphNode(id=node_id, title=node_id, depth=depth, x=0.0, y=0.0,
                     parent_id=parent_id, explored=explored)


@pytest.fixture()
def tree():
    #        r
    #      /   \
    #     a     b
    #    / \     \
    #   a1  a2    b1
    #   |
    #   a1x
    nodes = [
        _node("r", 1, explored=True),
        _node("a", 2, "r", explored=True),
        _node("b", 2, "r", explored=True),
        _node("a1", 3, "a", explored=True),
        _node("a2", 3, "a"),
        _node("b1", 3, "b"),
        _node("a1x", 4, "a1"),
    ]
    return {n.id: n for n in nodes}


@pytest.fixture()
def edges(tree):
    return [
        GraphEdge(id=f"e-{n.id}", source=n.parent_id, target=n.id)
        for n in tree.values()
        if n.parent_id
    ]


class TestAncestorPath:
    def test_root_to_node(self, tree) -> None:
        assert [n.id for n in ancestor_path(tree, "a1x")] == ["r", "a", "a1", "a1x"]

    def test_unknown_node(self, tree) -> None:
        assert ancestor_path(tree, "missing") == []

    def test_stops_at_missing_parent(self, tree) -> None:
        del tree["a"]
        assert [n.id for n in ancestor_path(tree, "a1x")] == ["a1", "a1x"]

    def test_cycle_raises(self, tree) -> None:
        tree["r"].parent_id = "a1x"
        with pytest.raises(GraphIntegrityError):
            ancestor_path(tree, "a1")

    def test_non_decreasing_depth_raises(self, tree) -> None:
        tree["a"].depth = 3
        with pytest.raises(GraphIntegrityError):
            ancestor_path(tree, "a1")


class TestVisibleSet:
    def test_no_focus_shows_everything(self, tree) -> None:
        assert visible_node_ids(tree, None) == set(tree)
        assert visible_node_ids(tree, "gone") == set(tree)

    def test_ancestors_and_descendants(self, tree) -> None:
        assert visible_node_ids(tree, "a") == {"r", "a", "a1", "a2", "a1x"}

    def test_deep_pivot_hides_siblings(self, tree) -> None:
        assert visible_node_ids(tree, "a1") == {"r", "a", "a1", "a1x"}

    def test_descendants_exclude_self(self, tree) -> None:
        assert descendant_ids(tree, "b") == {"b1"}
        assert descendant_ids(tree, "a2") == set()

    def test_edges_need_both_endpoints(self, tree, edges) -> None:
        shown = visible_edges(edges, visible_node_ids(tree, "a1"))
        assert sorted(e.target for e in shown) == ["a", "a1", "a1x"]


class TestAutoFocus:
    def test_below_threshold(self, tree) -> None:
        assert auto_focus_target(tree.values(), 4) is None

    def test_deepest_explored_node(self, tree) -> None:
        assert auto_focus_target(tree.values(), 3) == "a1"

    def test_latest_wins_ties(self, tree) -> None:
        tree["b1"].explored = True
        assert auto_focus_target(tree.values(), 3) == "b1"

    def test_nothing_explored(self) -> None:
        assert auto_focus_target([_node("r", 1)], 1) is None
