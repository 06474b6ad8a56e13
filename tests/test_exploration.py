"""Expansion protocol tests: gates, persistence, idempotency and the outbox."""

from __future__ import annotations

import sqlite3
import uuid

import pytest

from depthwise.db.events import list_events
from depthwise.db.models import ACCOUNT, ANONYMOUS
from depthwise.db.nodes import get_node, list_children
from depthwise.db.sessions import get_session
from depthwise.db.users import SECONDS_PER_DAY, get_user
from depthwise.engine import ExpandRequest, create_session, expand_node
from depthwise.errors import (
    AnonymousDepthLimit,
    AuthenticationRequired,
    DepthLimitReached,
    GraphIntegrityError,
    InvalidInput,
    LimitReached,
    NodeNotFound,
    SessionNotFound,
    UpstreamTransient,
)
from depthwise.generator.client import GeneratorTimeout
from depthwise.identity import ANONYMOUS_IDENTITY

QUESTION = "Why is the sky blue?"


def _count(conn: sqlite3.Connection, table: str) -> int:
    return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]


def _expand(conn, generator, session, node_id, identity, policy, **options):
    return expand_node(
        conn,
        generator,
        ExpandRequest(
            session_id=session.id,
            parent_id=node_id,
            is_anonymous=session.is_anonymous,
            **options,
        ),
        identity,
        policy=policy,
    )


@pytest.fixture()
def anon_tree(conn, generator, policy):
    return create_session(conn, generator, QUESTION, ANONYMOUS_IDENTITY, policy=policy)


@pytest.fixture()
def account_tree(conn, generator, policy, alice):
    return create_session(conn, generator, QUESTION, alice, policy=policy)


# ---------------------------------------------------------------------------
# Validation and loading
# ---------------------------------------------------------------------------

class TestLoading:
    def test_invalid_ids(self, conn, generator, policy, anon_tree) -> None:
        with pytest.raises(InvalidInput):
            expand_node(
                conn, generator, ExpandRequest("nope", anon_tree.root.id, True), ANONYMOUS_IDENTITY, policy=policy
            )

    def test_invalid_intent(self, conn, generator, policy, anon_tree) -> None:
        with pytest.raises(InvalidInput):
            _expand(conn, generator, anon_tree.session, anon_tree.root.id, ANONYMOUS_IDENTITY, policy, intent="when")

    def test_unknown_session(self, conn, generator, policy, anon_tree) -> None:
        request = ExpandRequest(str(uuid.uuid4()), anon_tree.root.id, True)
        with pytest.raises(SessionNotFound):
            expand_node(conn, generator, request, ANONYMOUS_IDENTITY, policy=policy)

    def test_node_from_another_session(self, conn, generator, policy, anon_tree) -> None:
        other = create_session(conn, generator, "What is a CPU?", ANONYMOUS_IDENTITY, policy=policy)
        with pytest.raises(NodeNotFound):
            _expand(conn, generator, anon_tree.session, other.root.id, ANONYMOUS_IDENTITY, policy)

    def test_account_session_requires_sign_in(self, conn, generator, policy, account_tree) -> None:
        with pytest.raises(AuthenticationRequired):
            _expand(conn, generator, account_tree.session, account_tree.children[0].id, ANONYMOUS_IDENTITY, policy)

    def test_account_session_hidden_from_other_users(self, conn, generator, policy, account_tree, bob) -> None:
        with pytest.raises(SessionNotFound):
            _expand(conn, generator, account_tree.session, account_tree.children[0].id, bob, policy)


# ---------------------------------------------------------------------------
# Policy gates
# ---------------------------------------------------------------------------

class TestDepthGate:
    def test_anonymous_limit_creates_nothing(self, conn, generator, policy, anon_tree) -> None:
        nodes, edges = _count(conn, "anonymous_nodes"), _count(conn, "anonymous_edges")
        calls = len(generator.requests)

        with pytest.raises(AnonymousDepthLimit) as excinfo:
            _expand(conn, generator, anon_tree.session, anon_tree.children[0].id, ANONYMOUS_IDENTITY, policy)

        assert excinfo.value.status_code == 401
        assert excinfo.value.to_payload()["currentDepth"] == 2
        assert excinfo.value.to_payload()["maxDepth"] == 2
        assert _count(conn, "anonymous_nodes") == nodes
        assert _count(conn, "anonymous_edges") == edges
        assert len(generator.requests) == calls

    def test_tier_limit_creates_nothing(self, conn, generator, policy, alice, account_tree) -> None:
        node = account_tree.children[0]
        for _ in range(3):
            result = _expand(conn, generator, account_tree.session, node.id, alice, policy)
            node = result.children[0]
        assert node.depth == 5

        before = _count(conn, "graph_nodes")
        with pytest.raises(DepthLimitReached) as excinfo:
            _expand(conn, generator, account_tree.session, node.id, alice, policy)
        payload = excinfo.value.to_payload()
        assert payload["tier"] == "FREE"
        assert payload["maxDepth"] == 5
        assert _count(conn, "graph_nodes") == before


class TestQuotaGate:
    def test_monthly_limit(self, conn, generator, policy, alice, account_tree) -> None:
        conn.execute("UPDATE users SET explorations_used = 10 WHERE id = ?", (alice.user_id,))
        calls = len(generator.requests)
        with pytest.raises(LimitReached):
            _expand(conn, generator, account_tree.session, account_tree.children[0].id, alice, policy)
        assert len(generator.requests) == calls

    def test_rolling_reset_reopens_quota(self, conn, generator, policy, alice, account_tree) -> None:
        conn.execute(
            "UPDATE users SET explorations_used = 10, explorations_reset_at = 0 WHERE id = ?",
            (alice.user_id,),
        )
        _expand(conn, generator, account_tree.session, account_tree.children[0].id, alice, policy)
        user = get_user(conn, alice.user_id)
        assert user.explorations_used == 1
        assert user.explorations_reset_at > 30 * SECONDS_PER_DAY

    def test_gate_applies_before_cached_children(self, conn, generator, policy, alice, account_tree) -> None:
        child = account_tree.children[0]
        _expand(conn, generator, account_tree.session, child.id, alice, policy)
        conn.execute("UPDATE users SET explorations_used = 10 WHERE id = ?", (alice.user_id,))
        with pytest.raises(LimitReached):
            _expand(conn, generator, account_tree.session, child.id, alice, policy)

    def test_pro_tier_is_unlimited(self, conn, generator, policy, alice, account_tree) -> None:
        conn.execute(
            "UPDATE users SET subscription_tier = 'PRO', explorations_used = 999 WHERE id = ?",
            (alice.user_id,),
        )
        result = _expand(conn, generator, account_tree.session, account_tree.children[0].id, alice, policy)
        assert len(result.children) == 3


# ---------------------------------------------------------------------------
# Expansion effects
# ---------------------------------------------------------------------------

class TestExpansion:
    def test_children_edges_and_parent(self, conn, generator, policy, alice, account_tree) -> None:
        target = account_tree.children[1]
        result = _expand(conn, generator, account_tree.session, target.id, alice, policy)

        assert result.reused is False
        assert [c.depth for c in result.children] == [3, 3, 3]
        assert all(c.parent_id == target.id and not c.explored for c in result.children)
        assert all(c.content == c.summary for c in result.children)
        assert {(e.source_id, e.target_id) for e in result.edges} == {
            (target.id, c.id) for c in result.children
        }
        assert result.parent.explored is True
        assert result.parent_content == f"Answer about {target.title}."
        assert result.key_terms == [f"{target.title} term"]

        session = get_session(conn, ACCOUNT, account_tree.session.id)
        assert session.node_count == 7
        assert session.max_depth == 3

    def test_children_placed_below_parent(self, conn, generator, policy, alice, account_tree) -> None:
        target = account_tree.children[1]
        result = _expand(conn, generator, account_tree.session, target.id, alice, policy)
        assert [c.x - target.x for c in result.children] == [-620, 0, 620]
        assert all(c.y == target.y + 420 for c in result.children)

    def test_generator_receives_context(self, conn, generator, policy, alice, account_tree) -> None:
        target = account_tree.children[0]
        _expand(conn, generator, account_tree.session, target.id, alice, policy, intent="why")
        request = generator.requests[-1]
        assert request.root_question == QUESTION
        assert request.path == [QUESTION, target.title]
        assert request.depth == 2
        assert request.intent == "why"
        assert sorted(request.covered_topics) == sorted(c.title for c in account_tree.children[1:])

    def test_usage_and_telemetry(self, conn, generator, policy, alice, account_tree) -> None:
        result = _expand(conn, generator, account_tree.session, account_tree.children[0].id, alice, policy)
        assert [o.name for o in result.outbox] == ["usage_counters", "telemetry"]
        assert all(o.ok for o in result.outbox)

        user = get_user(conn, alice.user_id)
        assert user.explorations_used == 1
        assert user.total_input_tokens == 200  # creation + expansion
        events = list_events(conn, user_id=alice.user_id, event_name="node_expanded")
        assert len(events) == 1
        assert events[0].session_id == account_tree.session.id
        assert events[0].metadata["depth"] == 3

    def test_anonymous_activity_refreshed(self, conn, generator, policy, anon_tree) -> None:
        conn.execute("UPDATE anonymous_sessions SET last_activity_at = 0 WHERE id = ?", (anon_tree.session.id,))
        result = _expand(
            conn, generator, anon_tree.session, anon_tree.root.id, ANONYMOUS_IDENTITY, policy, focus_term="Rayleigh"
        )
        assert [o.name for o in result.outbox] == ["telemetry"]
        row = conn.execute(
            "SELECT last_activity_at FROM anonymous_sessions WHERE id = ?", (anon_tree.session.id,)
        ).fetchone()
        assert row[0] > 0
        assert list_events(conn, event_name="node_expanded_anonymous")[0].anonymous_session_id == anon_tree.session.id


class TestIdempotency:
    def test_explored_node_returns_existing_children(self, conn, generator, policy, alice, account_tree) -> None:
        target = account_tree.children[0]
        first = _expand(conn, generator, account_tree.session, target.id, alice, policy)
        calls, nodes = len(generator.requests), _count(conn, "graph_nodes")

        second = _expand(conn, generator, account_tree.session, target.id, alice, policy)

        assert second.reused is True
        assert [c.id for c in second.children] == [c.id for c in first.children]
        assert {e.id for e in second.edges} == {e.id for e in first.edges}
        assert second.parent_content == first.parent_content
        assert len(generator.requests) == calls
        assert _count(conn, "graph_nodes") == nodes
        assert get_user(conn, alice.user_id).explorations_used == 1

    def test_focus_term_keeps_existing_children(self, conn, generator, policy, alice, account_tree) -> None:
        target = account_tree.children[1]
        first = _expand(conn, generator, account_tree.session, target.id, alice, policy)
        second = _expand(conn, generator, account_tree.session, target.id, alice, policy, focus_term="ozone")

        assert second.reused is False
        children = list_children(conn, ACCOUNT, target.id)
        assert len(children) == 6
        assert {c.id for c in first.children} <= {c.id for c in children}
        assert generator.requests[-1].focus_term == "ozone"
        assert {c.title for c in first.children} <= set(generator.requests[-1].covered_topics)

        xs = sorted(c.x for c in children)
        for left, right in zip(xs, xs[1:]):
            assert right - left >= 460 - 1e-6
        assert get_node(conn, ACCOUNT, target.id).content == "Answer about ozone."


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------

class TestFailures:
    def test_generator_failure_writes_nothing(self, conn, generator, policy, alice, account_tree) -> None:
        target = account_tree.children[0]
        nodes = _count(conn, "graph_nodes")
        generator.fail_with = GeneratorTimeout("slow")

        with pytest.raises(UpstreamTransient) as excinfo:
            _expand(conn, generator, account_tree.session, target.id, alice, policy)

        assert excinfo.value.status_code == 504
        assert _count(conn, "graph_nodes") == nodes
        assert get_node(conn, ACCOUNT, target.id).explored is False
        assert get_user(conn, alice.user_id).explorations_used == 0
        failed = list_events(conn, event_name="node_expansion_failed")
        assert len(failed) == 1
        assert failed[0].success is False

    def test_write_failure_rolls_back_children(self, conn, generator, policy, alice, account_tree, monkeypatch) -> None:
        target = account_tree.children[0]
        nodes, edges = _count(conn, "graph_nodes"), _count(conn, "graph_edges")

        def locked(*args, **kwargs):
            raise sqlite3.OperationalError("database is locked")

        monkeypatch.setattr("depthwise.db.nodes.mark_explored", locked)
        with pytest.raises(sqlite3.OperationalError):
            _expand(conn, generator, account_tree.session, target.id, alice, policy)

        assert _count(conn, "graph_nodes") == nodes
        assert _count(conn, "graph_edges") == edges
        assert list_children(conn, ACCOUNT, target.id) == []
        assert get_node(conn, ACCOUNT, target.id).explored is False
        assert get_session(conn, ACCOUNT, account_tree.session.id).node_count == nodes
        assert get_user(conn, alice.user_id).explorations_used == 0
        assert not conn.in_transaction

    def test_outbox_failure_is_absorbed(self, conn, generator, policy, alice, account_tree, monkeypatch) -> None:
        def broken(*args, **kwargs):
            raise RuntimeError("usage store offline")

        monkeypatch.setattr("depthwise.engine.exploration.record_user_usage", broken)
        result = _expand(conn, generator, account_tree.session, account_tree.children[0].id, alice, policy)

        outcomes = {o.name: o for o in result.outbox}
        assert outcomes["usage_counters"].ok is False
        assert outcomes["usage_counters"].error == "usage store offline"
        assert outcomes["telemetry"].ok is True
        assert len(list_children(conn, ACCOUNT, account_tree.children[0].id)) == 3

    def test_depth_skew_is_integrity_error(self, conn, generator, policy, alice, account_tree) -> None:
        target = account_tree.children[0]
        conn.execute("UPDATE graph_nodes SET depth = 3 WHERE id = ?", (target.id,))
        nodes = _count(conn, "graph_nodes")
        with pytest.raises(GraphIntegrityError) as excinfo:
            _expand(conn, generator, account_tree.session, target.id, alice, policy)
        assert excinfo.value.status_code == 500
        assert _count(conn, "graph_nodes") == nodes


def test_anonymous_family_untouched_by_account_expansion(conn, generator, policy, alice, account_tree) -> None:
    _expand(conn, generator, account_tree.session, account_tree.children[0].id, alice, policy)
    assert _count(conn, "anonymous_nodes") == 0
    assert get_session(conn, ANONYMOUS, account_tree.session.id) is None
