"""Database layer tests.

All tests use an in-memory SQLite database so they are fast, isolated and
never touch the workspace directory.
"""

from __future__ import annotations

import sqlite3

import pytest

from depthwise.db.connection import transaction
from depthwise.db.edges import create_edge, get_graph_data, list_edges, list_edges_from
from depthwise.db.events import list_events, record_usage_event
from depthwise.db.migrations import MIGRATIONS, current_version, init_db
from depthwise.db.models import ACCOUNT, ANONYMOUS, Origin
from depthwise.db.nodes import (
    create_node,
    get_node,
    list_children,
    list_nodes,
    list_siblings,
    mark_explored,
    update_position,
)
from depthwise.db.sessions import (
    create_session,
    delete_session,
    get_session,
    list_sessions_for_user,
    recompute_stats,
    set_visibility,
    title_for,
    touch_activity,
)
from depthwise.db.users import (
    SECONDS_PER_DAY,
    ensure_user,
    get_user,
    record_usage,
    reset_if_due,
    set_tier,
)


def _tree(conn: sqlite3.Connection, family=ANONYMOUS, user_id=None):
    """Root with two children; returns (session, root, [a, b])."""
    session = create_session(conn, family, "What is a CPU?", user_id=user_id, now=1000)
    root = create_node(conn, family, session.id, "What is a CPU?", 1, content="A CPU is...", explored=True, now=1000)
    a = create_node(conn, family, session.id, "Registers", 2, x=-300, y=420, parent_id=root.id, now=1001)
    b = create_node(conn, family, session.id, "Caches", 2, x=300, y=420, parent_id=root.id, now=1002)
    create_edge(conn, family, session.id, root.id, a.id, now=1001)
    create_edge(conn, family, session.id, root.id, b.id, now=1002)
    return session, root, [a, b]


# ---------------------------------------------------------------------------
# connection / init
# ---------------------------------------------------------------------------

class TestConnection:
    def test_foreign_keys_enabled(self, conn: sqlite3.Connection) -> None:
        row = conn.execute("PRAGMA foreign_keys").fetchone()
        assert row[0] == 1

    def test_init_db_idempotent(self, conn: sqlite3.Connection) -> None:
        init_db(conn)
        init_db(conn)
        assert current_version(conn) == MIGRATIONS[-1][0]

    def test_transaction_rolls_back_on_error(self, conn: sqlite3.Connection) -> None:
        with pytest.raises(RuntimeError):
            with transaction(conn):
                create_session(conn, ANONYMOUS, "doomed")
                raise RuntimeError("boom")
        assert conn.execute("SELECT COUNT(*) FROM anonymous_sessions").fetchone()[0] == 0

    def test_nested_transaction_uses_savepoint(self, conn: sqlite3.Connection) -> None:
        with transaction(conn):
            create_session(conn, ANONYMOUS, "kept")
            with pytest.raises(ValueError):
                with transaction(conn):
                    create_session(conn, ANONYMOUS, "inner")
                    raise ValueError("inner failure")
        titles = [r[0] for r in conn.execute("SELECT title FROM anonymous_sessions")]
        assert titles == ["kept"]


# ---------------------------------------------------------------------------
# sessions
# ---------------------------------------------------------------------------

class TestSessions:
    def test_create_anonymous_session(self, conn: sqlite3.Connection) -> None:
        origin = Origin(client_id="client-1", country="NL")
        session = create_session(conn, ANONYMOUS, "Why is the sky blue?", origin=origin)
        assert session.is_anonymous is True
        assert session.user_id is None
        assert session.node_count == 0 and session.max_depth == 0
        assert session.origin.client_id == "client-1"
        assert session.origin.country == "NL"

    def test_account_session_requires_user(self, conn: sqlite3.Connection) -> None:
        with pytest.raises(ValueError):
            create_session(conn, ACCOUNT, "orphan")

    def test_account_session_visibility(self, conn: sqlite3.Connection) -> None:
        ensure_user(conn, "u1")
        session = create_session(conn, ACCOUNT, "q", user_id="u1")
        assert session.visibility == "private"
        updated = set_visibility(conn, session.id, True)
        assert updated.is_public is True
        assert updated.visibility == "public"

    def test_title_truncated(self) -> None:
        assert title_for("x" * 250) == "x" * 100

    def test_list_sessions_for_user_newest_first(self, conn: sqlite3.Connection) -> None:
        ensure_user(conn, "u1")
        ensure_user(conn, "u2")
        old = create_session(conn, ACCOUNT, "old", user_id="u1", now=100)
        new = create_session(conn, ACCOUNT, "new", user_id="u1", now=200)
        create_session(conn, ACCOUNT, "other", user_id="u2", now=300)
        assert [s.id for s in list_sessions_for_user(conn, "u1")] == [new.id, old.id]

    def test_delete_cascades(self, conn: sqlite3.Connection) -> None:
        session, _, _ = _tree(conn)
        assert delete_session(conn, ANONYMOUS, session.id) is True
        assert list_nodes(conn, ANONYMOUS, session.id) == []
        assert list_edges(conn, ANONYMOUS, session.id) == []
        assert delete_session(conn, ANONYMOUS, session.id) is False

    def test_recompute_stats(self, conn: sqlite3.Connection) -> None:
        session, _, _ = _tree(conn)
        assert recompute_stats(conn, ANONYMOUS, session.id) == (3, 2)
        refreshed = get_session(conn, ANONYMOUS, session.id)
        assert refreshed.node_count == 3
        assert refreshed.max_depth == 2

    def test_touch_activity(self, conn: sqlite3.Connection) -> None:
        session = create_session(conn, ANONYMOUS, "q", now=100)
        touch_activity(conn, ANONYMOUS, session.id, now=500)
        row = conn.execute(
            "SELECT last_activity_at, updated_at FROM anonymous_sessions WHERE id = ?",
            (session.id,),
        ).fetchone()
        assert tuple(row) == (500, 500)


# ---------------------------------------------------------------------------
# nodes / edges
# ---------------------------------------------------------------------------

class TestNodes:
    def test_depth_must_be_positive(self, conn: sqlite3.Connection) -> None:
        session = create_session(conn, ANONYMOUS, "q")
        with pytest.raises(sqlite3.IntegrityError):
            create_node(conn, ANONYMOUS, session.id, "bad", 0)

    def test_explored_requires_content(self, conn: sqlite3.Connection) -> None:
        session = create_session(conn, ANONYMOUS, "q")
        with pytest.raises(ValueError):
            create_node(conn, ANONYMOUS, session.id, "root", 1, explored=True)

    def test_children_and_siblings(self, conn: sqlite3.Connection) -> None:
        _, root, (a, b) = _tree(conn)
        assert [c.id for c in list_children(conn, ANONYMOUS, root.id)] == [a.id, b.id]
        assert [s.id for s in list_siblings(conn, ANONYMOUS, a)] == [b.id]
        assert list_siblings(conn, ANONYMOUS, root) == []

    def test_mark_explored(self, conn: sqlite3.Connection) -> None:
        _, _, (a, _) = _tree(conn)
        node = mark_explored(conn, ANONYMOUS, a.id, "Registers hold values.")
        assert node.explored is True
        assert node.content == "Registers hold values."

    def test_mark_explored_rejects_empty(self, conn: sqlite3.Connection) -> None:
        _, _, (a, _) = _tree(conn)
        with pytest.raises(ValueError):
            mark_explored(conn, ANONYMOUS, a.id, "   ")

    def test_update_position(self, conn: sqlite3.Connection) -> None:
        _, _, (a, _) = _tree(conn)
        update_position(conn, ANONYMOUS, a.id, 12.5, 99)
        node = get_node(conn, ANONYMOUS, a.id)
        assert (node.x, node.y) == (12.5, 99.0)

    def test_families_are_separate(self, conn: sqlite3.Connection) -> None:
        _, root, _ = _tree(conn)
        assert get_node(conn, ACCOUNT, root.id) is None


class TestEdges:
    def test_list_edges_from(self, conn: sqlite3.Connection) -> None:
        _, root, (a, b) = _tree(conn)
        assert {e.target_id for e in list_edges_from(conn, ANONYMOUS, root.id)} == {a.id, b.id}
        assert list_edges_from(conn, ANONYMOUS, a.id) == []

    def test_get_graph_data(self, conn: sqlite3.Connection) -> None:
        session, root, _ = _tree(conn)
        graph = get_graph_data(conn, ANONYMOUS, session.id)
        assert graph.session.id == session.id
        assert graph.nodes[0].id == root.id
        assert len(graph.nodes) == 3
        assert len(graph.edges) == 2

    def test_get_graph_data_missing(self, conn: sqlite3.Connection) -> None:
        assert get_graph_data(conn, ANONYMOUS, "nope") is None


# ---------------------------------------------------------------------------
# users / events
# ---------------------------------------------------------------------------

class TestUsers:
    def test_ensure_user_is_idempotent(self, conn: sqlite3.Connection) -> None:
        first = ensure_user(conn, "u1", now=100)
        second = ensure_user(conn, "u1", "u1@example.com", now=200)
        assert first.subscription_tier == "FREE"
        assert second.created_at == 100
        assert second.email == "u1@example.com"

    def test_record_usage(self, conn: sqlite3.Connection) -> None:
        ensure_user(conn, "u1")
        record_usage(conn, "u1", 100, 40, 0.5)
        record_usage(conn, "u1", 10, 5, 0.1, count_exploration=False)
        user = get_user(conn, "u1")
        assert user.explorations_used == 1
        assert user.explorations_total == 1
        assert user.total_input_tokens == 110
        assert user.total_output_tokens == 45
        assert user.total_estimated_cost_usd == pytest.approx(0.6)

    def test_record_usage_unknown_user(self, conn: sqlite3.Connection) -> None:
        with pytest.raises(ValueError):
            record_usage(conn, "ghost", 1, 1, 0.0)

    def test_reset_if_due(self, conn: sqlite3.Connection) -> None:
        user = ensure_user(conn, "u1", now=0)
        record_usage(conn, "u1", 1, 1, 0.0)
        user = get_user(conn, "u1")
        assert reset_if_due(conn, user, 30, now=29 * SECONDS_PER_DAY).explorations_used == 1
        reset = reset_if_due(conn, user, 30, now=30 * SECONDS_PER_DAY)
        assert reset.explorations_used == 0
        assert reset.explorations_total == 1
        assert reset.explorations_reset_at == 30 * SECONDS_PER_DAY

    def test_set_tier(self, conn: sqlite3.Connection) -> None:
        ensure_user(conn, "u1")
        set_tier(conn, "u1", "pro")
        assert get_user(conn, "u1").subscription_tier == "PRO"


class TestEvents:
    def test_record_and_filter(self, conn: sqlite3.Connection) -> None:
        record_usage_event(conn, "session_created", user_id="u1", metadata={"branchCount": 4}, now=1)
        record_usage_event(conn, "node_expanded", user_id="u1", now=2)
        record_usage_event(conn, "node_expanded", user_id="u2", now=3)
        events = list_events(conn, user_id="u1")
        assert [e.event_name for e in events] == ["node_expanded", "session_created"]
        assert events[1].metadata == {"branchCount": 4}
        assert len(list_events(conn, event_name="node_expanded")) == 2
