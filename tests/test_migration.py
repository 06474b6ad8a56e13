"""Anonymous → account migration tests."""

from __future__ import annotations

import uuid

import pytest

from depthwise.db.edges import get_graph_data
from depthwise.db.models import ACCOUNT, ANONYMOUS
from depthwise.db.sessions import get_session
from depthwise.engine import ExpandRequest, create_session, expand_node, migrate_session
from depthwise.errors import AuthenticationRequired, GraphIntegrityError, InvalidInput, SessionNotFound
from depthwise.identity import ANONYMOUS_IDENTITY


@pytest.fixture()
def anon_tree(conn, generator, policy):
    result = create_session(
        conn, generator, "Why is the sky blue?", ANONYMOUS_IDENTITY, policy=policy
    )
    # Grow a little beyond the first level with a focus re-expansion of the root.
    expand_node(
        conn,
        generator,
        ExpandRequest(result.session.id, result.root.id, True, focus_term="sunsets"),
        ANONYMOUS_IDENTITY,
        policy=policy,
    )
    return result


class TestMigrateSession:
    def test_copies_tree_and_deletes_source(self, conn, alice, anon_tree) -> None:
        source = get_graph_data(conn, ANONYMOUS, anon_tree.session.id)

        migrated = migrate_session(conn, anon_tree.session.id, alice)

        target = get_graph_data(conn, ACCOUNT, migrated.id)
        assert migrated.user_id == alice.user_id
        assert migrated.is_anonymous is False
        assert migrated.title == source.session.title
        assert migrated.root_query == source.session.root_query
        assert len(target.nodes) == len(source.nodes) == 7
        assert len(target.edges) == len(source.edges) == 6
        assert migrated.node_count == 7
        assert migrated.max_depth == 2
        assert sorted(n.depth for n in target.nodes) == sorted(n.depth for n in source.nodes)
        assert get_session(conn, ANONYMOUS, anon_tree.session.id) is None
        assert conn.execute("SELECT COUNT(*) FROM anonymous_nodes").fetchone()[0] == 0

    def test_ids_remapped_and_structure_kept(self, conn, alice, anon_tree) -> None:
        source = get_graph_data(conn, ANONYMOUS, anon_tree.session.id)
        migrated = migrate_session(conn, anon_tree.session.id, alice)
        target = get_graph_data(conn, ACCOUNT, migrated.id)

        old_ids = {n.id for n in source.nodes}
        assert not old_ids & {n.id for n in target.nodes}

        by_id = {n.id: n for n in target.nodes}
        for node in target.nodes:
            if node.parent_id is None:
                assert node.depth == 1
            else:
                assert by_id[node.parent_id].depth == node.depth - 1
        for edge in target.edges:
            assert by_id[edge.target_id].parent_id == edge.source_id

        explored_titles = sorted(n.title for n in source.nodes if n.explored)
        assert sorted(n.title for n in target.nodes if n.explored) == explored_titles

    def test_requires_sign_in(self, conn, anon_tree) -> None:
        with pytest.raises(AuthenticationRequired):
            migrate_session(conn, anon_tree.session.id, ANONYMOUS_IDENTITY)
        assert get_session(conn, ANONYMOUS, anon_tree.session.id) is not None

    def test_bad_and_unknown_ids(self, conn, alice) -> None:
        with pytest.raises(InvalidInput):
            migrate_session(conn, "not-a-uuid", alice)
        with pytest.raises(SessionNotFound):
            migrate_session(conn, str(uuid.uuid4()), alice)

    def test_failure_rolls_back_everything(self, conn, alice, anon_tree) -> None:
        # An orphaned node (parent outside the session) cannot be replayed.
        conn.execute("PRAGMA foreign_keys = OFF")
        conn.execute(
            "UPDATE anonymous_nodes SET parent_id = 'missing' WHERE session_id = ? AND depth = 2",
            (anon_tree.session.id,),
        )
        conn.execute("PRAGMA foreign_keys = ON")

        with pytest.raises(GraphIntegrityError):
            migrate_session(conn, anon_tree.session.id, alice)

        assert get_session(conn, ANONYMOUS, anon_tree.session.id) is not None
        assert conn.execute("SELECT COUNT(*) FROM graph_sessions").fetchone()[0] == 0
        assert conn.execute("SELECT COUNT(*) FROM graph_nodes").fetchone()[0] == 0
