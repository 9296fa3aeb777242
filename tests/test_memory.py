"""Tests for MemoryGraph."""

import sqlite3
from unittest.mock import patch

import pytest

from agentwire.core.errors import PersistenceError, SessionOutcome
from agentwire.core.memory import MemoryGraph


class TestNodes:
    """Tests for node upserts."""

    def test_init_creates_database(self, tmp_path):
        """Test that initialization creates the database file."""
        db_path = tmp_path / "state" / "state.db"
        MemoryGraph(db_path)
        assert db_path.exists()

    def test_upsert_and_get(self, memory):
        memory.upsert_node("cli:claude", "cli", "claude", {"version": "1.0"})

        node = memory.get_node("cli:claude")
        assert node.node_type == "cli"
        assert node.label == "claude"
        assert node.data == {"version": "1.0"}

    def test_upsert_is_idempotent(self, memory):
        """Test that a repeated upsert overwrites instead of duplicating."""
        memory.upsert_node("cli:claude", "cli", "claude", {"version": "1.0"})
        first = memory.get_node("cli:claude")
        memory.upsert_node("cli:claude", "cli", "claude", {"version": "2.0"})

        snapshot = memory.snapshot()
        assert len(snapshot.nodes) == 1
        node = snapshot.nodes[0]
        assert node.data == {"version": "2.0"}
        assert node.created_at == first.created_at
        assert node.updated_at >= first.updated_at

    def test_updated_at_never_moves_back(self, memory):
        with patch("agentwire.core.memory._now", return_value="2030-01-01T00:00:00+00:00"):
            memory.upsert_node("model:a", "model", "a")
        with patch("agentwire.core.memory._now", return_value="2020-01-01T00:00:00+00:00"):
            memory.upsert_node("model:a", "model", "a", {"x": 1})

        node = memory.get_node("model:a")
        assert node.updated_at == "2030-01-01T00:00:00+00:00"
        assert node.data == {"x": 1}

    def test_missing_node(self, memory):
        assert memory.get_node("cli:nope") is None

    def test_default_data_is_empty_object(self, memory):
        memory.upsert_node("cli:codex", "cli", "codex")
        assert memory.get_node("cli:codex").data == {}


class TestEdges:
    """Tests for edges and neighbor queries."""

    def test_duplicate_edge_ignored(self, memory):
        memory.add_edge("model:a", "cli:claude", "uses")
        memory.add_edge("model:a", "cli:claude", "uses")
        memory.add_edge("model:a", "cli:claude", "tested_with")

        edges = memory.snapshot().edges
        assert sorted(e.edge_type for e in edges) == ["tested_with", "uses"]

    def test_edge_to_missing_node_allowed(self, memory):
        """Test that edges may point at nodes that do not exist yet."""
        memory.add_edge("model:a", "cli:ghost", "uses")

        assert len(memory.snapshot().edges) == 1
        assert memory.get_neighbors("model:a") == []

    def test_get_neighbors(self, memory):
        memory.upsert_node("model:a", "model", "a")
        memory.upsert_node("cli:claude", "cli", "claude")
        memory.add_edge("model:a", "cli:claude", "uses")

        neighbors = memory.get_neighbors("model:a")
        assert len(neighbors) == 1
        edge, node = neighbors[0]
        assert edge.edge_type == "uses"
        assert node.id == "cli:claude"


class TestSubgraph:
    """Tests for subgraph_for_context."""

    @pytest.fixture
    def populated(self, memory):
        memory.upsert_node("cli:claude", "cli", "claude")
        memory.upsert_node("model:sonnet", "model", "sonnet")
        memory.upsert_node("secret:token", "secret", "token")
        memory.add_edge("model:sonnet", "cli:claude", "uses")
        memory.add_edge("secret:token", "cli:claude", "belongs_to")
        memory.add_edge("model:sonnet", "cli:missing", "uses")
        return memory

    def test_filters_by_type(self, populated):
        snapshot = populated.subgraph_for_context(["cli", "model"])

        assert sorted(n.id for n in snapshot.nodes) == ["cli:claude", "model:sonnet"]

    def test_keeps_only_edges_inside_set(self, populated):
        """Test that edges with an endpoint outside the filtered set are dropped."""
        snapshot = populated.subgraph_for_context(["cli", "model"])

        assert [(e.source_id, e.target_id) for e in snapshot.edges] == [("model:sonnet", "cli:claude")]

    def test_empty_types(self, populated):
        snapshot = populated.subgraph_for_context([])
        assert snapshot.nodes == []
        assert snapshot.edges == []

    def test_to_json_shape(self, populated):
        data = populated.subgraph_for_context(["cli"]).to_dict()
        assert set(data) == {"nodes", "edges"}
        assert data["nodes"][0]["id"] == "cli:claude"


class TestSessions:
    """Tests for session and turn bookkeeping."""

    def test_session_lifecycle(self, memory):
        memory.create_session("s1")
        memory.record_turn("s1", 1, "hello", "2 actions processed", '[{"event": "status"}]')
        memory.record_turn("s1", 2, "more", "0 actions processed")

        session = memory.get_session("s1")
        assert session.turn_count == 2
        assert session.ended_at is None

        turns = memory.get_turns("s1")
        assert [t.turn_number for t in turns] == [1, 2]
        assert turns[0].events_emitted == [{"event": "status"}]

    def test_end_session_only_once(self, memory):
        memory.create_session("s1")

        assert memory.end_session("s1", SessionOutcome.SUCCESS) is True
        assert memory.end_session("s1", "cancelled") is False

        session = memory.get_session("s1")
        assert session.outcome == "success"
        assert session.ended_at is not None

    def test_duplicate_session_raises(self, memory):
        memory.create_session("s1")
        with pytest.raises(PersistenceError):
            memory.create_session("s1")

    def test_duplicate_turn_number_raises(self, memory):
        memory.create_session("s1")
        memory.record_turn("s1", 1, "a", "x")
        with pytest.raises(PersistenceError):
            memory.record_turn("s1", 1, "b", "y")
        assert memory.get_session("s1").turn_count == 1

    def test_list_sessions(self, memory):
        for sid in ("a", "b", "c"):
            memory.create_session(sid)

        assert len(memory.list_sessions(limit=2)) == 2
        assert {s.id for s in memory.list_sessions()} == {"a", "b", "c"}

    def test_sqlite_errors_become_persistence_errors(self, memory):
        with patch("agentwire.core.memory.sqlite3.connect", side_effect=sqlite3.OperationalError("locked")):
            with pytest.raises(PersistenceError, match="locked"):
                memory.get_node("cli:claude")
