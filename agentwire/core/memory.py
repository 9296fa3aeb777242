"""
Memory graph for setup sessions.

A small SQLite-backed node/edge store that carries configuration knowledge
(which tools exist, which models were configured, user preferences) across
setup sessions, plus an append-only log of sessions and their turns.

Every operation opens its own short-lived connection, so concurrent sessions
each get an independent handle and write safety comes from SQLite itself
(WAL journal + busy timeout).
"""

import json
import sqlite3
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from agentwire.core.audit import log_audit
from agentwire.core.errors import PersistenceError, SessionOutcome


MEMORY_SCHEMA = """
-- Durable configuration knowledge
CREATE TABLE IF NOT EXISTS memory_nodes (
    id TEXT PRIMARY KEY,
    node_type TEXT NOT NULL,       -- cli, model, provider, wrapper, skill, mcp, preference
    label TEXT NOT NULL,
    data TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

-- Edges are not validated against memory_nodes
CREATE TABLE IF NOT EXISTS memory_edges (
    source_id TEXT NOT NULL,
    target_id TEXT NOT NULL,
    edge_type TEXT NOT NULL,
    data TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL,
    PRIMARY KEY (source_id, target_id, edge_type)
);

CREATE TABLE IF NOT EXISTS setup_sessions (
    id TEXT PRIMARY KEY,
    started_at TEXT NOT NULL,
    ended_at TEXT,
    outcome TEXT,
    turn_count INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS setup_turns (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id TEXT NOT NULL,
    turn_number INTEGER NOT NULL,
    prompt TEXT NOT NULL,
    response_summary TEXT,
    events_emitted TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL,
    UNIQUE (session_id, turn_number)
);

CREATE INDEX IF NOT EXISTS idx_memory_nodes_type ON memory_nodes(node_type);
CREATE INDEX IF NOT EXISTS idx_memory_edges_target ON memory_edges(target_id);
CREATE INDEX IF NOT EXISTS idx_setup_turns_session ON setup_turns(session_id, turn_number);
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _loads(raw: Optional[str]) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


@dataclass
class MemoryNode:
    """A piece of durable configuration knowledge."""

    id: str
    """Unique id, conventionally '<node_type>:<label>'"""

    node_type: str
    """Kind of node: cli, model, provider, wrapper, skill, mcp, preference"""

    label: str
    """Human-readable name"""

    data: Any = field(default_factory=dict)
    """Opaque structured payload"""

    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "MemoryNode":
        """Create from database row."""
        return cls(
            id=row["id"],
            node_type=row["node_type"],
            label=row["label"],
            data=_loads(row["data"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass
class MemoryEdge:
    """Directed, typed relation between two node ids."""

    source_id: str
    target_id: str
    edge_type: str
    data: Any = field(default_factory=dict)
    created_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "MemoryEdge":
        """Create from database row."""
        return cls(
            source_id=row["source_id"],
            target_id=row["target_id"],
            edge_type=row["edge_type"],
            data=_loads(row["data"]),
            created_at=row["created_at"],
        )


@dataclass
class MemorySnapshot:
    """A set of nodes and the edges between them."""

    nodes: List[MemoryNode] = field(default_factory=list)
    edges: List[MemoryEdge] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
        }

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, default=str)


@dataclass
class SessionRecord:
    """Row of setup_sessions."""

    id: str
    started_at: str
    ended_at: Optional[str] = None
    outcome: Optional[str] = None
    turn_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class TurnRecord:
    """Row of setup_turns."""

    session_id: str
    turn_number: int
    prompt: str
    response_summary: Optional[str] = None
    events_emitted: Any = field(default_factory=list)
    created_at: Optional[str] = None


class MemoryGraph:
    """
    SQLite-backed memory graph plus session/turn log.

    Upserts and edge inserts are idempotent. Edges may reference nodes that
    do not exist yet. Any sqlite failure is raised as PersistenceError; the
    caller decides whether it is fatal.
    """

    def __init__(self, db_path: Path):
        """
        Open (or create) the memory graph.

        Args:
            db_path: Path to SQLite database file

        Raises:
            PersistenceError: If the database cannot be created
        """
        self.db_path = Path(db_path)
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(f"Cannot create memory directory: {e}") from e
        self._init_schema()

    def _init_schema(self) -> None:
        """Initialize database schema."""
        with self._conn() as conn:
            conn.executescript(MEMORY_SCHEMA)

    @contextmanager
    def _conn(self) -> Iterator[sqlite3.Connection]:
        """Get a database connection with proper settings."""
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open memory graph {self.db_path}: {e}") from e
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA busy_timeout=5000")
            conn.row_factory = sqlite3.Row
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(str(e)) from e
        finally:
            conn.close()

    # Nodes and edges

    def upsert_node(self, node_id: str, node_type: str, label: str, data: Any = None) -> None:
        """
        Insert a node, or overwrite type/label/data of an existing one.

        updated_at never moves backwards, even if the clock does.
        """
        now = _now()
        payload = json.dumps({} if data is None else data, default=str)
        with self._conn() as conn:
            conn.execute(
                """
                INSERT INTO memory_nodes (id, node_type, label, data, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    node_type = excluded.node_type,
                    label = excluded.label,
                    data = excluded.data,
                    updated_at = MAX(memory_nodes.updated_at, excluded.updated_at)
                """,
                (node_id, node_type, label, payload, now, now),
            )

    def add_edge(
        self,
        source_id: str,
        target_id: str,
        edge_type: str,
        data: Any = None,
    ) -> None:
        """Insert an edge; a duplicate (source, target, type) is ignored."""
        payload = json.dumps({} if data is None else data, default=str)
        with self._conn() as conn:
            conn.execute(
                """
                INSERT OR IGNORE INTO memory_edges (source_id, target_id, edge_type, data, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (source_id, target_id, edge_type, payload, _now()),
            )

    def get_node(self, node_id: str) -> Optional[MemoryNode]:
        """Get a node by id."""
        with self._conn() as conn:
            row = conn.execute(
                "SELECT * FROM memory_nodes WHERE id = ?",
                (node_id,),
            ).fetchone()

        if not row:
            return None
        return MemoryNode.from_row(row)

    def get_neighbors(self, node_id: str) -> List[Tuple[MemoryEdge, MemoryNode]]:
        """
        Get outgoing edges of a node joined to their target nodes.

        Edges whose target node does not exist are not returned.
        """
        with self._conn() as conn:
            rows = conn.execute(
                """
                SELECT e.source_id, e.target_id, e.edge_type, e.data AS edge_data,
                       e.created_at AS edge_created_at,
                       n.id, n.node_type, n.label, n.data, n.created_at, n.updated_at
                FROM memory_edges e
                JOIN memory_nodes n ON n.id = e.target_id
                WHERE e.source_id = ?
                ORDER BY e.created_at, e.target_id
                """,
                (node_id,),
            ).fetchall()

        neighbors = []
        for row in rows:
            edge = MemoryEdge(
                source_id=row["source_id"],
                target_id=row["target_id"],
                edge_type=row["edge_type"],
                data=_loads(row["edge_data"]),
                created_at=row["edge_created_at"],
            )
            neighbors.append((edge, MemoryNode.from_row(row)))
        return neighbors

    def subgraph_for_context(self, node_types: Sequence[str]) -> MemorySnapshot:
        """
        Get nodes whose type is in node_types, and the edges between them.

        An edge is kept only when both its source and its target are in the
        filtered node set. This is a membership filter, not a traversal.
        """
        types = list(node_types)
        if not types:
            return MemorySnapshot()

        placeholders = ",".join("?" for _ in types)
        with self._conn() as conn:
            node_rows = conn.execute(
                f"SELECT * FROM memory_nodes WHERE node_type IN ({placeholders}) ORDER BY id",
                types,
            ).fetchall()
            edge_rows = conn.execute(
                "SELECT * FROM memory_edges ORDER BY source_id, target_id, edge_type"
            ).fetchall()

        nodes = [MemoryNode.from_row(r) for r in node_rows]
        ids = {n.id for n in nodes}
        edges = [
            MemoryEdge.from_row(r)
            for r in edge_rows
            if r["source_id"] in ids and r["target_id"] in ids
        ]
        return MemorySnapshot(nodes=nodes, edges=edges)

    def snapshot(self) -> MemorySnapshot:
        """Get every node and every edge."""
        with self._conn() as conn:
            node_rows = conn.execute("SELECT * FROM memory_nodes ORDER BY id").fetchall()
            edge_rows = conn.execute(
                "SELECT * FROM memory_edges ORDER BY source_id, target_id, edge_type"
            ).fetchall()

        return MemorySnapshot(
            nodes=[MemoryNode.from_row(r) for r in node_rows],
            edges=[MemoryEdge.from_row(r) for r in edge_rows],
        )

    # Sessions and turns

    def create_session(self, session_id: str) -> None:
        """
        Start a session record.

        Raises:
            PersistenceError: If a session with this id already exists
        """
        with self._conn() as conn:
            conn.execute(
                "INSERT INTO setup_sessions (id, started_at, turn_count) VALUES (?, ?, 0)",
                (session_id, _now()),
            )

        log_audit("session", "start", {"session_id": session_id})

    def record_turn(
        self,
        session_id: str,
        turn_number: int,
        prompt: str,
        response_summary: str,
        events_json: str = "[]",
    ) -> None:
        """
        Append a turn and advance the session's turn_count.

        Both writes happen in a single transaction.
        """
        with self._conn() as conn:
            conn.execute(
                """
                INSERT INTO setup_turns (
                    session_id, turn_number, prompt, response_summary,
                    events_emitted, created_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (session_id, turn_number, prompt, response_summary, events_json, _now()),
            )
            conn.execute(
                "UPDATE setup_sessions SET turn_count = turn_count + 1 WHERE id = ?",
                (session_id,),
            )

    def end_session(self, session_id: str, outcome: str) -> bool:
        """
        Set ended_at and outcome on a session that has not ended yet.

        Returns:
            True if this call ended the session, False if it had already ended
            (or does not exist)
        """
        outcome_value = outcome.value if isinstance(outcome, SessionOutcome) else str(outcome)
        with self._conn() as conn:
            cursor = conn.execute(
                """
                UPDATE setup_sessions
                SET ended_at = ?, outcome = ?
                WHERE id = ? AND ended_at IS NULL
                """,
                (_now(), outcome_value, session_id),
            )
            ended = cursor.rowcount > 0

        if ended:
            log_audit("session", "complete", {"session_id": session_id, "outcome": outcome_value})
        return ended

    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        """Get a session record by id."""
        with self._conn() as conn:
            row = conn.execute(
                "SELECT * FROM setup_sessions WHERE id = ?",
                (session_id,),
            ).fetchone()

        if not row:
            return None
        return SessionRecord(**dict(row))

    def list_sessions(self, limit: int = 20) -> List[SessionRecord]:
        """Most recent sessions first."""
        with self._conn() as conn:
            rows = conn.execute(
                "SELECT * FROM setup_sessions ORDER BY started_at DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [SessionRecord(**dict(r)) for r in rows]

    def get_turns(self, session_id: str) -> List[TurnRecord]:
        """Turns of a session in turn order."""
        with self._conn() as conn:
            rows = conn.execute(
                """
                SELECT session_id, turn_number, prompt, response_summary,
                       events_emitted, created_at
                FROM setup_turns
                WHERE session_id = ?
                ORDER BY turn_number
                """,
                (session_id,),
            ).fetchall()

        return [
            TurnRecord(
                session_id=r["session_id"],
                turn_number=r["turn_number"],
                prompt=r["prompt"],
                response_summary=r["response_summary"],
                events_emitted=_loads(r["events_emitted"]),
                created_at=r["created_at"],
            )
            for r in rows
        ]
