"""
ObservabilityLogger - Phase-based logging of setup sessions.

Each setup session writes structured rows (detection, turns, actions,
sandbox decisions, raw agent output, errors) to a SQLite database so a
failed setup can be replayed and inspected afterwards.
"""

import json
import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional


@dataclass
class LogEntry:
    """A log entry from the observability database."""

    id: int
    ts: str
    session: str
    phase: str
    data: Dict[str, Any] = field(default_factory=dict)


class ObservabilityLogger:
    """Phase-based logging for setup sessions.

    Phases:
    - input: The initiating message of a session
    - detect: Detection report summary
    - turn: One reasoning round-trip (prompt size, action count, done flag)
    - action: One executed action and its feedback
    - sandbox: Allow/deny decisions for commands and paths
    - session: Terminal outcome
    - error: Errors and how they were handled
    - cli_raw: Full stdout/stderr of the agent CLI
    - cli_timeout: Agent CLI killed after its timeout
    """

    PHASES = [
        "input",
        "detect",
        "turn",
        "action",
        "sandbox",
        "session",
        "error",
        "cli_raw",
        "cli_timeout",
    ]

    def __init__(self, db_path: Path, session_id: Optional[str] = None):
        """Initialize logger with database path.

        Args:
            db_path: Path to SQLite database file
            session_id: Session to log under (generated if not given)
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        self.session_id = session_id or self._new_session()

    def _init_db(self) -> None:
        """Create tables if they don't exist."""
        with sqlite3.connect(self.db_path) as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    ts TEXT NOT NULL DEFAULT (datetime('now')),
                    session TEXT NOT NULL,
                    phase TEXT NOT NULL,
                    data JSON NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_session ON logs(session);
                CREATE INDEX IF NOT EXISTS idx_phase ON logs(phase);
                CREATE INDEX IF NOT EXISTS idx_ts ON logs(ts);

                CREATE VIEW IF NOT EXISTS errors AS
                SELECT id, ts, session,
                       json_extract(data, '$.error_type') as error_type,
                       json_extract(data, '$.resolution') as resolution,
                       data
                FROM logs WHERE phase = 'error';

                CREATE VIEW IF NOT EXISTS actions AS
                SELECT id, ts, session,
                       json_extract(data, '$.turn') as turn,
                       json_extract(data, '$.type') as action_type,
                       json_extract(data, '$.feedback') as feedback
                FROM logs WHERE phase = 'action';
            """)
        # sqlite3's context manager commits but does not close
        conn.close()

    def _new_session(self) -> str:
        """Generate a new session ID."""
        return f"session_{datetime.now().strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:6]}"

    def new_session(self, session_id: Optional[str] = None) -> str:
        """Start a new session and return its ID."""
        self.session_id = session_id or self._new_session()
        return self.session_id

    def log(self, phase: str, data: Dict[str, Any]) -> None:
        """Log a phase with structured data.

        Args:
            phase: Phase name, one of PHASES
            data: Structured data for the log entry
        """
        if phase not in self.PHASES:
            raise ValueError(f"Invalid phase: {phase}. Must be one of {self.PHASES}")

        conn = sqlite3.connect(self.db_path)
        try:
            with conn:
                conn.execute(
                    "INSERT INTO logs (session, phase, data) VALUES (?, ?, ?)",
                    (self.session_id, phase, json.dumps(data, default=str)),
                )
        finally:
            conn.close()

    # Convenience methods

    def log_input(self, message: str, source: Optional[str] = None) -> None:
        """Log the message that starts a session."""
        self.log("input", {"message": message, "chars": len(message), "source": source})

    def log_turn(self, turn: int, prompt_chars: int, action_types: List[str], done: bool) -> None:
        """Log one reasoning round-trip."""
        self.log(
            "turn",
            {
                "turn": turn,
                "prompt_chars": prompt_chars,
                "action_types": action_types,
                "action_count": len(action_types),
                "done": done,
            },
        )

    def log_action(self, turn: int, action_type: str, feedback: Optional[str]) -> None:
        """Log one executed action with its feedback text."""
        self.log("action", {"turn": turn, "type": action_type, "feedback": feedback})

    def log_sandbox(self, decision: str, kind: str, target: str, reason: Optional[str] = None) -> None:
        """Log a sandbox allow/deny decision.

        Args:
            decision: "allow" or "deny"
            kind: "command" or "path"
            target: Command name or path checked
            reason: Optional explanation for a denial
        """
        data: Dict[str, Any] = {"decision": decision, "kind": kind, "target": target}
        if reason:
            data["reason"] = reason
        self.log("sandbox", data)

    def log_error(
        self,
        error_type: str,
        details: Optional[Dict] = None,
        resolution: Optional[str] = None,
    ) -> None:
        """Log errors and how they were handled."""
        data: Dict[str, Any] = {"error_type": error_type}
        if details:
            data["details"] = details
        if resolution:
            data["resolution"] = resolution

        self.log("error", data)

    # Query methods

    def _rows_to_entries(self, rows: List[sqlite3.Row]) -> List[LogEntry]:
        return [
            LogEntry(
                id=row["id"],
                ts=row["ts"],
                session=row["session"],
                phase=row["phase"],
                data=json.loads(row["data"]),
            )
            for row in rows
        ]

    def _query(self, sql: str, params: tuple) -> List[LogEntry]:
        conn = sqlite3.connect(self.db_path)
        try:
            conn.row_factory = sqlite3.Row
            return self._rows_to_entries(conn.execute(sql, params).fetchall())
        finally:
            conn.close()

    def get_session(self, session_id: Optional[str] = None) -> List[LogEntry]:
        """Get all logs for a session (defaults to current session)."""
        return self._query(
            "SELECT * FROM logs WHERE session = ? ORDER BY id",
            (session_id or self.session_id,),
        )

    def get_errors(self, since: Optional[str] = None, limit: int = 100) -> List[LogEntry]:
        """Get error logs.

        Args:
            since: Optional ISO timestamp to filter from
            limit: Maximum results

        Returns:
            List of error LogEntry objects, newest first
        """
        if since:
            return self._query(
                """
                SELECT * FROM logs
                WHERE phase = 'error' AND ts >= ?
                ORDER BY id DESC LIMIT ?
                """,
                (since, limit),
            )
        return self._query(
            "SELECT * FROM logs WHERE phase = 'error' ORDER BY id DESC LIMIT ?",
            (limit,),
        )

    def latest_session(self) -> Optional[str]:
        """ID of the session that logged most recently."""
        conn = sqlite3.connect(self.db_path)
        try:
            row = conn.execute("SELECT session FROM logs ORDER BY id DESC LIMIT 1").fetchone()
        finally:
            conn.close()
        return row[0] if row else None

    def get_session_summary(self, session_id: Optional[str] = None) -> Dict[str, Any]:
        """Get summary statistics for a session."""
        session_id = session_id or self.session_id

        conn = sqlite3.connect(self.db_path)
        try:
            phase_counts = {
                row[0]: row[1]
                for row in conn.execute(
                    "SELECT phase, COUNT(*) FROM logs WHERE session = ? GROUP BY phase",
                    (session_id,),
                )
            }

            action_counts = {}
            for row in conn.execute(
                """
                SELECT json_extract(data, '$.type'), COUNT(*)
                FROM logs
                WHERE session = ? AND phase = 'action'
                GROUP BY json_extract(data, '$.type')
                """,
                (session_id,),
            ):
                if row[0]:
                    action_counts[row[0]] = row[1]
        finally:
            conn.close()

        return {
            "session_id": session_id,
            "phase_counts": phase_counts,
            "action_counts": action_counts,
            "turns": phase_counts.get("turn", 0),
            "error_count": phase_counts.get("error", 0),
            "total_logs": sum(phase_counts.values()),
        }
