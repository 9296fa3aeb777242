"""
System detection for agent CLI tools.

Reports which tools are installed, their versions and whether they look
authenticated, plus OS information and user wrapper scripts. Detection is
synchronous and shells out; the orchestrator runs it off the event loop.
"""

import json
import os
import platform
import shutil
import sqlite3
import subprocess
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Protocol, Tuple

from agentwire.core.audit import log_error


KNOWN_TOOLS: Tuple[Tuple[str, str], ...] = (
    ("claude", ".claude"),
    ("codex", ".codex"),
    ("opencode", ".opencode"),
    ("gemini", ".gemini"),
)


@dataclass
class ToolProfile:
    """An account or profile discovered for a tool."""

    id: str
    """Email, provider or profile name"""

    auth_method: str
    """What kind of credential backs this profile"""

    active: bool = False
    details: Optional[Dict[str, Any]] = None


@dataclass
class ToolInfo:
    """Detection result for one tool."""

    name: str
    installed: bool = False
    path: Optional[str] = None
    version: Optional[str] = None
    authenticated: bool = False
    config_dir: Optional[str] = None
    profiles: List[ToolProfile] = field(default_factory=list)

    version_changed: Optional[bool] = None
    """None when no version tracker was used or nothing was stored before"""

    previous_version: Optional[str] = None


@dataclass
class OsInfo:
    os_type: str
    arch: str


@dataclass
class WrapperInfo:
    """Executable in ~/.local/bin that mentions a known tool."""

    name: str
    path: str
    target_tool: Optional[str] = None


@dataclass
class DetectionReport:
    """Snapshot of the system as seen by the detector."""

    tools: List[ToolInfo] = field(default_factory=list)
    os: OsInfo = field(default_factory=lambda: OsInfo(os_type="unknown", arch="unknown"))
    wrappers: List[WrapperInfo] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, default=str)

    def get(self, name: str) -> Optional[ToolInfo]:
        for tool in self.tools:
            if tool.name == name:
                return tool
        return None

    def is_installed(self, name: str) -> bool:
        tool = self.get(name)
        return bool(tool and tool.installed)


@dataclass
class ToolSummary:
    """Compact per-tool line shown after detection."""

    name: str
    installed: bool
    version: Optional[str]
    authenticated: bool
    wrapper_count: int
    profiles: List[ToolProfile] = field(default_factory=list)
    version_changed: Optional[bool] = None
    previous_version: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def summarize(report: DetectionReport) -> List[ToolSummary]:
    """Summarize a report, counting wrappers per tool."""
    return [
        ToolSummary(
            name=tool.name,
            installed=tool.installed,
            version=tool.version,
            authenticated=tool.authenticated,
            wrapper_count=sum(1 for w in report.wrappers if w.target_tool == tool.name),
            profiles=list(tool.profiles),
            version_changed=tool.version_changed,
            previous_version=tool.previous_version,
        )
        for tool in report.tools
    ]


class Detector(Protocol):
    """Anything that can report the state of the agent tools."""

    def detect_all(self) -> DetectionReport:
        ...

    def detect_tool(self, name: str) -> ToolInfo:
        ...

    def detect_os(self) -> OsInfo:
        ...


# -------------------------
# Version tracking
# -------------------------


VERSION_SCHEMA = """
CREATE TABLE IF NOT EXISTS cli_versions (
    cli_name TEXT PRIMARY KEY,
    version TEXT NOT NULL,
    path TEXT,
    detected_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS cli_version_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    cli_name TEXT NOT NULL,
    version TEXT NOT NULL,
    path TEXT,
    detected_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_cli_version_history_name
    ON cli_version_history (cli_name, detected_at);
"""


@dataclass
class VersionRecord:
    cli_name: str
    version: str
    path: Optional[str]
    detected_at: str


class VersionTracker:
    """
    Stores the last seen version of each tool plus a full history.

    Lives in the same SQLite file as the memory graph.
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._conn() as conn:
            conn.executescript(VERSION_SCHEMA)

    @contextmanager
    def _conn(self) -> Iterator[sqlite3.Connection]:
        """Get a database connection with proper settings."""
        conn = sqlite3.connect(self.db_path)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=5000")
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def get_current(self, cli_name: str) -> Optional[VersionRecord]:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT cli_name, version, path, detected_at FROM cli_versions WHERE cli_name = ?",
                (cli_name,),
            ).fetchone()
        return VersionRecord(**dict(row)) if row else None

    def record(self, cli_name: str, version: str, path: Optional[str] = None) -> bool:
        """
        Store the current version and append it to the history.

        Returns:
            True if a different version was stored before; False on first
            record or when unchanged
        """
        now = datetime.now(timezone.utc).isoformat()
        previous = self.get_current(cli_name)
        changed = previous is not None and previous.version != version

        with self._conn() as conn:
            conn.execute(
                """
                INSERT INTO cli_versions (cli_name, version, path, detected_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(cli_name) DO UPDATE SET
                    version = excluded.version,
                    path = excluded.path,
                    detected_at = excluded.detected_at
                """,
                (cli_name, version, path, now),
            )
            conn.execute(
                """
                INSERT INTO cli_version_history (cli_name, version, path, detected_at)
                VALUES (?, ?, ?, ?)
                """,
                (cli_name, version, path, now),
            )

        return changed

    def history(self, cli_name: str, limit: int = 20) -> List[VersionRecord]:
        """Version history for a tool, newest first."""
        with self._conn() as conn:
            rows = conn.execute(
                """
                SELECT cli_name, version, path, detected_at
                FROM cli_version_history
                WHERE cli_name = ?
                ORDER BY id DESC
                LIMIT ?
                """,
                (cli_name, limit),
            ).fetchall()
        return [VersionRecord(**dict(r)) for r in rows]


# -------------------------
# System detector
# -------------------------


class SystemDetector:
    """Detects agent tools on the local machine.

    Usage:
        detector = SystemDetector(tracker=VersionTracker(db_path))
        report = detector.detect_all()
        claude = detector.detect_tool("claude")
    """

    def __init__(
        self,
        home: Optional[Path] = None,
        tracker: Optional[VersionTracker] = None,
        known_tools: Tuple[Tuple[str, str], ...] = KNOWN_TOOLS,
        command_timeout: float = 10,
    ):
        self.home = Path(home) if home else Path.home()
        self.tracker = tracker
        self.known_tools = known_tools
        self.command_timeout = command_timeout

    def detect_all(self) -> DetectionReport:
        return DetectionReport(
            tools=[self.detect_tool(name) for name, _ in self.known_tools],
            os=self.detect_os(),
            wrappers=self.scan_wrappers(),
        )

    def detect_tool(self, name: str) -> ToolInfo:
        info = ToolInfo(name=name)

        config_dir = self.home / dict(self.known_tools).get(name, f".{name}")
        if config_dir.is_dir():
            info.config_dir = str(config_dir)

        path = shutil.which(name)
        if not path:
            return info

        info.installed = True
        info.path = path
        info.version = self._get_version(path)
        info.authenticated = self.check_auth(name)
        if info.authenticated:
            info.profiles = self._profiles(name, path)

        if self.tracker and info.version:
            # History is a side record; a busy or broken store must not fail detection
            try:
                previous = self.tracker.get_current(name)
                changed = self.tracker.record(name, info.version, path)
            except sqlite3.Error as e:
                log_error(e, {"stage": "version_tracking", "tool": name})
            else:
                if previous:
                    info.previous_version = previous.version
                    info.version_changed = changed

        return info

    def detect_os(self) -> OsInfo:
        os_type = {"darwin": "macos"}.get(platform.system().lower(), platform.system().lower())
        return OsInfo(os_type=os_type or "unknown", arch=platform.machine() or "unknown")

    def check_auth(self, name: str) -> bool:
        """Heuristic: look for the credential files each tool writes."""
        if name == "claude":
            return any(
                (self.home / ".claude" / f).exists()
                for f in (".credentials.json", "credentials.json")
            )
        if name == "codex":
            return bool(os.environ.get("OPENAI_API_KEY")) or (self.home / ".codex" / "auth.json").exists()
        if name == "gemini":
            return (self.home / ".gemini" / "oauth_creds.json").exists()
        if name == "opencode":
            return (self.home / ".local" / "share" / "opencode" / "auth.json").exists()
        return False

    def scan_wrappers(self) -> List[WrapperInfo]:
        """Find scripts in ~/.local/bin that mention a known tool."""
        bin_dir = self.home / ".local" / "bin"
        if not bin_dir.is_dir():
            return []

        wrappers = []
        for path in sorted(bin_dir.iterdir()):
            if not path.is_file():
                continue
            try:
                content = path.read_text(errors="ignore").lower()
            except OSError:
                continue
            for name, _ in self.known_tools:
                if name in content:
                    wrappers.append(WrapperInfo(name=path.name, path=str(path), target_tool=name))
                    break
        return wrappers

    def _run(self, argv: List[str]) -> Optional[subprocess.CompletedProcess]:
        try:
            return subprocess.run(
                argv,
                capture_output=True,
                text=True,
                timeout=self.command_timeout,
            )
        except (OSError, subprocess.TimeoutExpired):
            return None

    def _get_version(self, path: str) -> Optional[str]:
        result = self._run([path, "--version"])
        if not result or result.returncode != 0:
            return None
        lines = result.stdout.strip().splitlines()
        return lines[0].strip() if lines else None

    def _profiles(self, name: str, path: str) -> List[ToolProfile]:
        # Only claude reports its account in a machine-readable form
        if name != "claude":
            return []

        result = self._run([path, "auth", "status"])
        if not result or result.returncode != 0:
            return []
        try:
            status = json.loads(result.stdout.strip())
        except json.JSONDecodeError:
            return []
        if not isinstance(status, dict) or not status.get("loggedIn"):
            return []

        details = {
            key: status.get(key)
            for key in ("subscriptionType", "apiProvider", "orgId", "orgName")
        }
        return [
            ToolProfile(
                id=status.get("email") or "unknown",
                auth_method=status.get("authMethod") or "unknown",
                active=True,
                details=details,
            )
        ]
