"""
JSONL audit trail for setup sessions.

Entries go to one file per day under the audit directory
(``audit_YYYYMMDD.jsonl``), so a long-lived manager rolls over at midnight
and retention drops whole days. Every entry names a category and an action
from AUDIT_ACTIONS; anything else is a programming error.

Module-level helpers are no-ops until init_audit_logger() is called, so
library code can log unconditionally.
"""

import json
import re
import traceback
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

# category -> actions that may be logged under it
AUDIT_ACTIONS: Dict[str, tuple] = {
    "session": ("request", "spawn", "start", "bootstrap", "cancel", "complete"),
    "agent": ("invoke", "complete", "failed", "timeout"),
    "sandbox": ("allow", "deny", "exec", "write"),
    "memory": ("upsert",),
    "sync": ("skill", "mcp"),
    "error": ("exception",),
}

_FILE_RE = re.compile(r"^audit_(\d{8})\.jsonl$")

_logger: Optional["AuditLogger"] = None


def check_action(category: str, action: str) -> None:
    """Raise ValueError unless category/action is listed in AUDIT_ACTIONS."""
    actions = AUDIT_ACTIONS.get(category)
    if actions is None:
        raise ValueError(f"Invalid audit category: {category}. Must be one of {list(AUDIT_ACTIONS)}")
    if action not in actions:
        raise ValueError(f"Invalid audit action for {category}: {action}. Must be one of {list(actions)}")


class AuditLogger:
    """
    Append-only audit log split into daily JSONL files.

    Each entry carries the process run id; entries about a setup session
    also carry its id in ``details["session_id"]``.
    """

    def __init__(
        self,
        audit_dir: Path,
        retention_days: int = 30,
        run_id: Optional[str] = None,
    ):
        """
        Args:
            audit_dir: Directory holding the daily files
            retention_days: Days of files to keep (0 = forever)
            run_id: Process-level run id (timestamp if None)
        """
        self.audit_dir = Path(audit_dir)
        self.retention_days = retention_days
        self.run_id = run_id or datetime.now().strftime("%Y%m%d-%H%M%S")

        self.audit_dir.mkdir(parents=True, exist_ok=True)
        if retention_days > 0:
            self.prune()

    def path_for(self, day: date) -> Path:
        return self.audit_dir / f"audit_{day.strftime('%Y%m%d')}.jsonl"

    @property
    def current_path(self) -> Path:
        """File today's entries go to."""
        return self.path_for(date.today())

    def files(self) -> List[Path]:
        """Daily files present, oldest first."""
        return sorted(p for p in self.audit_dir.iterdir() if _FILE_RE.match(p.name))

    def log(
        self,
        category: str,
        action: str,
        details: Optional[Dict[str, Any]] = None,
        duration_ms: Optional[int] = None,
    ) -> None:
        """
        Append an entry to today's file.

        Raises:
            ValueError: If category/action is not in AUDIT_ACTIONS
        """
        check_action(category, action)
        entry: Dict[str, Any] = {
            "ts": datetime.now().isoformat(),
            "run_id": self.run_id,
            "category": category,
            "action": action,
        }
        if details:
            entry["details"] = details
        if duration_ms is not None:
            entry["duration_ms"] = duration_ms
        self._append(entry)

    def log_error(self, error: BaseException, context: Optional[Dict[str, Any]] = None) -> None:
        """Append an error entry with the exception's traceback."""
        details: Dict[str, Any] = {
            "error_type": type(error).__name__,
            "error_message": str(error),
            "traceback": "".join(traceback.format_exception(type(error), error, error.__traceback__)),
        }
        if context:
            details["context"] = context
        self.log("error", "exception", details)

    def _append(self, entry: Dict[str, Any]) -> None:
        with open(self.current_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(entry, default=str) + "\n")

    def prune(self) -> int:
        """
        Delete daily files older than the retention period.

        Returns:
            Number of files removed
        """
        cutoff = (date.today() - timedelta(days=self.retention_days)).strftime("%Y%m%d")
        removed = 0
        for path in self.files():
            if _FILE_RE.match(path.name).group(1) < cutoff:
                path.unlink()
                removed += 1
        return removed

    def get_entries(
        self,
        category: Optional[str] = None,
        action: Optional[str] = None,
        session_id: Optional[str] = None,
        limit: int = 1000,
    ) -> List[Dict[str, Any]]:
        """
        Read entries across all daily files.

        Args:
            category: Filter by category
            action: Filter by action
            session_id: Only entries whose details name this setup session
            limit: Maximum entries to return

        Returns:
            Matching entries, newest first
        """
        entries = []
        for path in self.files():
            with open(path, "r", encoding="utf-8", errors="replace") as f:
                for line in f:
                    try:
                        entry = json.loads(line)
                    except json.JSONDecodeError:
                        continue
                    if category and entry.get("category") != category:
                        continue
                    if action and entry.get("action") != action:
                        continue
                    if session_id and (entry.get("details") or {}).get("session_id") != session_id:
                        continue
                    entries.append(entry)

        return list(reversed(entries[-limit:]))


def init_audit_logger(
    audit_dir: Path,
    retention_days: int = 30,
    run_id: Optional[str] = None,
) -> AuditLogger:
    """Install the module-level logger writing under audit_dir."""
    global _logger
    _logger = AuditLogger(audit_dir, retention_days, run_id)
    return _logger


def get_logger() -> Optional[AuditLogger]:
    return _logger


def reset_logger() -> None:
    """Drop the module-level logger; later calls become no-ops again."""
    global _logger
    _logger = None


def log_audit(
    category: str,
    action: str,
    details: Optional[Dict[str, Any]] = None,
    duration_ms: Optional[int] = None,
) -> None:
    """Log through the module-level logger, if one is installed.

    The category/action pair is checked even when no logger is installed.
    """
    check_action(category, action)
    if _logger:
        _logger.log(category, action, details, duration_ms)


def log_error(error: BaseException, context: Optional[Dict[str, Any]] = None) -> None:
    """Log an exception through the module-level logger, if one is installed."""
    if _logger:
        _logger.log_error(error, context)
