"""
Error taxonomy for setup sessions.

Each error carries whether the turn loop can continue after it and, for
fatal errors, the session outcome it ends with. Recoverable errors are
turned into feedback text for the next turn; fatal errors surface as a
terminal error event.
"""

from enum import Enum
from typing import Optional


class SessionOutcome(str, Enum):
    """Terminal outcome recorded on a setup session."""

    SUCCESS = "success"
    """A complete action ended the session"""

    DONE = "done"
    """A turn reply set done without a complete action"""

    CANCELLED = "cancelled"
    """User cancelled or the input channel closed"""

    FAILED_BOOTSTRAP = "failed_bootstrap"
    """Required tool still absent after bootstrap"""

    AGENT_ERROR = "agent_error"
    """Transport, timeout or parse failure of the reasoning step"""

    MAX_TURNS_EXCEEDED = "max_turns_exceeded"
    """Turn budget exhausted without a terminal action"""


class AgentwireError(Exception):
    """Base class for all agentwire errors."""

    recoverable: bool = False
    outcome: Optional[SessionOutcome] = None


class TransportError(AgentwireError):
    """The reasoning step could not be spawned or exited non-zero."""

    outcome = SessionOutcome.AGENT_ERROR


class TurnTimeout(TransportError):
    """The reasoning step exceeded its wall-clock budget and was killed."""

    def __init__(self, timeout: float):
        super().__init__(f"Agent call timed out after {timeout:g}s")
        self.timeout = timeout


class ParseError(AgentwireError):
    """The reasoning step's reply did not match the turn schema."""

    outcome = SessionOutcome.AGENT_ERROR

    def __init__(self, message: str, snippet: str = ""):
        super().__init__(f"{message}. Raw: {snippet}" if snippet else message)
        self.snippet = snippet


class SandboxViolation(AgentwireError):
    """An action asked for a command or path outside the allowlists."""

    recoverable = True


class ExternalToolFailure(AgentwireError):
    """An allowlisted command could not be executed."""

    recoverable = True


class SyncError(AgentwireError):
    """A skill or MCP server could not be synced between tools."""

    recoverable = True


class BootstrapFailure(AgentwireError):
    """The required tool is still missing after the bootstrap prompt."""

    outcome = SessionOutcome.FAILED_BOOTSTRAP


class UserCancelled(AgentwireError):
    """The user cancelled, or the input channel was closed."""

    outcome = SessionOutcome.CANCELLED


class TurnBudgetExceeded(AgentwireError):
    """The turn loop ran out of turns."""

    outcome = SessionOutcome.MAX_TURNS_EXCEEDED


class PersistenceError(AgentwireError):
    """A memory graph read or write failed."""

    recoverable = True


class UnknownSessionError(KeyError):
    """No active setup session has the given id."""

    def __init__(self, session_id: str):
        super().__init__(session_id)
        self.session_id = session_id

    def __str__(self) -> str:
        return f"Unknown setup session: {self.session_id}"
