"""
agentwire - Agent-driven setup for AI coding CLIs

Detects which agent tools are installed, hands the picture to a headless
agent, and executes the actions it proposes inside a least-privilege
sandbox. The agent decides what to configure; agentwire decides what it
is allowed to touch.

Core components:
- MemoryGraph: SQLite-backed graph of facts learned across sessions
- SystemDetector: Installed tools, versions, auth and wrapper scripts
- ObservabilityLogger: Phase-based logging for debugging sessions

Orchestration:
- TurnClient: One headless agent CLI round-trip per turn
- ActionSandbox: Allowlisted commands and write paths
- SetupOrchestrator: The bounded turn loop of one session
- SetupManager: Many concurrent sessions on one event loop
"""

__version__ = "0.1.0"

# Core modules
from agentwire.core.config import SetupConfig, load_config
from agentwire.core.detection import DetectionReport, SystemDetector, ToolInfo
from agentwire.core.errors import AgentwireError, SessionOutcome
from agentwire.core.memory import MemoryGraph, MemorySnapshot
from agentwire.core.observability import LogEntry, ObservabilityLogger

# Orchestration
from agentwire.orchestrator import (
    ActionSandbox,
    EventChannel,
    InputChannel,
    SetupManager,
    SetupOrchestrator,
    TurnClient,
)

__all__ = [
    # Core
    "SetupConfig",
    "load_config",
    "DetectionReport",
    "SystemDetector",
    "ToolInfo",
    "AgentwireError",
    "SessionOutcome",
    "MemoryGraph",
    "MemorySnapshot",
    "ObservabilityLogger",
    "LogEntry",
    # Orchestration
    "ActionSandbox",
    "EventChannel",
    "InputChannel",
    "SetupManager",
    "SetupOrchestrator",
    "TurnClient",
]
