"""
agentwire.orchestrator - Bounded agent turn loop for tool setup.

One session runs:
1. DETECT - Snapshot installed tools
2. BOOTSTRAP - Get the required agent tool installed (full setup only)
3. TURN LOOP - Agent proposes actions, the sandbox executes them,
   results are fed back as the next turn's message
4. TERMINATE - Exactly one outcome per session
"""

from agentwire.orchestrator.agent import TurnClient
from agentwire.orchestrator.channels import EventChannel, InputChannel
from agentwire.orchestrator.manager import SetupManager
from agentwire.orchestrator.runner import SetupOrchestrator
from agentwire.orchestrator.sandbox import ActionSandbox
from agentwire.orchestrator.state_machine import SetupState, SetupStateMachine

__all__ = [
    "TurnClient",
    "EventChannel",
    "InputChannel",
    "SetupManager",
    "SetupOrchestrator",
    "ActionSandbox",
    "SetupState",
    "SetupStateMachine",
]
