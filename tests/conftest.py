"""
Shared pytest fixtures for agentwire tests.

Provides fixtures for:
- Configuration rooted in a temporary home directory
- Memory graphs on temporary databases
- A scripted agent that replays canned turn results
- A fake detector with a controllable set of installed tools
- Orchestrators wired to all of the above
"""

from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

import pytest

from agentwire.core.audit import reset_logger
from agentwire.core.config import SetupConfig
from agentwire.core.detection import DetectionReport, OsInfo, ToolInfo
from agentwire.core.memory import MemoryGraph
from agentwire.orchestrator.actions import AgentTurnResult
from agentwire.orchestrator.channels import EventChannel, InputChannel
from agentwire.orchestrator.runner import SetupOrchestrator
from agentwire.orchestrator.schemas import AGENT_TURN_SCHEMA


# Commands every test config may run
TEST_COMMANDS = ("which", "claude", "codex", "echo", "sh", "false", "true")


def turn(*actions: Dict[str, Any], done: bool = False) -> AgentTurnResult:
    """Build a turn result from plain action dicts."""
    return AgentTurnResult.model_validate({"actions": list(actions), "done": done})


def make_report(installed: Iterable[str] = ("claude",), os_type: str = "linux") -> DetectionReport:
    installed = set(installed)
    return DetectionReport(
        tools=[
            ToolInfo(
                name=name,
                installed=name in installed,
                path=f"/usr/bin/{name}" if name in installed else None,
                version="1.0.0" if name in installed else None,
            )
            for name in ("claude", "codex", "opencode", "gemini")
        ],
        os=OsInfo(os_type=os_type, arch="x86_64"),
    )


class ScriptedAgent:
    """Replays canned turn results (or raises canned errors) in order.

    Once the script runs out, every turn returns no actions and done=False.
    """

    def __init__(self, script: Sequence[Union[AgentTurnResult, Exception]] = ()):
        self.script = list(script)
        self.messages: List[str] = []
        self.system_prompt: Optional[str] = None

    async def send_turn(self, message: str, schema: str = AGENT_TURN_SCHEMA) -> AgentTurnResult:
        self.messages.append(message)
        if not self.script:
            return AgentTurnResult(actions=[], done=False)
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def factory(self, system_prompt: str) -> "ScriptedAgent":
        self.system_prompt = system_prompt
        return self


class FakeDetector:
    """Detector whose successive detect_all calls see successive tool sets.

    The last tool set repeats once the list is exhausted.
    """

    def __init__(self, *installed_sets: Iterable[str]):
        self.installed_sets = [set(s) for s in installed_sets] or [{"claude"}]
        self.calls = 0

    def _current(self) -> set:
        index = min(self.calls, len(self.installed_sets) - 1)
        return self.installed_sets[index]

    def detect_all(self) -> DetectionReport:
        report = make_report(self._current())
        self.calls += 1
        return report

    def detect_tool(self, name: str) -> ToolInfo:
        installed = name in self._current()
        self.calls += 1
        return ToolInfo(name=name, installed=installed, version="2.0.0" if installed else None)

    def detect_os(self) -> OsInfo:
        return OsInfo(os_type="linux", arch="x86_64")


@pytest.fixture(autouse=True)
def _reset_audit_logger():
    """Keep the module-level audit logger from leaking between tests."""
    reset_logger()
    yield
    reset_logger()


@pytest.fixture
def home(tmp_path: Path) -> Path:
    """Temporary home directory."""
    home_dir = tmp_path / "home"
    home_dir.mkdir()
    return home_dir


@pytest.fixture
def config(home: Path) -> SetupConfig:
    """Config rooted in the temporary home, with a small test allowlist."""
    return SetupConfig.from_dict(
        {
            "home_dir": str(home),
            "sandbox": {"allowed_commands": list(TEST_COMMANDS)},
        }
    )


@pytest.fixture
def memory(config: SetupConfig) -> MemoryGraph:
    """Memory graph in the temporary state directory."""
    return MemoryGraph(config.memory_db_path)


@pytest.fixture
def events() -> EventChannel:
    return EventChannel()


@pytest.fixture
def inbox() -> InputChannel:
    return InputChannel()


@pytest.fixture
def make_orchestrator(config: SetupConfig, memory: MemoryGraph, events: EventChannel, inbox: InputChannel):
    """Factory for orchestrators driven by a scripted agent."""

    def _make(
        script: Sequence[Union[AgentTurnResult, Exception]] = (),
        detector: Optional[FakeDetector] = None,
        cfg: Optional[SetupConfig] = None,
        session_id: str = "session-1",
    ):
        agent = ScriptedAgent(script)
        orchestrator = SetupOrchestrator(
            session_id,
            cfg or config,
            events,
            inbox,
            memory,
            detector or FakeDetector({"claude"}),
            agent_factory=agent.factory,
        )
        return orchestrator, agent

    return _make


def event_kinds(channel: EventChannel) -> List[str]:
    return [e.event for e in channel.history]


def events_of(channel: EventChannel, kind: str) -> list:
    return [e for e in channel.history if e.event == kind]
