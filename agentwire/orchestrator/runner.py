"""
SetupOrchestrator - the turn loop of one setup session.

1. DETECT - snapshot installed tools (off the event loop)
2. BOOTSTRAP - full setup only: if the required tool is missing, show
   install instructions and wait for the user, then detect again
3. TURN LOOP - up to max_turns round-trips with the agent CLI; each turn's
   actions run in order through the sandbox and their feedback becomes the
   next turn's message
4. TERMINATE - record the outcome exactly once

The loop suspends only while waiting on the agent CLI, on an allowlisted
command, or on the user's inbox, so many sessions can share one event loop.
"""

import asyncio
import json
from dataclasses import dataclass
from typing import Callable, List, Optional, assert_never

from agentwire.core.audit import log_audit, log_error
from agentwire.core.config import SetupConfig
from agentwire.core.detection import DetectionReport, Detector, summarize
from agentwire.core.errors import (
    AgentwireError,
    BootstrapFailure,
    ParseError,
    PersistenceError,
    SessionOutcome,
    SyncError,
    TransportError,
    TurnBudgetExceeded,
    UserCancelled,
)
from agentwire.core.memory import MemoryGraph
from agentwire.core.observability import ObservabilityLogger
from agentwire.orchestrator.actions import (
    AgentAction,
    AskUserAction,
    CancelResponse,
    CommandOutputResult,
    CompleteAction,
    CompleteEvent,
    ConfigWrittenResult,
    DetectionSummaryResult,
    ErrorEvent,
    IntegrationTestAction,
    IntegrationTestResult,
    NeedInputEvent,
    OauthFlowPrompt,
    ProgressEvent,
    RunCommandAction,
    ShowResultEvent,
    StatusAction,
    StatusEvent,
    SyncMcpAction,
    SyncSkillAction,
    UpdateMemoryAction,
    UserPrompt,
    UserResponse,
    WriteConfigAction,
)
from agentwire.orchestrator.agent import TurnClient, TurnSender
from agentwire.orchestrator.channels import EventChannel, InputChannel
from agentwire.orchestrator.context import (
    build_agent_context,
    build_system_prompt,
    build_tool_setup_prompt,
    install_instructions,
)
from agentwire.orchestrator.sandbox import ActionSandbox
from agentwire.orchestrator.schemas import AGENT_TURN_SCHEMA
from agentwire.orchestrator.state_machine import SetupState, SetupStateMachine


FULL_SETUP_MESSAGE = "Analyze the system state and begin setup."
CONTINUE_MESSAGE = "Continue with the next step."
FEEDBACK_HEADER = "Results from previous actions:\n\n"

CANCELLED_MESSAGE = "Setup cancelled by user."
BOOTSTRAP_CANCELLED_MESSAGE = "Setup cancelled."
MAX_TURNS_MESSAGE = "Setup agent exceeded maximum turns. Please retry or configure manually."
DONE_SUMMARY = "Setup finished."

STDOUT_FEEDBACK_CHARS = 500
STDERR_FEEDBACK_CHARS = 200
TEST_FEEDBACK_CHARS = 300


def truncate(text: str, max_chars: int) -> str:
    """Cut text to max_chars, marking the cut with '...'."""
    if len(text) <= max_chars:
        return text
    return f"{text[:max_chars]}..."


def build_next_message(feedback: List[str]) -> str:
    if not feedback:
        return CONTINUE_MESSAGE
    return FEEDBACK_HEADER + "\n\n".join(feedback)


@dataclass
class ActionResult:
    """Feedback of one action, and whether it ended the session."""

    feedback: Optional[str] = None
    terminal: Optional[SessionOutcome] = None


AgentFactory = Callable[[str], TurnSender]


class SetupOrchestrator:
    """Runs one setup session from detection to a terminal outcome.

    Usage:
        events = EventChannel([print])
        inbox = InputChannel()
        orchestrator = SetupOrchestrator(
            session_id, config, events, inbox, MemoryGraph(config.memory_db_path), SystemDetector()
        )
        outcome = await orchestrator.run()             # full setup
        outcome = await orchestrator.run_for_tool("codex")  # one tool
    """

    def __init__(
        self,
        session_id: str,
        config: SetupConfig,
        events: EventChannel,
        inbox: InputChannel,
        memory: Optional[MemoryGraph],
        detector: Detector,
        agent_factory: Optional[AgentFactory] = None,
        logger: Optional[ObservabilityLogger] = None,
        verbose: bool = False,
    ):
        """
        Args:
            session_id: Id of the session row in the memory graph
            config: Frozen setup configuration
            events: Outward event stream
            inbox: User responses for this session
            memory: Memory graph handle (None disables persistence)
            detector: Detection collaborator
            agent_factory: Builds the turn client from a system prompt
                (defaults to TurnClient on the agent CLI)
            logger: Observability logger
            verbose: Print agent progress
        """
        self.session_id = session_id
        self.config = config
        self.events = events
        self.inbox = inbox
        self.memory = memory
        self.detector = detector
        self.logger = logger
        self.verbose = verbose
        self.agent_factory = agent_factory or self._default_agent

        self.state = SetupStateMachine()
        self.sandbox = ActionSandbox(config, memory, logger)
        self.outcome: Optional[SessionOutcome] = None
        self.turns_completed = 0

    def _default_agent(self, system_prompt: str) -> TurnSender:
        return TurnClient(
            system_prompt,
            self.config.agent,
            logger=self.logger,
            home=self.config.home,
            verbose=self.verbose,
        )

    # -------------------------
    # Entry points
    # -------------------------

    async def run(self) -> SessionOutcome:
        """Full setup: detect everything, bootstrap if needed, then the turn loop."""
        return await self._guarded(self._run_full())

    async def run_for_tool(self, tool: str) -> SessionOutcome:
        """Set up a single named tool. Never bootstraps."""
        return await self._guarded(self._run_tool(tool))

    async def _guarded(self, flow) -> SessionOutcome:
        try:
            return await flow
        except asyncio.CancelledError:
            self._finish(SessionOutcome.CANCELLED)
            raise
        except Exception as e:
            log_error(e, {"session_id": self.session_id, "state": self.state.current_state.name})
            if self.logger:
                self.logger.log_error(type(e).__name__, {"message": str(e)}, resolution="failed")
            if not self.state.is_terminated():
                self._emit(ErrorEvent(message=f"Setup failed: {e}", recoverable=False))
            self._finish(SessionOutcome.AGENT_ERROR)
            raise

    async def _run_full(self) -> SessionOutcome:
        self._start(FULL_SETUP_MESSAGE)
        self._emit(StatusEvent(message="Detecting installed CLIs..."))

        report = await asyncio.to_thread(self.detector.detect_all)
        self._log_detection(report)
        self._emit(
            ShowResultEvent(
                content=DetectionSummaryResult(tools=[s.to_dict() for s in summarize(report)])
            )
        )

        required = self.config.agent.required_tool
        if not report.is_installed(required):
            self.state.transition(SetupState.AWAITING_BOOTSTRAP, f"{required} missing")
            try:
                report = await self._bootstrap(report)
            except (UserCancelled, BootstrapFailure) as e:
                return self._fail(e)

        context = build_agent_context(report, self.memory, self.config.context_node_types)
        system_prompt = build_system_prompt(context, self.config)
        return await self._turn_loop(system_prompt, FULL_SETUP_MESSAGE)

    async def _run_tool(self, tool: str) -> SessionOutcome:
        message = f"Help set up the {tool} CLI."
        self._start(message)
        self._emit(StatusEvent(message=f"Detecting {tool} CLI..."))

        info = await asyncio.to_thread(self.detector.detect_tool, tool)
        os_info = await asyncio.to_thread(self.detector.detect_os)
        report = DetectionReport(tools=[info], os=os_info, wrappers=[])
        self._log_detection(report)

        context = build_agent_context(report, self.memory, self.config.context_node_types)
        system_prompt = build_tool_setup_prompt(tool, context, self.config)
        return await self._turn_loop(system_prompt, message)

    # -------------------------
    # Bootstrap
    # -------------------------

    async def _bootstrap(self, report: DetectionReport) -> DetectionReport:
        """Ask the user to install the required tool, then detect again.

        Raises:
            UserCancelled: On cancel or a closed inbox
            BootstrapFailure: The tool is still missing afterwards
        """
        required = self.config.agent.required_tool
        self._emit(
            NeedInputEvent(
                action=OauthFlowPrompt(
                    provider=required,
                    login_command=f"{required} login",
                    instructions=install_instructions(report.os.os_type),
                )
            )
        )
        log_audit("session", "bootstrap", {"session_id": self.session_id, "tool": required})

        response = await self.inbox.receive()
        if response is None or isinstance(response, CancelResponse):
            raise UserCancelled(BOOTSTRAP_CANCELLED_MESSAGE)

        self.state.transition(SetupState.DETECTING, response.type)
        self._emit(StatusEvent(message=f"Verifying {required.capitalize()} CLI installation..."))
        new_report = await asyncio.to_thread(self.detector.detect_all)
        self._log_detection(new_report)

        if not new_report.is_installed(required):
            raise BootstrapFailure(
                f"{required.capitalize()} CLI still not detected. Please install it and try again."
            )
        return new_report

    # -------------------------
    # Turn loop
    # -------------------------

    async def _turn_loop(self, system_prompt: str, initial_message: str) -> SessionOutcome:
        self.state.transition(SetupState.TURN_LOOP)
        agent = self.agent_factory(system_prompt)
        max_turns = self.config.agent.max_turns
        next_message = initial_message

        for turn in range(1, max_turns + 1):
            if self.inbox.closed:
                return self._fail(UserCancelled(CANCELLED_MESSAGE))

            mark = self.events.mark()
            self._emit(
                ProgressEvent(
                    message=f"Agent turn {turn}/{max_turns}...",
                    percent=min(turn / max_turns * 100.0, 100.0),
                )
            )
            self._emit(StatusEvent(message="Thinking..."))

            try:
                result = await agent.send_turn(next_message, AGENT_TURN_SCHEMA)
            except (TransportError, ParseError) as e:
                log_error(e, {"session_id": self.session_id, "turn": turn})
                if self.logger:
                    self.logger.log_error(type(e).__name__, {"turn": turn, "message": str(e)}, "session ended")
                self._emit(ErrorEvent(message=f"Agent error: {e}", recoverable=False))
                return self._finish(SessionOutcome.AGENT_ERROR)

            self.turns_completed = turn
            self._record_turn(turn, next_message, len(result.actions), mark)
            if self.logger:
                self.logger.log_turn(turn, len(next_message), [a.type for a in result.actions], result.done)

            feedback: List[str] = []
            for action in result.actions:
                try:
                    step = await self._execute(action)
                except UserCancelled as e:
                    return self._fail(e)

                if self.logger:
                    self.logger.log_action(turn, action.type, step.feedback)
                if step.terminal is not None:
                    return self._finish(step.terminal)
                if step.feedback is not None:
                    feedback.append(step.feedback)

            if result.done:
                self._emit(CompleteEvent(summary=DONE_SUMMARY, items=[]))
                return self._finish(SessionOutcome.DONE)

            next_message = build_next_message(feedback)

        return self._fail(TurnBudgetExceeded(MAX_TURNS_MESSAGE))

    async def _execute(self, action: AgentAction) -> ActionResult:
        """Run one action and produce its feedback."""
        if isinstance(action, StatusAction):
            self._emit(StatusEvent(message=action.message))
            return ActionResult()
        elif isinstance(action, RunCommandAction):
            return await self._run_command(action)
        elif isinstance(action, WriteConfigAction):
            return self._write_config(action)
        elif isinstance(action, IntegrationTestAction):
            return await self._test_integration(action)
        elif isinstance(action, AskUserAction):
            response = await self._ask_user(action.action)
            return ActionResult(feedback=f"User responded: {response.model_dump_json()}")
        elif isinstance(action, SyncSkillAction):
            return self._sync_skill(action)
        elif isinstance(action, SyncMcpAction):
            return self._sync_mcp(action)
        elif isinstance(action, UpdateMemoryAction):
            self.sandbox.update_memory(action.node_type, action.label, action.data, action.edges)
            return ActionResult()
        elif isinstance(action, CompleteAction):
            self._emit(CompleteEvent(summary=action.summary, items=list(action.items)))
            return ActionResult(terminal=SessionOutcome.SUCCESS)
        else:
            assert_never(action)

    async def _run_command(self, action: RunCommandAction) -> ActionResult:
        if action.description:
            self._emit(StatusEvent(message=action.description))

        command_line = " ".join([action.command, *action.args])
        try:
            result = await self.sandbox.run_command(action.command, action.args)
        except AgentwireError as e:
            self._emit(ErrorEvent(message=str(e), recoverable=True))
            return ActionResult(feedback=f"Command failed: {e}")

        self._emit(
            ShowResultEvent(
                content=CommandOutputResult(
                    command=command_line,
                    stdout=result.stdout,
                    stderr=result.stderr,
                    exit_code=result.exit_code,
                )
            )
        )
        return ActionResult(
            feedback=(
                f"Command `{command_line}` completed (exit {result.exit_code}).\n"
                f"stdout: {truncate(result.stdout, STDOUT_FEEDBACK_CHARS)}\n"
                f"stderr: {truncate(result.stderr, STDERR_FEEDBACK_CHARS)}"
            )
        )

    def _write_config(self, action: WriteConfigAction) -> ActionResult:
        if action.description:
            self._emit(StatusEvent(message=action.description))

        try:
            written = self.sandbox.write_config(action.path, action.content)
        except AgentwireError as e:
            self._emit(ErrorEvent(message=str(e), recoverable=True))
            return ActionResult(feedback=f"Failed to write config: {e}")

        self._emit(
            ShowResultEvent(
                content=ConfigWrittenResult(path=str(written), description=action.description)
            )
        )
        return ActionResult(feedback=f"Config written: {action.path}")

    async def _test_integration(self, action: IntegrationTestAction) -> ActionResult:
        self._emit(StatusEvent(message=f"Testing {action.model_name}..."))

        try:
            outcome = await self.sandbox.test_integration(action.model_name, action.command, action.args)
        except AgentwireError as e:
            return ActionResult(feedback=f"Test for {action.model_name} failed: {e}")

        self._emit(
            ShowResultEvent(
                content=IntegrationTestResult(
                    model=action.model_name, success=outcome.success, output=outcome.output
                )
            )
        )
        verdict = "PASS" if outcome.success else "FAIL"
        return ActionResult(
            feedback=(
                f"Test for {action.model_name}: {verdict} (exit {outcome.exit_code}). "
                f"Output: {truncate(outcome.output, TEST_FEEDBACK_CHARS)}"
            )
        )

    async def _ask_user(self, prompt: UserPrompt) -> UserResponse:
        """Show a prompt and wait for the user's answer.

        Raises:
            UserCancelled: On cancel or a closed inbox
        """
        self.state.transition(SetupState.AWAITING_USER_INPUT, prompt.type)
        self._emit(NeedInputEvent(action=prompt))

        response = await self.inbox.receive()
        if response is None or isinstance(response, CancelResponse):
            raise UserCancelled(CANCELLED_MESSAGE)

        self.state.transition(SetupState.TURN_LOOP, response.type)
        return response

    def _sync_skill(self, action: SyncSkillAction) -> ActionResult:
        self._emit(
            StatusEvent(message=f"Syncing skill '{action.skill_name}' to {action.target_cli}...")
        )
        try:
            self.sandbox.sync_skill(action.source_cli, action.target_cli, action.skill_name)
        except SyncError as e:
            return ActionResult(feedback=f"Failed to sync skill: {e}")
        return ActionResult(feedback=f"Skill '{action.skill_name}' synced to {action.target_cli}")

    def _sync_mcp(self, action: SyncMcpAction) -> ActionResult:
        self._emit(StatusEvent(message=f"Syncing MCP '{action.mcp_name}' to {action.target_cli}..."))
        try:
            self.sandbox.sync_mcp(action.target_cli, action.mcp_name, action.config)
        except SyncError as e:
            return ActionResult(feedback=f"Failed to sync MCP: {e}")
        return ActionResult(feedback=f"MCP '{action.mcp_name}' installed in {action.target_cli}")

    # -------------------------
    # Bookkeeping
    # -------------------------

    def _emit(self, event) -> None:
        self.events.emit(event)

    def _start(self, message: str) -> None:
        if self.logger:
            self.logger.new_session(self.session_id)
            self.logger.log_input(message, source="setup")
        if self.memory is None:
            return
        try:
            self.memory.create_session(self.session_id)
        except PersistenceError as e:
            self._persistence_failed(e, "create_session")

    def _record_turn(self, turn: int, prompt: str, action_count: int, mark: int) -> None:
        if self.memory is None:
            return
        events_json = json.dumps([e.to_wire() for e in self.events.since(mark)])
        try:
            self.memory.record_turn(
                self.session_id, turn, prompt, f"{action_count} actions processed", events_json
            )
        except PersistenceError as e:
            self._persistence_failed(e, "record_turn")

    def _fail(self, error: AgentwireError) -> SessionOutcome:
        """End the session on a fatal error, announcing it once."""
        self._emit(ErrorEvent(message=str(error), recoverable=False))
        return self._finish(error.outcome or SessionOutcome.AGENT_ERROR)

    def _finish(self, outcome: SessionOutcome) -> SessionOutcome:
        """Record the terminal outcome. Later calls keep the first outcome."""
        if not self.state.terminate(outcome.value):
            return self.outcome or outcome
        self.outcome = outcome

        if self.logger:
            self.logger.log(
                "session",
                {"outcome": outcome.value, "turns": self.turns_completed, "history": self.state.get_history()},
            )
        if self.memory is not None:
            try:
                self.memory.end_session(self.session_id, outcome.value)
            except PersistenceError as e:
                self._persistence_failed(e, "end_session")
        return outcome

    def _persistence_failed(self, error: PersistenceError, operation: str) -> None:
        log_error(error, {"session_id": self.session_id, "operation": operation})
        if self.logger:
            self.logger.log_error(
                "PersistenceError",
                {"operation": operation, "message": str(error)},
                resolution="ignored",
            )

    def _log_detection(self, report: DetectionReport) -> None:
        if self.logger:
            self.logger.log(
                "detect",
                {
                    "installed": [t.name for t in report.tools if t.installed],
                    "missing": [t.name for t in report.tools if not t.installed],
                    "wrappers": len(report.wrappers),
                },
            )
