"""
SetupManager - runs many setup sessions on one event loop.

Each session gets its own id, inbox, event channel and memory graph
handle, and runs as one asyncio task. Sessions share nothing mutable in
memory; the only shared resource is the SQLite file.
"""

import asyncio
import sqlite3
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from agentwire.core.audit import log_audit, log_error
from agentwire.core.config import SetupConfig
from agentwire.core.detection import Detector, SystemDetector, VersionTracker
from agentwire.core.errors import PersistenceError, SessionOutcome, UnknownSessionError
from agentwire.core.memory import MemoryGraph
from agentwire.core.observability import ObservabilityLogger
from agentwire.orchestrator.actions import ErrorEvent, SetupEvent, UserResponse
from agentwire.orchestrator.channels import EventChannel, InputChannel
from agentwire.orchestrator.runner import AgentFactory, SetupOrchestrator


SessionEventHandler = Callable[[str, SetupEvent], None]
DetectorFactory = Callable[[SetupConfig], Detector]


def default_detector(config: SetupConfig) -> Detector:
    tracker = VersionTracker(config.memory_db_path) if config.track_versions else None
    return SystemDetector(home=config.home, tracker=tracker)


@dataclass
class _Session:
    orchestrator: SetupOrchestrator
    inbox: InputChannel
    events: EventChannel
    task: "asyncio.Task[SessionOutcome]"


class SetupManager:
    """Starts, feeds and cancels setup sessions.

    Must be used from inside a running event loop.

    Usage:
        manager = SetupManager(config, on_event=lambda sid, e: print(sid, e.to_wire()))
        session_id = manager.start_setup()
        await manager.respond(session_id, CancelResponse())
        outcome = await manager.wait(session_id)
    """

    def __init__(
        self,
        config: SetupConfig,
        on_event: Optional[SessionEventHandler] = None,
        detector_factory: Optional[DetectorFactory] = None,
        agent_factory: Optional[AgentFactory] = None,
        logger: Optional[ObservabilityLogger] = None,
        verbose: bool = False,
    ):
        self.config = config
        self.on_event = on_event
        self.detector_factory = detector_factory or default_detector
        self.agent_factory = agent_factory
        self.logger = logger
        self.verbose = verbose
        self._sessions: Dict[str, _Session] = {}
        # Finished sessions not yet collected by wait(); only the task is kept
        self._finished: Dict[str, "asyncio.Task[SessionOutcome]"] = {}

    def start_setup(self) -> Optional[str]:
        """Start a full setup session.

        Returns:
            The session id, or None if the state store could not be opened
        """
        return self._start(None)

    def start_tool_setup(self, tool: str) -> Optional[str]:
        """Start a setup session for one named tool."""
        return self._start(tool)

    def _start(self, tool: Optional[str]) -> Optional[str]:
        session_id = str(uuid.uuid4())

        events = EventChannel()
        if self.on_event is not None:
            handler = self.on_event
            events.subscribe(lambda event: handler(session_id, event))

        try:
            memory = MemoryGraph(self.config.memory_db_path)
            detector = self.detector_factory(self.config)
            # Each session logs under its own id
            logger = ObservabilityLogger(self.logger.db_path, session_id) if self.logger else None
        except (PersistenceError, sqlite3.Error, OSError) as e:
            log_error(e, {"stage": "start_session", "tool": tool})
            events.emit(ErrorEvent(message=f"Failed to open state store: {e}", recoverable=False))
            return None

        inbox = InputChannel()
        orchestrator = SetupOrchestrator(
            session_id,
            self.config,
            events,
            inbox,
            memory,
            detector,
            agent_factory=self.agent_factory,
            logger=logger,
            verbose=self.verbose,
        )
        flow = orchestrator.run_for_tool(tool) if tool else orchestrator.run()
        task = asyncio.get_running_loop().create_task(flow, name=f"setup-{session_id}")
        self._sessions[session_id] = _Session(orchestrator, inbox, events, task)
        task.add_done_callback(lambda t: self._release(session_id, t))

        log_audit("session", "spawn", {"session_id": session_id, "tool": tool})
        return session_id

    def _release(self, session_id: str, task: "asyncio.Task[SessionOutcome]") -> None:
        """Drop a finished session's channels and orchestrator, keeping its task for wait()."""
        self._sessions.pop(session_id, None)
        self._finished[session_id] = task

    def _get(self, session_id: str) -> _Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise UnknownSessionError(session_id)
        return session

    async def respond(self, session_id: str, response: UserResponse) -> None:
        """Deliver a user response to a waiting session.

        Raises:
            UnknownSessionError: No running session with this id
        """
        session = self._get(session_id)
        if session.task.done() or session.inbox.closed:
            raise UnknownSessionError(session_id)
        await session.inbox.send(response)

    def cancel(self, session_id: str) -> None:
        """Close the session's inbox; it ends as cancelled at its next check."""
        session = self._get(session_id)
        session.inbox.close()
        log_audit("session", "cancel", {"session_id": session_id})

    async def wait(self, session_id: str) -> SessionOutcome:
        """Wait for a session to finish and return its outcome.

        The session is forgotten once this returns; later calls for the same
        id raise UnknownSessionError.
        """
        task = self._finished.get(session_id) or self._get(session_id).task
        try:
            return await task
        finally:
            if task.done():
                self._finished.pop(session_id, None)

    def events(self, session_id: str) -> EventChannel:
        return self._get(session_id).events

    def active_sessions(self) -> List[str]:
        return [sid for sid, s in self._sessions.items() if not s.task.done()]
