"""
TurnClient - one round-trip with the agent CLI per call.

Runs `claude -p` headlessly with a JSON schema constraint and parses the
reply into an AgentTurnResult. The first call carries the full briefing;
later calls carry only the incremental message and resume the CLI's own
conversation when a session id has been seen on stderr.

The client never retries. Every failure is raised to the orchestrator.
"""

import asyncio
import json
import shutil
from pathlib import Path
from typing import List, Optional, Protocol

from pydantic import ValidationError

from agentwire.core.audit import log_audit
from agentwire.core.config import AgentConfig
from agentwire.core.errors import ParseError, TransportError, TurnTimeout
from agentwire.core.observability import ObservabilityLogger
from agentwire.orchestrator.actions import AgentTurnResult
from agentwire.orchestrator.schemas import AGENT_TURN_SCHEMA


SESSION_PREFIXES = ("Session: ", "session_id: ")

STDERR_SNIPPET_CHARS = 500
STDOUT_SNIPPET_CHARS = 200


class TurnSender(Protocol):
    """Anything that can run one reasoning turn."""

    async def send_turn(self, message: str, schema: str = AGENT_TURN_SCHEMA) -> AgentTurnResult:
        ...


def find_agent_binary(home: Optional[Path] = None) -> str:
    """Find the claude binary.

    Prefers ~/.claude/local/claude over whatever is first on PATH.
    """
    home_claude = (home or Path.home()) / ".claude" / "local" / "claude"
    if home_claude.exists():
        return str(home_claude)

    claude_path = shutil.which("claude")
    if claude_path:
        return claude_path

    return "claude"


def scrape_session_handle(stderr: str) -> Optional[str]:
    """Find a continuation id in free-text diagnostics.

    Looks for a line 'Session: <id>' or 'session_id: <id>'. Nothing else in
    the CLI output is trusted for this.
    """
    for line in stderr.splitlines():
        trimmed = line.strip()
        for prefix in SESSION_PREFIXES:
            if trimmed.startswith(prefix):
                token = trimmed[len(prefix):].strip()
                if token:
                    return token
    return None


def parse_turn_result(stdout: str) -> AgentTurnResult:
    """Parse CLI stdout into an AgentTurnResult.

    Accepts either the turn object itself or the CLI's JSON envelope with
    the turn object under "structured_output".

    Raises:
        ParseError: With a snippet of the raw output
    """
    text = stdout.strip()
    snippet = text[:STDOUT_SNIPPET_CHARS]

    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise ParseError(f"Failed to parse agent response: {e.msg}", snippet) from e

    if isinstance(payload, dict) and isinstance(payload.get("structured_output"), dict):
        payload = payload["structured_output"]

    try:
        return AgentTurnResult.model_validate(payload)
    except ValidationError as e:
        raise ParseError(
            f"Agent response does not match the turn schema ({e.error_count()} errors)",
            snippet,
        ) from e


class TurnClient:
    """Headless agent CLI wrapper for one setup session.

    Usage:
        client = TurnClient(system_prompt, config.agent)
        result = await client.send_turn("Begin the setup process.")
        for action in result.actions:
            ...
    """

    def __init__(
        self,
        system_prompt: str,
        config: Optional[AgentConfig] = None,
        logger: Optional[ObservabilityLogger] = None,
        home: Optional[Path] = None,
        cwd: Optional[Path] = None,
        verbose: bool = False,
    ):
        """
        Args:
            system_prompt: Briefing prepended to the first message
            config: Agent settings (binary, model, tools, timeout)
            logger: Observability logger for raw output and timeouts
            home: Home directory used to locate the binary
            cwd: Working directory of the CLI process
            verbose: Print progress to stdout
        """
        self.system_prompt = system_prompt
        self.config = config or AgentConfig()
        self.logger = logger
        self.binary = self.config.binary or find_agent_binary(home)
        self.cwd = cwd
        self.verbose = verbose

        self.session_handle: Optional[str] = None
        self.turns_sent = 0

    def build_prompt(self, message: str) -> str:
        if self.turns_sent == 0:
            return f"{self.system_prompt}\n\n---\n\n{message}"
        return message

    def build_command(self, prompt: str, schema: str) -> List[str]:
        cmd = [
            self.binary,
            "-p",
            "--output-format",
            "json",
            "--model",
            self.config.model,
            "--allowedTools",
            ",".join(self.config.allowed_tools),
            "--json-schema",
            schema,
        ]
        if self.session_handle:
            cmd.extend(["--resume", self.session_handle])
        cmd.append(prompt)
        return cmd

    async def send_turn(self, message: str, schema: str = AGENT_TURN_SCHEMA) -> AgentTurnResult:
        """Run one turn.

        Raises:
            TurnTimeout: The CLI ran past the timeout and was killed
            TransportError: The CLI could not be spawned or exited non-zero
            ParseError: The reply is not a valid turn object
        """
        prompt = self.build_prompt(message)
        cmd = self.build_command(prompt, schema)

        if self.verbose:
            print(f"[AGENT] Turn {self.turns_sent + 1}: sending {len(prompt)} chars")

        log_audit("agent", "invoke", {"turn": self.turns_sent + 1, "resume": bool(self.session_handle)})

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(self.cwd) if self.cwd else None,
            )
        except OSError as e:
            log_audit("agent", "failed", {"error": str(e)})
            raise TransportError(f"Failed to spawn {self.binary}: {e}") from e

        self.turns_sent += 1

        try:
            stdout_b, stderr_b = await asyncio.wait_for(
                proc.communicate(), timeout=self.config.timeout
            )
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            if self.logger:
                self.logger.log(
                    "cli_timeout",
                    {"turn": self.turns_sent, "timeout_seconds": self.config.timeout},
                )
            log_audit("agent", "timeout", {"turn": self.turns_sent})
            raise TurnTimeout(self.config.timeout)

        stdout = stdout_b.decode("utf-8", errors="replace")
        stderr = stderr_b.decode("utf-8", errors="replace")

        if self.logger:
            self.logger.log(
                "cli_raw",
                {
                    "turn": self.turns_sent,
                    "exit_code": proc.returncode,
                    "stdout": stdout,
                    "stderr": stderr,
                },
            )

        if proc.returncode != 0:
            log_audit("agent", "failed", {"turn": self.turns_sent, "exit_code": proc.returncode})
            raise TransportError(
                f"Agent CLI failed (exit {proc.returncode}): {stderr[:STDERR_SNIPPET_CHARS]}"
            )

        result = parse_turn_result(stdout)

        handle = scrape_session_handle(stderr)
        if handle:
            self.session_handle = handle

        if self.verbose:
            print(f"[AGENT] Turn {self.turns_sent}: {len(result.actions)} actions, done={result.done}")

        log_audit(
            "agent",
            "complete",
            {"turn": self.turns_sent, "actions": len(result.actions), "done": result.done},
        )
        return result
