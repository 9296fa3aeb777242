"""Tests for the agent CLI turn client.

Subprocess creation is mocked; no agent CLI is ever run.
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from agentwire.core.config import AgentConfig
from agentwire.core.errors import ParseError, TransportError, TurnTimeout
from agentwire.core.observability import ObservabilityLogger
from agentwire.orchestrator.actions import RunCommandAction, StatusAction
from agentwire.orchestrator.agent import (
    TurnClient,
    find_agent_binary,
    parse_turn_result,
    scrape_session_handle,
)
from agentwire.orchestrator.schemas import AGENT_TURN_SCHEMA


TURN_JSON = json.dumps(
    {
        "actions": [
            {"type": "status", "message": "Checking"},
            {"type": "run_command", "command": "claude", "args": ["--version"]},
        ],
        "done": False,
    }
)


def _proc(stdout: str = TURN_JSON, stderr: str = "", returncode: int = 0) -> MagicMock:
    proc = MagicMock()
    proc.communicate = AsyncMock(return_value=(stdout.encode(), stderr.encode()))
    proc.returncode = returncode
    proc.wait = AsyncMock(return_value=returncode)
    return proc


def _client(**config) -> TurnClient:
    return TurnClient("SYSTEM", AgentConfig(binary="/opt/claude", **config))


# -------------------------
# Parsing
# -------------------------


class TestParseTurnResult:
    """Tests for parse_turn_result."""

    def test_plain_object(self):
        result = parse_turn_result(TURN_JSON)

        assert result.done is False
        assert isinstance(result.actions[0], StatusAction)
        assert isinstance(result.actions[1], RunCommandAction)
        assert result.actions[1].args == ["--version"]

    def test_structured_output_envelope(self):
        envelope = json.dumps({"type": "result", "structured_output": json.loads(TURN_JSON)})
        result = parse_turn_result(envelope)
        assert len(result.actions) == 2

    def test_invalid_json(self):
        with pytest.raises(ParseError, match="Raw: not json"):
            parse_turn_result("not json at all")

    def test_schema_mismatch(self):
        with pytest.raises(ParseError, match="turn schema"):
            parse_turn_result(json.dumps({"actions": [{"type": "format_disk"}], "done": False}))

    def test_missing_done(self):
        with pytest.raises(ParseError):
            parse_turn_result(json.dumps({"actions": []}))

    def test_snippet_is_bounded(self):
        with pytest.raises(ParseError) as exc_info:
            parse_turn_result("{" + "x" * 1000)
        assert len(exc_info.value.snippet) == 200


class TestSessionHandle:
    """Tests for scraping the continuation handle from stderr."""

    def test_session_prefix(self):
        assert scrape_session_handle("warming up\nSession: abc-123\n") == "abc-123"

    def test_session_id_prefix(self):
        assert scrape_session_handle("  session_id: xyz  ") == "xyz"

    def test_no_handle(self):
        assert scrape_session_handle("nothing useful here") is None
        assert scrape_session_handle("Session:   ") is None


class TestFindBinary:
    """Tests for locating the agent CLI."""

    def test_prefers_home_install(self, tmp_path):
        local = tmp_path / ".claude" / "local" / "claude"
        local.parent.mkdir(parents=True)
        local.write_text("#!/bin/sh\n")

        assert find_agent_binary(tmp_path) == str(local)

    def test_falls_back_to_path(self, tmp_path):
        with patch("agentwire.orchestrator.agent.shutil.which", return_value="/usr/bin/claude"):
            assert find_agent_binary(tmp_path) == "/usr/bin/claude"

    def test_bare_name_when_not_found(self, tmp_path):
        with patch("agentwire.orchestrator.agent.shutil.which", return_value=None):
            assert find_agent_binary(tmp_path) == "claude"


# -------------------------
# TurnClient
# -------------------------


class TestTurnClient:
    """Tests for TurnClient."""

    def test_first_prompt_carries_briefing(self):
        client = _client()
        assert client.build_prompt("Begin.") == "SYSTEM\n\n---\n\nBegin."

        client.turns_sent = 1
        assert client.build_prompt("Next.") == "Next."

    def test_build_command(self):
        client = _client(model="m-1", allowed_tools=("Read", "Bash"))
        cmd = client.build_command("PROMPT", AGENT_TURN_SCHEMA)

        assert cmd[0] == "/opt/claude"
        assert cmd[1] == "-p"
        assert cmd[cmd.index("--output-format") + 1] == "json"
        assert cmd[cmd.index("--model") + 1] == "m-1"
        assert cmd[cmd.index("--allowedTools") + 1] == "Read,Bash"
        assert cmd[cmd.index("--json-schema") + 1] == AGENT_TURN_SCHEMA
        assert "--resume" not in cmd
        assert cmd[-1] == "PROMPT"

    @pytest.mark.asyncio
    async def test_send_turn_success_and_resume(self):
        client = _client()
        first = _proc(stderr="Session: handle-1\n")
        second = _proc()

        with patch(
            "agentwire.orchestrator.agent.asyncio.create_subprocess_exec",
            new=AsyncMock(side_effect=[first, second]),
        ) as spawn:
            result = await client.send_turn("Begin.")
            await client.send_turn("Continue.")

        assert len(result.actions) == 2
        assert client.session_handle == "handle-1"
        assert client.turns_sent == 2

        first_argv = spawn.call_args_list[0].args
        second_argv = spawn.call_args_list[1].args
        assert first_argv[-1] == "SYSTEM\n\n---\n\nBegin."
        assert "--resume" not in first_argv
        assert second_argv[-1] == "Continue."
        assert second_argv[list(second_argv).index("--resume") + 1] == "handle-1"

    @pytest.mark.asyncio
    async def test_briefing_not_resent_without_handle(self):
        """Test that the briefing goes out once even if no handle was seen."""
        client = _client()

        with patch(
            "agentwire.orchestrator.agent.asyncio.create_subprocess_exec",
            new=AsyncMock(side_effect=[_proc(), _proc()]),
        ) as spawn:
            await client.send_turn("Begin.")
            await client.send_turn("Continue.")

        assert client.session_handle is None
        assert spawn.call_args_list[1].args[-1] == "Continue."

    @pytest.mark.asyncio
    async def test_nonzero_exit(self):
        client = _client()
        with patch(
            "agentwire.orchestrator.agent.asyncio.create_subprocess_exec",
            new=AsyncMock(return_value=_proc(stdout="", stderr="auth required", returncode=1)),
        ):
            with pytest.raises(TransportError, match=r"exit 1\): auth required"):
                await client.send_turn("Begin.")

    @pytest.mark.asyncio
    async def test_spawn_failure(self):
        client = _client()
        with patch(
            "agentwire.orchestrator.agent.asyncio.create_subprocess_exec",
            new=AsyncMock(side_effect=FileNotFoundError("no such file")),
        ):
            with pytest.raises(TransportError, match="Failed to spawn /opt/claude"):
                await client.send_turn("Begin.")

    @pytest.mark.asyncio
    async def test_garbage_output(self):
        client = _client()
        with patch(
            "agentwire.orchestrator.agent.asyncio.create_subprocess_exec",
            new=AsyncMock(return_value=_proc(stdout="I think you should...")),
        ):
            with pytest.raises(ParseError):
                await client.send_turn("Begin.")

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self, tmp_path):
        logger = ObservabilityLogger(tmp_path / "logs.db")
        client = TurnClient("SYSTEM", AgentConfig(binary="/opt/claude", timeout=0.05), logger=logger)

        async def hang():
            await asyncio.sleep(10)

        proc = _proc()
        proc.communicate = hang

        with patch(
            "agentwire.orchestrator.agent.asyncio.create_subprocess_exec",
            new=AsyncMock(return_value=proc),
        ):
            with pytest.raises(TurnTimeout):
                await client.send_turn("Begin.")

        proc.kill.assert_called_once()
        assert [e.phase for e in logger.get_session()] == ["cli_timeout"]

    @pytest.mark.asyncio
    async def test_raw_output_logged(self, tmp_path):
        logger = ObservabilityLogger(tmp_path / "logs.db")
        client = TurnClient("SYSTEM", AgentConfig(binary="/opt/claude"), logger=logger)

        with patch(
            "agentwire.orchestrator.agent.asyncio.create_subprocess_exec",
            new=AsyncMock(return_value=_proc(stderr="Session: s")),
        ):
            await client.send_turn("Begin.")

        entries = logger.get_session()
        assert entries[0].phase == "cli_raw"
        assert entries[0].data["stderr"] == "Session: s"
        assert entries[0].data["exit_code"] == 0
