"""Tests for ActionSandbox allowlists."""

import os

import pytest

from agentwire.core.config import SetupConfig
from agentwire.core.errors import ExternalToolFailure, SandboxViolation
from agentwire.core.memory import MemoryGraph
from agentwire.core.observability import ObservabilityLogger
from agentwire.orchestrator.actions import MemoryEdgeSpec
from agentwire.orchestrator.sandbox import ActionSandbox


@pytest.fixture
def sandbox(config, memory):
    return ActionSandbox(config, memory)


class TestCommands:
    """Tests for the command allowlist."""

    def test_check_allowed(self, sandbox):
        sandbox.check_command("echo")

    @pytest.mark.parametrize("command", ["rm", "/bin/echo", "echo; rm", "ECHO", ""])
    def test_check_rejected(self, sandbox, command):
        """Test that only literal allowlisted names pass."""
        with pytest.raises(SandboxViolation, match="not in the allowlist"):
            sandbox.check_command(command)

    @pytest.mark.asyncio
    async def test_run_captures_output(self, sandbox):
        result = await sandbox.run_command("echo", ["a", "b"])

        assert result.stdout == "a b\n"
        assert result.stderr == ""
        assert result.exit_code == 0

    @pytest.mark.asyncio
    async def test_args_are_not_shell_interpreted(self, sandbox, home):
        target = home / "created"
        result = await sandbox.run_command("echo", [f"$(touch {target})"])

        assert not target.exists()
        assert "$(touch" in result.stdout

    @pytest.mark.asyncio
    async def test_nonzero_exit_is_a_result(self, sandbox):
        result = await sandbox.run_command("false", [])
        assert result.exit_code == 1

    @pytest.mark.asyncio
    async def test_rejected_command_never_spawns(self, sandbox, home):
        victim = home / "keep.txt"
        victim.write_text("data")

        with pytest.raises(SandboxViolation):
            await sandbox.run_command("rm", [str(victim)])
        assert victim.exists()

    @pytest.mark.asyncio
    async def test_null_byte_argument_is_tool_failure(self, sandbox):
        with pytest.raises(ExternalToolFailure, match="Failed to execute 'echo'"):
            await sandbox.run_command("echo", ["a\x00b"])

    @pytest.mark.asyncio
    async def test_allowlisted_but_missing_binary(self, home, memory):
        from agentwire.core.config import SetupConfig

        cfg = SetupConfig.from_dict(
            {"home_dir": str(home), "sandbox": {"allowed_commands": ["definitely-not-installed-xyz"]}}
        )
        sandbox = ActionSandbox(cfg, memory)

        with pytest.raises(ExternalToolFailure, match="Failed to execute"):
            await sandbox.run_command("definitely-not-installed-xyz", [])

    @pytest.mark.asyncio
    async def test_integration_output_selection(self, sandbox):
        passed = await sandbox.test_integration("m", "sh", ["-c", "echo ok; echo bad >&2"])
        failed = await sandbox.test_integration("m", "sh", ["-c", "echo ok; echo bad >&2; exit 3"])

        assert (passed.success, passed.output, passed.exit_code) == (True, "ok\n", 0)
        assert (failed.success, failed.output, failed.exit_code) == (False, "bad\n", 3)


class TestWritePaths:
    """Tests for the write path allowlist."""

    def test_tilde_path_allowed(self, sandbox, home):
        written = sandbox.write_config("~/.config/agentwire/models/x.toml", "C")

        assert written == (home / ".config" / "agentwire" / "models" / "x.toml").resolve()
        assert written.read_text() == "C"

    def test_absolute_path_under_home_allowed(self, sandbox, home):
        path = home / ".local" / "bin" / "wrapper"
        written = sandbox.write_config(str(path), "#!/bin/sh\n")
        assert written.read_text() == "#!/bin/sh\n"

    def test_system_file_rejected(self, sandbox):
        with pytest.raises(SandboxViolation, match="not in allowed directories"):
            sandbox.write_config("/etc/passwd", "x")

    def test_dotdot_escape_rejected(self, sandbox, home):
        with pytest.raises(SandboxViolation):
            sandbox.write_config("~/.config/agentwire/../../.bashrc", "x")
        assert not (home / ".bashrc").exists()

    def test_prefix_sibling_rejected(self, sandbox):
        """Test that a directory merely sharing the prefix string is not allowed."""
        with pytest.raises(SandboxViolation):
            sandbox.write_config("~/.config/agentwire-evil/x", "x")

    def test_prefix_root_itself_rejected(self, sandbox):
        with pytest.raises(SandboxViolation):
            sandbox.write_config("~/.config/agentwire", "x")

    def test_relative_path_rejected(self, sandbox):
        with pytest.raises(SandboxViolation, match="must be absolute"):
            sandbox.write_config(".config/agentwire/x", "x")

    def test_symlink_escape_rejected(self, sandbox, home, tmp_path):
        outside = tmp_path / "outside"
        outside.mkdir()
        allowed = home / ".config" / "agentwire"
        allowed.mkdir(parents=True, exist_ok=True)
        os.symlink(outside, allowed / "link")

        with pytest.raises(SandboxViolation):
            sandbox.write_config("~/.config/agentwire/link/x.toml", "x")
        assert not (outside / "x.toml").exists()

    def test_null_byte_path_rejected(self, sandbox, home):
        with pytest.raises(SandboxViolation, match="is invalid"):
            sandbox.write_config("~/.config/agentwire/x\x00.toml", "x")

    def test_unencodable_content_is_tool_failure(self, sandbox, home):
        with pytest.raises(ExternalToolFailure, match="not valid UTF-8"):
            sandbox.write_config("~/.config/agentwire/x.toml", "\ud800")
        assert not (home / ".config" / "agentwire" / "x.toml").exists()

    def test_state_directory_rejected(self, sandbox):
        with pytest.raises(SandboxViolation, match="state directory"):
            sandbox.write_config("~/.local/share/agentwire/state.db", "x")

    def test_state_directory_under_write_prefix_rejected(self, home):
        """Test that a data_dir inside an allowed prefix is still protected."""
        cfg = SetupConfig.from_dict(
            {"home_dir": str(home), "data_dir": str(home / ".config" / "agentwire" / "state")}
        )
        graph = MemoryGraph(cfg.memory_db_path)
        graph.upsert_node("cli:claude", "cli", "claude")
        sandbox = ActionSandbox(cfg, graph)

        with pytest.raises(SandboxViolation, match="state directory"):
            sandbox.write_config("~/.config/agentwire/state/state.db", "garbage")
        with pytest.raises(SandboxViolation, match="state directory"):
            sandbox.write_config("~/.config/agentwire/state/state.db-wal", "garbage")

        assert graph.get_node("cli:claude").label == "claude"

    def test_decisions_are_logged(self, config, memory, tmp_path):
        logger = ObservabilityLogger(tmp_path / "logs.db")
        sandbox = ActionSandbox(config, memory, logger)

        sandbox.check_command("echo")
        with pytest.raises(SandboxViolation):
            sandbox.check_command("rm")

        decisions = [(e.data["decision"], e.data["target"]) for e in logger.get_session()]
        assert decisions == [("allow", "echo"), ("deny", "rm")]


class TestUpdateMemory:
    """Tests for memory updates from actions."""

    def test_json_string_data_parsed(self, sandbox, memory):
        node_id = sandbox.update_memory("model", "sonnet", '{"cli": "claude"}', [])

        assert node_id == "model:sonnet"
        assert memory.get_node("model:sonnet").data == {"cli": "claude"}

    def test_non_json_string_kept(self, sandbox, memory):
        sandbox.update_memory("preference", "tone", "be brief", [])
        assert memory.get_node("preference:tone").data == "be brief"

    def test_edges_default_to_same_type(self, sandbox, memory):
        sandbox.update_memory(
            "model",
            "sonnet",
            None,
            [
                MemoryEdgeSpec(target_label="haiku", edge_type="fallback"),
                MemoryEdgeSpec(target_label="claude", edge_type="uses", target_type="cli"),
            ],
        )

        targets = sorted(e.target_id for e in memory.snapshot().edges)
        assert targets == ["cli:claude", "model:haiku"]

    def test_without_memory(self, config):
        sandbox = ActionSandbox(config, None)
        assert sandbox.update_memory("cli", "claude", None, []) == "cli:claude"
