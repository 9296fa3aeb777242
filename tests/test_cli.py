"""Tests for the agentwire command line."""

import json
from unittest.mock import patch

import pytest
import yaml
from click.testing import CliRunner

from agentwire import __version__
from agentwire.cli.main import cli
from agentwire.core.config import load_config
from agentwire.core.memory import MemoryGraph
from agentwire.core.observability import ObservabilityLogger

from conftest import TEST_COMMANDS, FakeDetector, ScriptedAgent, turn


COMPLETE = {"type": "complete", "summary": "All set", "items": ["claude-sonnet"]}


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def config_file(tmp_path, home):
    """YAML config rooting all state in the temporary home."""
    path = tmp_path / "agentwire.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "home_dir": str(home),
                "sandbox": {"allowed_commands": list(TEST_COMMANDS)},
            }
        )
    )
    return path


def _scripted_client(*script):
    """Stand-in for TurnClient that replays script."""
    agent = ScriptedAgent(script)

    def factory(system_prompt, agent_config, **kwargs):
        return agent.factory(system_prompt)

    return agent, factory


class TestBasics:
    """Tests for the command group."""

    def test_version(self, runner):
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_bad_config_reports_errors(self, runner, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("agent:\n  max_turns: 0\n")

        result = runner.invoke(cli, ["detect", "--config", str(path)])

        assert result.exit_code == 1
        assert "Configuration errors" in result.output
        assert "max_turns" in result.output


class TestDetect:
    """Tests for the detect command."""

    def test_human_output(self, runner, config_file):
        with patch("agentwire.cli.main.default_detector", return_value=FakeDetector({"claude"})):
            result = runner.invoke(cli, ["detect", "--config", str(config_file)])

        assert result.exit_code == 0
        assert "OS: linux (x86_64)" in result.output
        assert "1.0.0  [not authenticated]" in result.output
        assert "codex" in result.output and "not installed" in result.output

    def test_json_output(self, runner, config_file):
        with patch("agentwire.cli.main.default_detector", return_value=FakeDetector({"codex"})):
            result = runner.invoke(cli, ["detect", "--config", str(config_file), "--json"])

        report = json.loads(result.output)
        installed = [t["name"] for t in report["tools"] if t["installed"]]
        assert installed == ["codex"]


class TestStateCommands:
    """Tests for memory, sessions, extensions and log."""

    def test_memory_dump(self, runner, config_file):
        graph = MemoryGraph(load_config(config_file).memory_db_path)
        graph.upsert_node("cli:claude", "cli", "claude", {"installed": True})
        graph.upsert_node("model:sonnet", "model", "sonnet")

        result = runner.invoke(cli, ["memory", "--config", str(config_file), "--type", "cli"])

        assert result.exit_code == 0
        nodes = json.loads(result.output)["nodes"]
        assert [n["id"] for n in nodes] == ["cli:claude"]

    def test_sessions(self, runner, config_file):
        graph = MemoryGraph(load_config(config_file).memory_db_path)
        graph.create_session("s-1")
        graph.record_turn("s-1", 1, "Analyze the system state and begin setup.", "1 actions processed", "[]")
        graph.end_session("s-1", "success")

        listing = runner.invoke(cli, ["sessions", "--config", str(config_file)])
        detail = runner.invoke(cli, ["sessions", "s-1", "--config", str(config_file)])
        missing = runner.invoke(cli, ["sessions", "nope", "--config", str(config_file)])

        assert "s-1" in listing.output and "success" in listing.output
        assert "Turn 1" in detail.output
        assert missing.exit_code == 1

    def test_no_sessions(self, runner, config_file):
        result = runner.invoke(cli, ["sessions", "--config", str(config_file)])
        assert "No sessions recorded yet." in result.output

    def test_extensions(self, runner, config_file, home):
        (home / ".claude" / "skills" / "review").mkdir(parents=True)
        (home / ".codex").mkdir()
        (home / ".codex" / "config.toml").write_text('[mcp.fs]\ncommand = "npx"\n')

        result = runner.invoke(cli, ["extensions", "--config", str(config_file), "--json"])

        assert result.exit_code == 0
        found = {(e["kind"], e["name"]): e["installed_in"] for e in json.loads(result.output)}
        assert found == {("skill", "review"): ["claude"], ("mcp", "fs"): ["codex"]}

    def test_log_summary(self, runner, config_file):
        cfg = load_config(config_file)

        empty = runner.invoke(cli, ["log", "summary", "--config", str(config_file)])
        assert "No logs.db found" in empty.output

        logger = ObservabilityLogger(cfg.logs_db_path, session_id="s-9")
        logger.log_turn(1, 10, ["status"], True)

        result = runner.invoke(cli, ["log", "summary", "--config", str(config_file)])
        summary = json.loads(result.output)
        assert summary["session_id"] == "s-9"
        assert summary["turns"] == 1


class TestSetup:
    """Tests for the interactive setup command."""

    def test_setup_success(self, runner, config_file):
        agent, factory = _scripted_client(turn(COMPLETE))

        with patch("agentwire.orchestrator.manager.default_detector", return_value=FakeDetector({"claude"})), \
             patch("agentwire.orchestrator.runner.TurnClient", side_effect=factory):
            result = runner.invoke(cli, ["setup", "--config", str(config_file)])

        assert result.exit_code == 0, result.output
        assert "Detecting installed CLIs..." in result.output
        assert "Outcome: success" in result.output
        assert agent.messages == ["Analyze the system state and begin setup."]

    def test_setup_answers_prompt(self, runner, config_file):
        confirm = {
            "type": "ask_user",
            "action": {"type": "confirm", "title": "Sync", "message": "Sync skills?", "confirm_id": "c1"},
        }
        agent, factory = _scripted_client(turn(confirm), turn(COMPLETE))

        with patch("agentwire.orchestrator.manager.default_detector", return_value=FakeDetector({"claude"})), \
             patch("agentwire.orchestrator.runner.TurnClient", side_effect=factory):
            result = runner.invoke(cli, ["setup", "--config", str(config_file)], input="y\n")

        assert result.exit_code == 0, result.output
        assert "Sync skills?" in result.output
        assert '"confirmed":true' in agent.messages[1]

    def test_setup_turn_budget(self, runner, config_file):
        agent, factory = _scripted_client()

        with patch("agentwire.orchestrator.manager.default_detector", return_value=FakeDetector({"claude"})), \
             patch("agentwire.orchestrator.runner.TurnClient", side_effect=factory):
            result = runner.invoke(cli, ["setup", "--config", str(config_file), "--max-turns", "2"])

        assert result.exit_code == 1
        assert "Outcome: max_turns_exceeded" in result.output
        assert len(agent.messages) == 2
