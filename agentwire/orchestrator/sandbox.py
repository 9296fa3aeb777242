"""
ActionSandbox - least-privilege execution of agent actions.

Commands must literally match an allowlisted executable name and are run
without a shell. Writes must resolve (after ~ expansion, symlinks and ..)
to a path under one of the allowlisted home-relative prefixes. Both
allowlists come from the frozen config and cannot be changed by actions.
"""

import asyncio
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional, Sequence

from agentwire.core.audit import log_audit, log_error
from agentwire.core.config import SetupConfig
from agentwire.core.errors import ExternalToolFailure, PersistenceError, SandboxViolation
from agentwire.core.memory import MemoryGraph
from agentwire.core.observability import ObservabilityLogger
from agentwire.orchestrator import sync
from agentwire.orchestrator.actions import MemoryEdgeSpec


@dataclass
class CommandResult:
    stdout: str
    stderr: str
    exit_code: int


@dataclass
class IntegrationOutcome:
    """Result of a test_integration run."""

    success: bool
    output: str
    """stdout on success, stderr on failure"""

    exit_code: int


class ActionSandbox:
    """Validates and executes the side effects of agent actions.

    Usage:
        sandbox = ActionSandbox(config, memory)
        result = await sandbox.run_command("claude", ["--version"])
        path = sandbox.write_config("~/.config/agentwire/models/x.toml", "...")
    """

    def __init__(
        self,
        config: SetupConfig,
        memory: Optional[MemoryGraph] = None,
        logger: Optional[ObservabilityLogger] = None,
    ):
        self.config = config
        self.memory = memory
        self.logger = logger

    @property
    def allowed_commands(self) -> Sequence[str]:
        return self.config.sandbox.allowed_commands

    @property
    def allowed_write_prefixes(self) -> Sequence[str]:
        return self.config.sandbox.allowed_write_prefixes

    def _record(self, decision: str, kind: str, target: str, reason: Optional[str] = None) -> None:
        if self.logger:
            self.logger.log_sandbox(decision, kind, target, reason)
        details = {"kind": kind, "target": target}
        if reason:
            details["reason"] = reason
        log_audit("sandbox", decision, details)

    # Commands

    def check_command(self, command: str) -> None:
        """Raise SandboxViolation unless command is an allowlisted name."""
        if command not in self.allowed_commands:
            self._record("deny", "command", command, "not allowlisted")
            raise SandboxViolation(f"Command '{command}' is not in the allowlist")
        self._record("allow", "command", command)

    async def run_command(self, command: str, args: Sequence[str]) -> CommandResult:
        """Run an allowlisted command and capture its output.

        There is no timeout; a running command is not interrupted.

        Raises:
            SandboxViolation: Command not allowlisted (nothing is spawned)
            ExternalToolFailure: Command could not be executed
        """
        self.check_command(command)

        try:
            proc = await asyncio.create_subprocess_exec(
                command,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (OSError, ValueError) as e:
            raise ExternalToolFailure(f"Failed to execute '{command}': {e}") from e

        stdout_b, stderr_b = await proc.communicate()
        exit_code = proc.returncode if proc.returncode is not None else -1

        log_audit("sandbox", "exec", {"command": command, "args": list(args), "exit_code": exit_code})
        return CommandResult(
            stdout=stdout_b.decode("utf-8", errors="replace"),
            stderr=stderr_b.decode("utf-8", errors="replace"),
            exit_code=exit_code,
        )

    async def test_integration(
        self, model_name: str, command: str, args: Sequence[str]
    ) -> IntegrationOutcome:
        """Run a model's test command; exit code 0 is a pass."""
        result = await self.run_command(command, args)
        success = result.exit_code == 0
        return IntegrationOutcome(
            success=success,
            output=result.stdout if success else result.stderr,
            exit_code=result.exit_code,
        )

    # Files

    def resolve_write_path(self, path: str) -> Path:
        """Expand and normalize a write target, enforcing the path allowlist.

        Raises:
            SandboxViolation: If the path resolves outside every allowed
                prefix, inside the state directory, or is not a valid path
        """
        home = self.config.home.resolve()

        if path == "~":
            expanded = home
        elif path.startswith("~/"):
            expanded = home / path[2:]
        else:
            expanded = Path(path)

        if not expanded.is_absolute():
            self._record("deny", "path", path, "relative path")
            raise SandboxViolation(f"Write path '{path}' must be absolute or start with ~/")

        try:
            if "\x00" in path:
                raise ValueError("embedded null byte")
            resolved = expanded.resolve()
            state_dir = self.config.state_dir.resolve()
        except (ValueError, OSError) as e:
            self._record("deny", "path", repr(path), "invalid path")
            raise SandboxViolation(f"Write path {path!r} is invalid: {e}") from e

        if resolved == state_dir or resolved.is_relative_to(state_dir):
            self._record("deny", "path", str(resolved), "inside state directory")
            raise SandboxViolation(f"Write path '{resolved}' is inside the agentwire state directory")

        for prefix in self.allowed_write_prefixes:
            root = (home / prefix).resolve()
            if resolved != root and resolved.is_relative_to(root):
                self._record("allow", "path", str(resolved))
                return resolved

        self._record("deny", "path", str(resolved), "outside allowed directories")
        raise SandboxViolation(f"Write path '{resolved}' is not in allowed directories")

    def write_config(self, path: str, content: str) -> Path:
        """Write content to an allowlisted path, creating parent directories.

        Returns:
            The resolved path written

        Raises:
            SandboxViolation: Path outside the allowlist
            ExternalToolFailure: The file could not be written
        """
        target = self.resolve_write_path(path)
        try:
            data = content.encode("utf-8")
        except UnicodeError as e:
            raise ExternalToolFailure(f"Config content is not valid UTF-8: {e}") from e
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except (OSError, ValueError) as e:
            raise ExternalToolFailure(f"Failed to write file: {e}") from e

        log_audit("sandbox", "write", {"path": str(target), "bytes": len(data)})
        return target

    # Extensions

    def sync_skill(self, source_tool: str, target_tool: str, skill_name: str) -> Path:
        return sync.copy_skill(source_tool, target_tool, skill_name, self.config)

    def sync_mcp(self, target_tool: str, mcp_name: str, config_json: str) -> Path:
        return sync.install_mcp(target_tool, mcp_name, config_json, self.config)

    # Memory

    def update_memory(
        self,
        node_type: str,
        label: str,
        data: Any,
        edges: List[MemoryEdgeSpec],
    ) -> str:
        """Upsert '<node_type>:<label>' and its outgoing edges.

        Best-effort: persistence errors are logged and swallowed.

        Returns:
            The node id
        """
        node_id = f"{node_type}:{label}"
        if self.memory is None:
            return node_id

        if isinstance(data, str):
            try:
                data = json.loads(data)
            except json.JSONDecodeError:
                pass

        try:
            self.memory.upsert_node(node_id, node_type, label, data)
            for edge in edges:
                target_id = f"{edge.target_type or node_type}:{edge.target_label}"
                self.memory.add_edge(node_id, target_id, edge.edge_type)
        except PersistenceError as e:
            log_error(e, {"stage": "update_memory", "node_id": node_id})
            if self.logger:
                self.logger.log_error(
                    "PersistenceError",
                    details={"node_id": node_id, "message": str(e)},
                    resolution="ignored",
                )
            return node_id

        log_audit("memory", "upsert", {"node_id": node_id, "edges": len(edges)})
        return node_id
