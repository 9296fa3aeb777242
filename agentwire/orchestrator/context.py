"""
Context builder for the setup agent.

Merges a detection report with the relevant slice of the memory graph and
renders the briefing the agent CLI receives on the first turn of a session.
"""

from dataclasses import dataclass
from typing import Optional, Sequence

from agentwire.core.audit import log_error
from agentwire.core.config import APP_NAME, DEFAULT_CONTEXT_NODE_TYPES, SetupConfig
from agentwire.core.detection import DetectionReport
from agentwire.core.errors import PersistenceError
from agentwire.core.memory import MemoryGraph


@dataclass
class AgentContext:
    """Serialized system state handed to the agent."""

    detection_json: str
    """Detection report as pretty JSON"""

    memory_json: str
    """Memory subgraph as pretty JSON, "{}" when unavailable"""


def build_agent_context(
    report: DetectionReport,
    memory: Optional[MemoryGraph],
    node_types: Sequence[str] = DEFAULT_CONTEXT_NODE_TYPES,
) -> AgentContext:
    """Serialize the detection report and the memory subgraph of node_types.

    A memory graph that cannot be read yields "{}" rather than an error;
    the agent can still work from detection alone.
    """
    memory_json = "{}"
    if memory is not None:
        try:
            memory_json = memory.subgraph_for_context(node_types).to_json()
        except PersistenceError as e:
            log_error(e, {"stage": "build_agent_context"})

    return AgentContext(detection_json=report.to_json(), memory_json=memory_json)


def _capabilities(config: SetupConfig) -> str:
    commands = ", ".join(config.sandbox.allowed_commands)
    prefixes = " or ".join(f"~/{p}" for p in config.sandbox.allowed_write_prefixes)
    config_root = f"~/.config/{APP_NAME}"

    return f"""You communicate by returning a JSON object with an "actions" array and a "done" boolean. Each action is executed in order by the orchestrator. Available action types:

### status
Show a status message to the user.
```json
{{"type": "status", "message": "Detecting installed CLIs..."}}
```

### run_command
Run a command without a shell. Only these commands are allowed: {commands}.
```json
{{"type": "run_command", "command": "claude", "args": ["--version"], "description": "Checking Claude CLI version"}}
```

### write_config
Write a configuration file. Only paths under {prefixes} are allowed.
```json
{{"type": "write_config", "path": "{config_root}/models/claude-sonnet.toml", "content": "command = \\"claude\\"\\nargs = [\\"-p\\", \\"--model\\", \\"sonnet\\"]\\nprompt_mode = \\"stdin\\"", "description": "Creating Claude Sonnet model config"}}
```

### test_integration
Test a model integration by running an allowed command; exit code 0 is a pass.
```json
{{"type": "test_integration", "model_name": "claude-sonnet", "command": "claude", "args": ["-p", "say hello", "--model", "sonnet", "--output-format", "json"]}}
```

### ask_user
Pause and ask the user. Types: form, wizard, confirm, oauth_flow, api_key_entry, cli_selection.
```json
{{"type": "ask_user", "action": {{"type": "form", "title": "Configure Model", "form_id": "model-config", "fields": [{{"name": "model_name", "label": "Model Name", "field_type": "text", "required": true}}]}}}}
```

### sync_skill
Copy a skill directory from one CLI to another.
```json
{{"type": "sync_skill", "source_cli": "claude", "target_cli": "codex", "skill_name": "code-review"}}
```

### sync_mcp
Install an MCP server entry in a CLI's config. "config" is the server definition as JSON text.
```json
{{"type": "sync_mcp", "source_cli": "claude", "target_cli": "codex", "mcp_name": "firecrawl", "config": "{{\\"command\\": \\"npx\\", \\"args\\": [\\"firecrawl-mcp\\"]}}"}}
```

### update_memory
Remember something for future sessions. Edges point at "<target_type or node_type>:<target_label>".
```json
{{"type": "update_memory", "node_type": "cli", "label": "claude", "data": "{{\\"version\\": \\"1.0\\", \\"installed\\": true}}", "edges": [{{"target_label": "sonnet", "target_type": "model", "edge_type": "uses_model"}}]}}
```

### complete
Signal that setup is done. This ends the session immediately.
```json
{{"type": "complete", "summary": "Setup complete! Configured 3 models.", "items": ["claude-sonnet", "claude-opus", "codex-high"]}}
```"""


def _rules() -> str:
    config_root = f"~/.config/{APP_NAME}"
    return f"""## Rules

1. Always emit a "status" action before doing work so the user sees progress
2. Use "ask_user" when you need input; never assume
3. Use "update_memory" to remember what you've configured for future sessions
4. Use "test_integration" to verify configurations work before completing
5. Model configs are TOML files in {config_root}/models/
6. Model TOML format: command, args (array), prompt_mode ("stdin" or "arg"), optionally [[providers]] for multi-provider
7. Agent configs are Markdown files with YAML frontmatter in {config_root}/agents/
8. When setup is complete, emit a "complete" action"""


def build_system_prompt(context: AgentContext, config: SetupConfig) -> str:
    """Briefing for a full setup session."""
    return f"""You are the setup agent for {APP_NAME}. Your role is to detect, install, configure, and troubleshoot the CLI tools {APP_NAME} uses to route LLM prompts.

## Your Capabilities

{_capabilities(config)}

{_rules()}

## Current System State

### Detected CLIs
{context.detection_json}

### Memory Graph (from previous sessions)
{context.memory_json}

## Your Task

Analyze the system state above. For each detected CLI:
1. Verify it works (test with a simple command)
2. Check authentication status
3. Create model configurations
4. Discover and offer to sync skills/MCPs across CLIs
5. Test each configuration

If no CLIs are detected, guide the user to install at least one (recommend Claude CLI).
If CLIs are detected but not authenticated, guide the user through authentication.
"""


def build_tool_setup_prompt(tool: str, context: AgentContext, config: SetupConfig) -> str:
    """Briefing for a session that sets up a single named tool."""
    return f"""You are the setup agent for {APP_NAME}. The user wants to add the `{tool}` CLI. Help them install it, authenticate, create a model configuration, and test it.

## Your Capabilities

{_capabilities(config)}

{_rules()}

## Current System State

### CLI Detection
{context.detection_json}

### Memory Graph (from previous sessions)
{context.memory_json}

## Your Task

Focus on setting up the `{tool}` CLI:
1. Check if `{tool}` is installed; if not, guide the user through installation
2. Verify authentication; if not authenticated, guide through auth setup
3. Create model configuration(s) for this CLI
4. Test the configuration to ensure it works
5. Complete when the CLI is ready to use
"""


def install_instructions(os_type: str) -> str:
    """How to install and log in to the Claude CLI on this OS."""
    steps_after = (
        "2. After installation, run: claude login\n"
        "3. Complete the OAuth flow in your browser\n"
        "4. Confirm here when done"
    )
    if os_type == "linux":
        return (
            "To install Claude CLI:\n\n"
            "1. Run: curl -fsSL https://claude.ai/install.sh | bash\n" + steps_after
        )
    if os_type == "macos":
        return (
            "To install Claude CLI:\n\n"
            "1. Run: brew install claude\n"
            "   OR: curl -fsSL https://claude.ai/install.sh | bash\n" + steps_after
        )
    if os_type == "windows":
        return (
            "To install Claude CLI:\n\n"
            "1. Run in PowerShell: irm https://claude.ai/install.ps1 | iex\n" + steps_after
        )
    return (
        "Please visit https://claude.ai/download to install the Claude CLI "
        "for your platform.\n\nAfter installation, run: claude login"
    )
