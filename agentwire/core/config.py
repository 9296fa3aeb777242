"""
Configuration system for agentwire.

Loads YAML configuration files and provides typed access to settings.
Uses Pydantic v2 for validation and immutable config objects, so the
sandbox allowlists cannot be changed once a session has started.

Configuration Hierarchy (highest priority first):
1. CLI arguments (passed to load_config)
2. Environment variables (AGENTWIRE_*)
3. YAML configuration file
4. Pydantic field defaults
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator


APP_NAME = "agentwire"

DEFAULT_ALLOWED_COMMANDS: Tuple[str, ...] = (
    "which",
    "type",
    "claude",
    "codex",
    "opencode",
    "gemini",
    "npm",
    "npx",
    "curl",
    "bash",
)

DEFAULT_WRITE_PREFIXES: Tuple[str, ...] = (
    f".config/{APP_NAME}/",
    ".local/bin/",
)

DEFAULT_CONTEXT_NODE_TYPES: Tuple[str, ...] = (
    "cli",
    "model",
    "provider",
    "wrapper",
    "skill",
    "mcp",
    "preference",
)


class AgentConfig(BaseModel):
    """Configuration for the external reasoning step."""

    model_config = ConfigDict(frozen=True)

    binary: Optional[str] = Field(default=None, description="Agent CLI path (auto-detected if unset)")
    model: str = Field(default="claude-sonnet-4-6", description="Model passed to --model")
    allowed_tools: Tuple[str, ...] = Field(
        default=("Read", "Bash", "Glob", "Grep"),
        description="Tools the agent CLI may use while reasoning",
    )
    timeout: float = Field(default=120, gt=0, description="Per-turn timeout in seconds")
    max_turns: int = Field(default=25, gt=0, description="Turn budget per session")
    required_tool: str = Field(default="claude", description="Tool that must exist before a full setup")


class SandboxConfig(BaseModel):
    """Allowlists bounding what actions may do."""

    model_config = ConfigDict(frozen=True)

    allowed_commands: Tuple[str, ...] = Field(
        default=DEFAULT_ALLOWED_COMMANDS,
        description="Executable names actions may run",
    )
    allowed_write_prefixes: Tuple[str, ...] = Field(
        default=DEFAULT_WRITE_PREFIXES,
        description="Home-relative directories write_config may write under",
    )

    @field_validator("allowed_commands")
    @classmethod
    def validate_commands(cls, v: Tuple[str, ...]) -> Tuple[str, ...]:
        bad = [c for c in v if not c or "/" in c or " " in c]
        if bad:
            raise ValueError(f"Commands must be bare executable names: {bad}")
        return v

    @field_validator("allowed_write_prefixes")
    @classmethod
    def validate_prefixes(cls, v: Tuple[str, ...]) -> Tuple[str, ...]:
        for prefix in v:
            if prefix.startswith(("/", "~")) or not prefix.endswith("/"):
                raise ValueError(
                    f"Write prefix '{prefix}' must be home-relative and end with '/'"
                )
            if ".." in Path(prefix).parts:
                raise ValueError(f"Write prefix '{prefix}' must not contain '..'")
        return v


class ToolPathsConfig(BaseModel):
    """Home-relative locations of a tool's extension artifacts."""

    model_config = ConfigDict(frozen=True)

    skills_dir: Optional[str] = Field(default=None, description="Directory holding skill folders")
    mcp_config: Optional[str] = Field(default=None, description="File holding MCP server entries")


def _default_tools() -> Dict[str, ToolPathsConfig]:
    return {
        "claude": ToolPathsConfig(skills_dir=".claude/skills", mcp_config=".claude/.claude.json"),
        "codex": ToolPathsConfig(skills_dir=".codex/skills", mcp_config=".codex/config.toml"),
        "opencode": ToolPathsConfig(mcp_config=".opencode/config.json"),
        "gemini": ToolPathsConfig(),
    }


class SetupConfig(BaseModel):
    """Central configuration object for agentwire."""

    model_config = ConfigDict(frozen=True)

    home_dir: Optional[Path] = Field(default=None, description="Home directory override")
    data_dir: Optional[Path] = Field(default=None, description="State directory (default ~/.local/share/agentwire)")

    agent: AgentConfig = Field(default_factory=AgentConfig)
    sandbox: SandboxConfig = Field(default_factory=SandboxConfig)
    tools: Dict[str, ToolPathsConfig] = Field(default_factory=_default_tools)

    context_node_types: Tuple[str, ...] = Field(
        default=DEFAULT_CONTEXT_NODE_TYPES,
        description="Memory node types included in the agent briefing",
    )
    audit_retention_days: int = Field(default=30, ge=0, description="Days of audit log to keep (0 = forever)")
    track_versions: bool = Field(default=True, description="Record tool versions across detections")

    @property
    def home(self) -> Path:
        return Path(self.home_dir).expanduser() if self.home_dir else Path.home()

    @property
    def state_dir(self) -> Path:
        if self.data_dir:
            return Path(self.data_dir).expanduser()
        return self.home / ".local" / "share" / APP_NAME

    @property
    def memory_db_path(self) -> Path:
        return self.state_dir / "state.db"

    @property
    def logs_db_path(self) -> Path:
        return self.state_dir / "logs.db"

    @property
    def audit_dir(self) -> Path:
        return self.state_dir / "audit"

    @classmethod
    def from_yaml(cls, path: Path) -> "SetupConfig":
        """Load configuration from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls.from_dict(data, base_path=path.parent)

    @classmethod
    def from_dict(cls, data: dict, base_path: Optional[Path] = None) -> "SetupConfig":
        """Create from dictionary, resolving relative paths against base_path."""
        base_path = base_path or Path(".")
        data = dict(data)

        for key in ("home_dir", "data_dir"):
            value = data.get(key)
            if value and not Path(str(value)).expanduser().is_absolute():
                data[key] = base_path / str(value)

        # Tool entries in YAML extend the defaults instead of replacing them
        if "tools" in data:
            tools = {name: tp.model_dump() for name, tp in _default_tools().items()}
            for name, paths in (data["tools"] or {}).items():
                tools[name] = {**tools.get(name, {}), **(paths or {})}
            data["tools"] = tools

        return cls.model_validate(data)

    def tool_paths(self, tool: str) -> ToolPathsConfig:
        """Paths for a tool; unknown tools have none."""
        return self.tools.get(tool, ToolPathsConfig())


def load_config(
    path: Optional[Path] = None,
    env_prefix: str = "AGENTWIRE_",
    cli_overrides: Optional[Dict[str, Any]] = None,
    use_env: bool = True,
) -> SetupConfig:
    """Load configuration with hierarchy: defaults → YAML → env vars → CLI args.

    Args:
        path: Optional explicit path to YAML config file
        env_prefix: Prefix for environment variables (default: "AGENTWIRE_")
        cli_overrides: Optional dictionary of CLI argument overrides
        use_env: Whether to load environment variables (default: True)

    Returns:
        Merged SetupConfig

    Examples:
        # Environment variable: AGENTWIRE_AGENT_MAX_TURNS=10
        config = load_config()  # agent.max_turns will be 10

        config = load_config(cli_overrides={"agent": {"timeout": 60}})
    """
    yaml_path = _find_config_file(path)
    base_path = yaml_path.parent if yaml_path else Path(".")

    if yaml_path:
        with open(yaml_path) as f:
            config_dict = yaml.safe_load(f) or {}
    else:
        config_dict = {}

    if use_env:
        _deep_merge(config_dict, _extract_env_config(env_prefix))

    if cli_overrides:
        _deep_merge(config_dict, cli_overrides)

    if not config_dict:
        return SetupConfig()

    return SetupConfig.from_dict(config_dict, base_path=base_path)


def _find_config_file(path: Optional[Path] = None) -> Optional[Path]:
    """Find configuration file.

    Searches in this order:
    1. Provided path
    2. ./agentwire.yaml
    3. ./config.yaml

    Returns:
        Path to config file or None if not found
    """
    if path and Path(path).exists():
        return Path(path)

    for filename in ["agentwire.yaml", "config.yaml"]:
        config_path = Path(filename)
        if config_path.exists():
            return config_path

    return None


def _extract_env_config(prefix: str = "AGENTWIRE_") -> Dict[str, Any]:
    """Extract configuration from environment variables.

    - AGENTWIRE_AGENT_MAX_TURNS=10 → {"agent": {"max_turns": 10}}
    - AGENTWIRE_SANDBOX_ALLOWED_COMMANDS=which,claude → {"sandbox": {"allowed_commands": [...]}}
    - AGENTWIRE_HOME_DIR=/tmp/h → {"home_dir": "/tmp/h"}
    """
    config: Dict[str, Any] = {}
    sections = {"agent", "sandbox"}

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        config_key = key[len(prefix):].lower()
        if not config_key:
            continue

        converted_value = _convert_env_value(value)
        parts = config_key.split("_")

        if parts[0] in sections and len(parts) > 1:
            section = parts[0]
            config.setdefault(section, {})["_".join(parts[1:])] = converted_value
        else:
            config[config_key] = converted_value

    return config


def _convert_env_value(value: str) -> Union[str, int, float, bool, List[str]]:
    """Convert environment variable string to appropriate type.

    Numbers become int/float, true/false/yes/no/on/off become booleans,
    comma-separated values become lists, everything else stays a string.
    """
    if not value:
        return value

    if value.lower() in ("true", "yes", "on"):
        return True
    if value.lower() in ("false", "no", "off"):
        return False

    if "," in value:
        return [v.strip() for v in value.split(",") if v.strip()]

    try:
        return int(value)
    except ValueError:
        pass

    try:
        return float(value)
    except ValueError:
        pass

    return value


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> None:
    """Deep merge override into base dictionary (mutates base).

    Nested dicts merge recursively; any other value replaces the base value.
    """
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
