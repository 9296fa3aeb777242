"""
Cross-tool extension sync.

Skills are directories under a tool's skills dir and are copied verbatim.
MCP servers are named entries in a tool's config file: a JSON file keeps
them under "mcpServers", a TOML file under an [mcp] table. Writes keep
everything else in the file as it was.
"""

import json
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import tomlkit
from tomlkit.exceptions import TOMLKitError

from agentwire.core.audit import log_audit
from agentwire.core.config import SetupConfig
from agentwire.core.errors import SyncError


@dataclass
class ToolPaths:
    """Absolute extension locations of one tool."""

    skills_dir: Optional[Path] = None
    mcp_config: Optional[Path] = None


@dataclass
class Extension:
    """A skill or MCP server found in one or more tools."""

    name: str
    kind: str
    """Kind of extension: skill or mcp"""

    source_tool: str
    """First tool it was found in"""

    installed_in: List[str] = field(default_factory=list)


def resolve_tool_paths(tool: str, config: SetupConfig) -> ToolPaths:
    """Absolute paths for a tool; unknown tools have none."""
    paths = config.tool_paths(tool)
    home = config.home
    return ToolPaths(
        skills_dir=home / paths.skills_dir if paths.skills_dir else None,
        mcp_config=home / paths.mcp_config if paths.mcp_config else None,
    )


def _check_name(name: str, kind: str) -> None:
    if not name or name in (".", "..") or any(c in name for c in ("/", "\\", "\x00")):
        raise SyncError(f"Invalid {kind} name: '{name}'")


def copy_skill(source_tool: str, target_tool: str, skill_name: str, config: SetupConfig) -> Path:
    """Copy a skill directory from one tool to another.

    Returns:
        The target directory

    Raises:
        SyncError: If either tool has no skills dir or the skill is missing
    """
    _check_name(skill_name, "skill")

    source_dir = resolve_tool_paths(source_tool, config).skills_dir
    if source_dir is None:
        raise SyncError(f"Source CLI '{source_tool}' has no skills directory")
    target_dir = resolve_tool_paths(target_tool, config).skills_dir
    if target_dir is None:
        raise SyncError(f"Target CLI '{target_tool}' has no skills directory")

    source = source_dir / skill_name
    target = target_dir / skill_name
    if not source.is_dir():
        raise SyncError(f"Skill '{skill_name}' not found in {source_tool}")

    try:
        shutil.copytree(source, target, dirs_exist_ok=True)
    except OSError as e:
        raise SyncError(f"Failed to copy skill: {e}") from e

    log_audit("sync", "skill", {"skill": skill_name, "from": source_tool, "to": target_tool})
    return target


def install_mcp(target_tool: str, mcp_name: str, config_json: str, config: SetupConfig) -> Path:
    """Merge a named MCP server entry into a tool's config file.

    Returns:
        The config file written

    Raises:
        SyncError: Unknown tool location, unsupported format, or unparsable input
    """
    _check_name(mcp_name, "MCP")

    config_path = resolve_tool_paths(target_tool, config).mcp_config
    if config_path is None:
        raise SyncError(f"No MCP config path for {target_tool}")

    suffix = config_path.suffix.lower()
    if suffix == ".json":
        content = _merge_mcp_json(config_path, mcp_name, config_json)
    elif suffix == ".toml":
        content = _merge_mcp_toml(config_path, mcp_name, config_json)
    else:
        raise SyncError(f"Unknown config format: {suffix or config_path.name}")

    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        config_path.write_text(content, encoding="utf-8")
    except (OSError, UnicodeError) as e:
        raise SyncError(f"Failed to write config: {e}") from e

    log_audit("sync", "mcp", {"mcp": mcp_name, "to": target_tool, "path": str(config_path)})
    return config_path


def _read(path: Path) -> Optional[str]:
    if not path.exists():
        return None
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise SyncError(f"Failed to read config: {e}") from e


def _merge_mcp_json(path: Path, name: str, config_json: str) -> str:
    existing = _read(path)
    try:
        root = json.loads(existing) if existing and existing.strip() else {}
    except json.JSONDecodeError as e:
        raise SyncError(f"Failed to parse config JSON: {e}") from e
    if not isinstance(root, dict):
        raise SyncError(f"Config {path} is not a JSON object")

    try:
        server = json.loads(config_json)
    except json.JSONDecodeError as e:
        raise SyncError(f"Failed to parse MCP config: {e}") from e

    servers = root.setdefault("mcpServers", {})
    if not isinstance(servers, dict):
        raise SyncError(f"'mcpServers' in {path} is not an object")
    servers[name] = server

    return json.dumps(root, indent=2) + "\n"


def _merge_mcp_toml(path: Path, name: str, config_json: str) -> str:
    existing = _read(path)
    try:
        doc = tomlkit.parse(existing) if existing else tomlkit.document()
    except TOMLKitError as e:
        raise SyncError(f"Failed to parse TOML: {e}") from e

    if "mcp" not in doc:
        doc["mcp"] = tomlkit.table()
    table = doc["mcp"]
    if not isinstance(table, dict):
        raise SyncError(f"'mcp' in {path} is not a table")
    table[name] = config_json

    return tomlkit.dumps(doc)


def extract_mcp_names(content: str, path: Path) -> List[str]:
    """Names of MCP servers declared in a config file's content."""
    suffix = Path(path).suffix.lower()
    if suffix == ".json":
        try:
            root = json.loads(content)
        except json.JSONDecodeError:
            return []
        servers = root.get("mcpServers") if isinstance(root, dict) else None
        return list(servers) if isinstance(servers, dict) else []
    if suffix == ".toml":
        try:
            doc = tomlkit.parse(content)
        except TOMLKitError:
            return []
        table = doc.get("mcp")
        return list(table.keys()) if isinstance(table, dict) else []
    return []


def discover_extensions(tools: Iterable[str], config: SetupConfig) -> List[Extension]:
    """Skills and MCP servers present in the given tools, merged by name and kind."""
    found: Dict[tuple, Extension] = {}

    def _add(name: str, kind: str, tool: str) -> None:
        key = (name, kind)
        if key in found:
            if tool not in found[key].installed_in:
                found[key].installed_in.append(tool)
        else:
            found[key] = Extension(name=name, kind=kind, source_tool=tool, installed_in=[tool])

    for tool in tools:
        paths = resolve_tool_paths(tool, config)

        if paths.skills_dir and paths.skills_dir.is_dir():
            for entry in sorted(paths.skills_dir.iterdir()):
                if entry.is_dir():
                    _add(entry.name, "skill", tool)

        if paths.mcp_config and paths.mcp_config.is_file():
            try:
                content = paths.mcp_config.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError):
                continue
            for name in extract_mcp_names(content, paths.mcp_config):
                _add(name, "mcp", tool)

    return list(found.values())
