"""
Command-line interface for agentwire.

Usage:
    agentwire setup                 Run the full interactive setup
    agentwire setup --tool codex    Set up a single tool
    agentwire detect                Show installed agent tools
    agentwire memory                Dump the memory graph
    agentwire sessions              List past setup sessions
    agentwire extensions            List skills and MCP servers per tool
    agentwire log summary           Summarize a session's observability log
"""

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import click
from pydantic import ValidationError

from agentwire import __version__
from agentwire.cli.render import ask_user, render_event
from agentwire.core.audit import init_audit_logger, log_audit
from agentwire.core.config import SetupConfig, load_config
from agentwire.core.detection import summarize
from agentwire.core.errors import PersistenceError, SessionOutcome, UnknownSessionError
from agentwire.core.memory import MemoryGraph
from agentwire.core.observability import ObservabilityLogger
from agentwire.orchestrator.actions import NeedInputEvent
from agentwire.orchestrator.manager import SetupManager, default_detector
from agentwire.orchestrator.sync import discover_extensions


def _load_config_or_exit(
    config_path: Optional[Path], overrides: Optional[Dict[str, Any]] = None
) -> SetupConfig:
    """Load config with user-friendly Pydantic validation errors."""
    try:
        return load_config(config_path, cli_overrides=overrides)
    except ValidationError as e:
        click.echo("Configuration errors:", err=True)
        for error in e.errors():
            loc = " -> ".join(str(x) for x in error["loc"])
            click.echo(f"  {loc}: {error['msg']}", err=True)
        raise SystemExit(1)


def _open_memory_or_exit(cfg: SetupConfig) -> MemoryGraph:
    try:
        return MemoryGraph(cfg.memory_db_path)
    except (PersistenceError, OSError) as e:
        click.echo(f"Error: cannot open state store at {cfg.memory_db_path}: {e}", err=True)
        raise SystemExit(1)


def _init_logging(cfg: SetupConfig) -> ObservabilityLogger:
    init_audit_logger(cfg.audit_dir, cfg.audit_retention_days)
    return ObservabilityLogger(cfg.logs_db_path)


@click.group()
@click.version_option(version=__version__)
@click.pass_context
def cli(ctx):
    """agentwire - Agent-driven setup for AI coding CLIs."""
    ctx.ensure_object(dict)


# -------------------------
# setup
# -------------------------


async def _run_interactive(
    cfg: SetupConfig,
    tool: Optional[str],
    logger: ObservabilityLogger,
    verbose: bool,
) -> Optional[SessionOutcome]:
    """Run one session, answering its prompts from the terminal."""
    prompts: "asyncio.Queue" = asyncio.Queue()

    def on_event(session_id: str, event) -> None:
        render_event(event)
        if isinstance(event, NeedInputEvent):
            prompts.put_nowait(event.action)

    manager = SetupManager(cfg, on_event=on_event, logger=logger, verbose=verbose)
    session_id = manager.start_tool_setup(tool) if tool else manager.start_setup()
    if session_id is None:
        return None

    if verbose:
        click.echo(f"Session: {session_id}")

    finished = asyncio.ensure_future(manager.wait(session_id))
    while True:
        next_prompt = asyncio.ensure_future(prompts.get())
        done, _ = await asyncio.wait({finished, next_prompt}, return_when=asyncio.FIRST_COMPLETED)

        if next_prompt not in done:
            next_prompt.cancel()
            return finished.result()

        response = await asyncio.to_thread(ask_user, next_prompt.result())
        try:
            await manager.respond(session_id, response)
        except UnknownSessionError:
            pass


@cli.command()
@click.option("--config", "-c", type=click.Path(exists=True), help="Config file path")
@click.option("--tool", "-t", default=None, help="Set up only this tool (e.g. codex)")
@click.option("--max-turns", type=int, default=None, help="Override the agent turn budget")
@click.option("--model", default=None, help="Override the agent model")
@click.option("--verbose", "-v", is_flag=True, help="Print agent progress")
def setup(config: Optional[str], tool: Optional[str], max_turns: Optional[int], model: Optional[str], verbose: bool):
    """Detect installed tools and let the agent configure them."""
    agent_overrides: Dict[str, Any] = {}
    if max_turns is not None:
        agent_overrides["max_turns"] = max_turns
    if model:
        agent_overrides["model"] = model

    cfg = _load_config_or_exit(
        Path(config) if config else None,
        {"agent": agent_overrides} if agent_overrides else None,
    )
    logger = _init_logging(cfg)
    log_audit("session", "request", {"tool": tool})

    outcome = asyncio.run(_run_interactive(cfg, tool, logger, verbose))

    if outcome is None:
        raise SystemExit(1)

    click.echo()
    click.echo(f"Outcome: {outcome.value}")
    if outcome not in (SessionOutcome.SUCCESS, SessionOutcome.DONE):
        raise SystemExit(1)


# -------------------------
# detect
# -------------------------


@cli.command()
@click.option("--config", "-c", type=click.Path(exists=True), help="Config file path")
@click.option("--json", "as_json", is_flag=True, help="Print the full report as JSON")
def detect(config: Optional[str], as_json: bool):
    """Show installed agent tools, versions and auth state."""
    cfg = _load_config_or_exit(Path(config) if config else None)
    report = default_detector(cfg).detect_all()

    if as_json:
        click.echo(report.to_json())
        return

    click.echo(f"OS: {report.os.os_type} ({report.os.arch})")
    click.echo()
    for item in summarize(report):
        if not item.installed:
            click.echo(f"  {item.name:<10} not installed")
            continue
        auth = "authenticated" if item.authenticated else "not authenticated"
        line = f"  {item.name:<10} {item.version or 'unknown version'}  [{auth}]"
        if item.version_changed:
            line += f"  (was {item.previous_version})"
        click.echo(line)
        for profile in item.profiles:
            click.echo(f"      {profile.id} via {profile.auth_method}")
        if item.wrapper_count:
            click.echo(f"      {item.wrapper_count} wrapper script(s)")


# -------------------------
# memory
# -------------------------


@cli.command()
@click.option("--config", "-c", type=click.Path(exists=True), help="Config file path")
@click.option("--type", "node_types", multiple=True, help="Only these node types (repeatable)")
def memory(config: Optional[str], node_types: Tuple[str, ...]):
    """Dump the memory graph as JSON."""
    cfg = _load_config_or_exit(Path(config) if config else None)
    graph = _open_memory_or_exit(cfg)

    snapshot = graph.subgraph_for_context(node_types) if node_types else graph.snapshot()
    click.echo(snapshot.to_json())


# -------------------------
# sessions
# -------------------------


@cli.command()
@click.argument("session_id", required=False)
@click.option("--config", "-c", type=click.Path(exists=True), help="Config file path")
@click.option("--limit", default=20, show_default=True, type=int)
def sessions(session_id: Optional[str], config: Optional[str], limit: int):
    """List setup sessions, or show the turns of one session."""
    cfg = _load_config_or_exit(Path(config) if config else None)
    graph = _open_memory_or_exit(cfg)

    if session_id is None:
        records = graph.list_sessions(limit)
        if not records:
            click.echo("No sessions recorded yet.")
            return
        for record in records:
            outcome = record.outcome or "running"
            click.echo(f"{record.id}  {record.started_at}  turns={record.turn_count}  {outcome}")
        return

    record = graph.get_session(session_id)
    if record is None:
        click.echo(f"Error: session '{session_id}' not found", err=True)
        raise SystemExit(1)

    click.echo(json.dumps(record.to_dict(), indent=2))
    for turn in graph.get_turns(session_id):
        click.echo(f"\nTurn {turn.turn_number} ({turn.created_at}): {turn.response_summary}")
        click.echo(f"  prompt: {turn.prompt[:200]}")


# -------------------------
# extensions
# -------------------------


@cli.command()
@click.option("--config", "-c", type=click.Path(exists=True), help="Config file path")
@click.option("--json", "as_json", is_flag=True, help="Print as JSON")
def extensions(config: Optional[str], as_json: bool):
    """List skills and MCP servers found across tools."""
    cfg = _load_config_or_exit(Path(config) if config else None)
    found = discover_extensions(cfg.tools.keys(), cfg)

    if as_json:
        click.echo(json.dumps([e.__dict__ for e in found], indent=2))
        return

    if not found:
        click.echo("No skills or MCP servers found.")
        return
    for ext in found:
        click.echo(f"  {ext.kind:<6} {ext.name:<24} {', '.join(ext.installed_in)}")


# -------------------------
# log
# -------------------------


@cli.group()
def log() -> None:
    """Observability log helpers."""


@log.command("summary")
@click.option("--config", "-c", type=click.Path(exists=True), help="Config file path")
@click.option("--session", default=None, help="Session ID (defaults to the most recent session)")
def log_summary(config: Optional[str], session: Optional[str]) -> None:
    cfg = _load_config_or_exit(Path(config) if config else None)
    if not cfg.logs_db_path.exists():
        click.echo("No logs.db found. Run agentwire setup first.")
        return

    logger = ObservabilityLogger(cfg.logs_db_path)
    summary = logger.get_session_summary(session or logger.latest_session())
    click.echo(json.dumps(summary, indent=2))


if __name__ == "__main__":
    cli()
