"""CLI for agentloop.

Runs an agent's task lifecycle and provides terminal stand-ins for the
dashboard (status overview, approve, reject).
"""

import asyncio
import sys
from pathlib import Path
from typing import cast

import click
from rich.console import Console
from rich.table import Table

from agentloop import __version__
from agentloop.config import AgentConfig
from agentloop.environment import setup_git_identity, validate_environment
from agentloop.errors import AgentLoopError
from agentloop.lifecycle import LifecycleController
from agentloop.log import configure_logging
from agentloop.models import AgentMode, ApprovalDecision
from agentloop.status import StatusPublisher
from agentloop.telemetry import create_metrics, setup_telemetry, shutdown_telemetry

console = Console()

STATUS_STYLES = {
    "idle": "dim",
    "working": "cyan",
    "needs_approval": "yellow",
    "blocked": "red",
}


@click.group()
@click.version_option(version=__version__, prog_name="agentloop")
def cli() -> None:
    """agentloop - Backlog-driven coding agent lifecycle."""
    pass


@cli.command()
@click.option("--agent-id", help="Agent identity (default: $AGENT_ID)")
@click.option(
    "--mode",
    type=click.Choice([m.value for m in AgentMode]),
    default=None,
    help="autonomous: loop until idle; interactive: one task with approval",
)
@click.option("--verbose", "-v", is_flag=True, help="Log at DEBUG level")
def run(agent_id: str | None, mode: str | None, verbose: bool) -> None:
    """Run the agent's task lifecycle."""
    config = AgentConfig.from_env()
    if agent_id:
        config.agent_id = agent_id
    if mode:
        config.mode = AgentMode(mode)

    configure_logging(config.agent_id, verbose)

    try:
        repo = validate_environment(config)
        setup_git_identity(repo, config.agent_id, config.github_token)
    except AgentLoopError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    console.print(
        f"[bold]Agent {config.agent_id}[/bold] starting ({config.mode.value} mode)"
    )
    exit_code = asyncio.run(_run(config))
    sys.exit(exit_code)


async def _run(config: AgentConfig) -> int:
    """Internal async implementation of the run command."""
    tracer, meter = setup_telemetry(config)
    create_metrics(meter)

    controller = LifecycleController.from_config(config, tracer=tracer)
    try:
        if config.mode is AgentMode.INTERACTIVE:
            return await controller.run_interactive()
        return await controller.run_autonomous()
    finally:
        shutdown_telemetry()


@cli.command()
def check() -> None:
    """Validate the agent environment without running."""
    config = AgentConfig.from_env()
    try:
        validate_environment(config)
    except AgentLoopError as e:
        console.print(f"[red]✗[/red] {e}")
        sys.exit(1)
    console.print(f"[green]✓[/green] Environment ready ({config.main_checkout})")


def _status_root(status_root: str | None) -> Path:
    if status_root:
        return Path(status_root)
    return cast(Path, AgentConfig.from_env().status_root)


@cli.command()
@click.option("--status-root", type=click.Path(), help="Status directory root")
def status(status_root: str | None) -> None:
    """Show every agent's published status."""
    root = _status_root(status_root)
    agent_dirs = sorted(p for p in root.iterdir() if p.is_dir()) if root.exists() else []

    if not agent_dirs:
        console.print(f"[dim]No agents found in {root}[/dim]")
        return

    table = Table(title="Agents")
    table.add_column("Agent", style="bold")
    table.add_column("Status")
    table.add_column("Task")
    table.add_column("Approval")

    for agent_dir in agent_dirs:
        publisher = StatusPublisher(agent_dir)
        agent_status = publisher.read_status()
        status_text = agent_status.value if agent_status else "unknown"
        style = STATUS_STYLES.get(status_text, "")
        table.add_row(
            agent_dir.name,
            f"[{style}]{status_text}[/{style}]" if style else status_text,
            publisher.read_task() or "-",
            "pending" if publisher.approval_pending() else "-",
        )

    console.print(table)


@cli.command()
@click.argument("agent_id")
@click.option("--status-root", type=click.Path(), help="Status directory root")
def approve(agent_id: str, status_root: str | None) -> None:
    """Approve an agent's pending change."""
    _respond(agent_id, status_root, ApprovalDecision.APPROVED, "")


@cli.command()
@click.argument("agent_id")
@click.option("--feedback", "-f", required=True, help="What the agent should change")
@click.option("--status-root", type=click.Path(), help="Status directory root")
def reject(agent_id: str, feedback: str, status_root: str | None) -> None:
    """Reject an agent's pending change with feedback."""
    _respond(agent_id, status_root, ApprovalDecision.REJECTED, feedback)


def _respond(
    agent_id: str, status_root: str | None, decision: ApprovalDecision, feedback: str
) -> None:
    publisher = StatusPublisher(_status_root(status_root) / agent_id)
    if not publisher.approval_pending():
        console.print(f"[red]No approval pending for {agent_id}[/red]")
        sys.exit(1)

    publisher.write_approval_response(decision, feedback)
    console.print(f"[green]{decision.value.capitalize()}[/green] change for {agent_id}")


def main() -> None:
    """Entry point for the agentloop command."""
    cli()


if __name__ == "__main__":
    main()
