"""
AgentVM — CLI entrypoint.

Usage:
    python -m agentvm --help
    python -m agentvm select --arch
    python -m agentvm pipeline plan arch
    python -m agentvm parity --threshold 80
"""

from __future__ import annotations

import json
from pathlib import Path

import click

from agentvm import __version__
from agentvm.core.observability.logging_config import setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="agentvm")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to agentvm.yml (default: auto-detect).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """AgentVM — provision NixOS and Arch Linux agent VMs."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    # ── Logging setup (once, at process start) ──────────────────
    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "ERROR"
    else:
        level = None  # AGENTVM_LOG_LEVEL or WARNING

    setup_logging(level=level)


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def status(ctx: click.Context, as_json: bool) -> None:
    """Show configured variants and the last recorded run of each."""
    from agentvm.core.config.loader import resolve_path
    from agentvm.core.models.variant import Variant
    from agentvm.core.persistence.audit import AuditWriter
    from agentvm.ui.cli.output import load_project

    project = load_project(ctx)
    entries = AuditWriter(resolve_path(project, project.state_dir)).read_all()

    last = {}
    for entry in entries:
        if entry.operation_type == "provision:host":
            last[entry.variant] = entry

    if as_json:
        click.echo(json.dumps({
            "name": project.name,
            "root": project.root,
            "variants": {
                v.value: {
                    "vm_name": project.variant(v).vm_name,
                    "ssh": project.variant(v).ssh_command,
                    "api": project.variant(v).api_url,
                    "last_run": last[v.value].model_dump() if v.value in last else None,
                }
                for v in Variant
            },
        }, indent=2))
        return

    click.secho(f"\n📋 {project.name}", fg="cyan", bold=True)
    click.echo(f"   Root: {project.root}\n")
    for v in Variant:
        config = project.variant(v)
        click.secho(f"   {v.display_name}", fg="white", bold=True)
        click.echo(f"     • VM: {config.vm_name}")
        click.echo(f"     • SSH: {config.ssh_command}")
        click.echo(f"     • API: {config.api_url}")
        entry = last.get(v.value)
        if entry is None:
            click.echo("     • Last run: never")
            continue
        status_color = {"ok": "green", "partial": "yellow"}.get(entry.status, "red")
        click.echo("     • Last run: ", nl=False)
        click.secho(entry.status, fg=status_color, nl=False)
        click.echo(
            f" ({entry.steps_succeeded} succeeded, {entry.steps_failed} failed) at {entry.timestamp}"
        )
    click.echo()


# ── Sub-command groups ──────────────────────────────────────────

from agentvm.ui.cli.packages import packages  # noqa: E402
from agentvm.ui.cli.parity import parity  # noqa: E402
from agentvm.ui.cli.pipeline import pipeline  # noqa: E402
from agentvm.ui.cli.render import render  # noqa: E402
from agentvm.ui.cli.select import select  # noqa: E402

cli.add_command(select)
cli.add_command(pipeline)
cli.add_command(parity)
cli.add_command(packages)
cli.add_command(render)


if __name__ == "__main__":
    cli()
