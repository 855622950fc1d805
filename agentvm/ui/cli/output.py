"""
Shared CLI helpers — config loading and result printing.
"""

from __future__ import annotations

import sys
from pathlib import Path

import click

from agentvm.core.engine.executor import PipelineRun
from agentvm.core.errors import ConfigurationError
from agentvm.core.models.project import ProjectConfig
from agentvm.core.models.step import Outcome
from agentvm.core.models.variant import Variant
from agentvm.core.observability.health import SystemHealth

VARIANT_CHOICE = click.Choice([v.value for v in Variant], case_sensitive=False)

# Lines of captured output shown under a failed step
DIAGNOSTIC_LINES = 20

_OUTCOME_COLORS = {
    Outcome.SUCCEEDED: "green",
    Outcome.SKIPPED: "white",
    Outcome.FAILED_RECOVERABLE: "yellow",
    Outcome.FAILED_FATAL: "red",
    Outcome.SKIPPED_DUE_TO_FAILURE: "yellow",
    Outcome.CANCELLED: "yellow",
}


def load_project(ctx: click.Context) -> ProjectConfig:
    """Load agentvm.yml (``--config`` or auto-detect); exit 1 if invalid."""
    from agentvm.core.config.loader import load_config

    obj = ctx.find_root().obj
    config_path: Path | None = obj.get("config_path") if isinstance(obj, dict) else None
    try:
        return load_config(config_path)
    except ConfigurationError as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        sys.exit(1)


def echo_run(run: PipelineRun) -> None:
    """One marked line per step, diagnostics under failures, then a summary."""
    for r in run.results:
        color = _OUTCOME_COLORS[r.outcome]
        attempts = f" ({r.attempts} attempts)" if r.attempts > 1 else ""
        click.secho(f"   {r.marker} ", fg=color, nl=False)
        click.echo(f"{r.step_id} — {r.outcome.value}{attempts}")
        if r.failed:
            if r.error:
                click.secho(f"       {r.error}", fg=color)
            for line in r.output.splitlines()[-DIAGNOSTIC_LINES:]:
                click.echo(f"       │ {line}")

    click.echo()
    status_color = {"ok": "green", "partial": "yellow"}.get(run.status, "red")
    click.secho(
        f"   {run.succeeded} succeeded, {run.skipped} skipped, {run.failed} failed — {run.status}",
        fg=status_color,
        bold=True,
    )
    if run.failed_steps:
        click.secho(f"   Failed: {', '.join(run.failed_steps)}", fg="red")
    for warning in run.warnings:
        click.secho(f"   ⚠️  {warning}", fg="yellow")


def echo_health(health: SystemHealth) -> None:
    click.secho(f"\n🩺 Health ({health.variant}): {health.status}", fg="cyan", bold=True)
    for c in health.components:
        icon = "✓" if c.status == "healthy" else "✗"
        color = "green" if c.status == "healthy" else "red"
        click.secho(f"   {icon} {c.name}: {c.message}", fg=color)
