"""
CLI commands for provisioning pipelines.

Thin wrappers over ``agentvm.core.use_cases.provision``.
"""

from __future__ import annotations

import json
import sys

import click

from agentvm.core.models.variant import Variant
from agentvm.ui.cli.output import VARIANT_CHOICE, echo_health, echo_run, load_project

STAGE_CHOICE = click.Choice(["host", "guest"])


@click.group()
def pipeline() -> None:
    """Pipeline — plan, run, and health-check a variant."""


# ── Plan ────────────────────────────────────────────────────────


@pipeline.command()
@click.argument("variant", type=VARIANT_CHOICE)
@click.option("--stage", type=STAGE_CHOICE, default="host", show_default=True)
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def plan(ctx: click.Context, variant: str, stage: str, as_json: bool) -> None:
    """Show the dependency-ordered steps of a variant."""
    from agentvm.core.errors import ConfigurationError, DependencyError
    from agentvm.core.use_cases.provision import plan_pipeline

    project = load_project(ctx)
    v = Variant(variant.lower())

    try:
        steps = plan_pipeline(project, v, stage)  # type: ignore[arg-type]
    except (ConfigurationError, DependencyError) as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        sys.exit(1)

    if as_json:
        click.echo(json.dumps({
            "variant": v.value,
            "stage": stage,
            "steps": [
                {
                    "id": s.id,
                    "description": s.description,
                    "depends_on": list(s.depends_on),
                    "adapter": s.adapter,
                    "severity": s.severity,
                    "retry": s.retry.model_dump() if s.retry else None,
                }
                for s in steps
            ],
        }, indent=2))
        return

    if not steps:
        click.secho(f"⚠️  {v.display_name} has no {stage} steps", fg="yellow")
        return

    click.secho(f"\n📋 {v.display_name} — {stage} pipeline ({len(steps)} steps)", fg="cyan", bold=True)
    for index, s in enumerate(steps, start=1):
        flags = []
        if not s.fatal:
            flags.append("recoverable")
        if s.retry:
            flags.append(f"retry×{s.retry.attempts}")
        suffix = f"  [{', '.join(flags)}]" if flags else ""
        click.echo(f"   {index:2d}. {s.id}{suffix}")
        if s.description:
            click.echo(f"       {s.description}")
        if s.depends_on:
            click.secho(f"       after: {', '.join(s.depends_on)}", fg="bright_black")
    click.echo()


# ── Run ─────────────────────────────────────────────────────────


@pipeline.command()
@click.argument("variant", type=VARIANT_CHOICE)
@click.option("--stage", type=STAGE_CHOICE, default="host", show_default=True)
@click.option("--dry-run", is_flag=True, help="Validate every action without running it.")
@click.option("--mock", is_flag=True, help="Dispatch every action to the mock adapter.")
@click.option("--no-health", is_flag=True, help="Skip health verification after the run.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def run(
    ctx: click.Context,
    variant: str,
    stage: str,
    dry_run: bool,
    mock: bool,
    no_health: bool,
    as_json: bool,
) -> None:
    """Provision a variant (idempotent: satisfied steps are skipped)."""
    from agentvm.core.engine.executor import CancelToken
    from agentvm.core.use_cases.provision import cancel_on_interrupt, provision

    project = load_project(ctx)
    v = Variant(variant.lower())

    token = CancelToken()
    with cancel_on_interrupt(token):
        result = provision(
            v,
            stage=stage,  # type: ignore[arg-type]
            project=project,
            dry_run=dry_run,
            mock_mode=mock,
            verify_health=not no_health,
            cancel=token,
        )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(result.exit_code)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red", err=True)
        sys.exit(1)

    mode = " (dry run)" if dry_run else " (mock)" if mock else ""
    click.secho(f"\n🚀 {v.display_name} — {stage} pipeline{mode}", fg="cyan", bold=True)
    assert result.run is not None
    echo_run(result.run)
    if result.health:
        echo_health(result.health)
    click.echo()

    sys.exit(result.exit_code)


# ── Health ──────────────────────────────────────────────────────


@pipeline.command()
@click.argument("variant", type=VARIANT_CHOICE)
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def health(ctx: click.Context, variant: str, as_json: bool) -> None:
    """Poll a running VM's health checks until ready or timed out."""
    from agentvm.core.observability.health import verify_variant

    project = load_project(ctx)
    v = Variant(variant.lower())
    result = verify_variant(project.variant(v))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
    else:
        echo_health(result)
        click.echo()

    if not result.healthy:
        sys.exit(1)
