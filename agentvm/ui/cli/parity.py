"""
CLI command for the feature parity report.

Runs every parity probe on both variants, prints the report and exits
0 when the overall success rate meets the threshold.
"""

from __future__ import annotations

import json
import sys

import click

from agentvm.core.observability.logging_config import setup_logging
from agentvm.ui.cli.output import load_project


@click.command("parity")
@click.option(
    "--threshold",
    type=click.FloatRange(0, 100),
    default=None,
    help="Pass mark in percent (default: parity_threshold from agentvm.yml).",
)
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def parity(ctx: click.Context, threshold: float | None, as_json: bool) -> None:
    """Compare NixOS and Arch Linux feature coverage."""
    from agentvm.core.engine.report import render_text
    from agentvm.core.use_cases.parity import run_parity

    if ctx.parent is None:
        setup_logging()

    project = load_project(ctx)
    result = run_parity(project, threshold=threshold)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
    else:
        click.echo(render_text(result.report, result.threshold), nl=False)
        for warning in result.warnings:
            click.secho(f"⚠ {warning}", fg="yellow")

    sys.exit(result.exit_code)
