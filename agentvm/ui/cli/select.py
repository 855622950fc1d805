"""
Interactive variant selector — ``agentvm select`` / ``agentvm-select``.

With no flag it shows the comparison and prompts; ``--nixos`` and
``--arch`` skip the prompt. Both paths end in the same provision call.
"""

from __future__ import annotations

import sys

import click

from agentvm.core.engine.executor import CancelToken
from agentvm.core.models.variant import Variant
from agentvm.core.observability.logging_config import setup_logging
from agentvm.core.services.selection import (
    COMPARISON,
    INVALID_CHOICE,
    MENU,
    PROMPT,
    QUIT,
    VARIANT_BLURBS,
    comparison_table,
    parse_choice,
)
from agentvm.core.use_cases.provision import cancel_on_interrupt, provision
from agentvm.ui.cli.output import echo_health, echo_run, load_project


class SelectCommand(click.Command):
    """Command whose usage errors exit with status 1 instead of 2."""

    def parse_args(self, ctx: click.Context, args: list[str]) -> list[str]:
        try:
            return super().parse_args(ctx, args)
        except click.UsageError as e:
            e.exit_code = 1
            raise


def show_system_info() -> None:
    click.secho("\n🖥️  OLIGARCHY AGENTVM — SYSTEM SELECTION\n", fg="magenta", bold=True)
    click.secho("Choose your preferred base system for AgentVM:\n", bold=True)
    for variant in Variant:
        title, bullets = VARIANT_BLURBS[variant]
        click.secho(f"  {title}", fg="green" if variant == Variant.NIXOS else "blue", bold=True)
        for bullet in bullets:
            click.echo(f"    • {bullet}")
        click.echo()

    if COMPARISON:
        click.secho("Feature Comparison", fg="cyan", bold=True)
        for line in comparison_table():
            click.echo(f"  {line}")
        click.echo()


def prompt_for_variant() -> Variant | None:
    """Prompt until a valid choice; None means quit (or end of input)."""
    click.secho("Select your preferred system:\n", bold=True)
    for key, label in MENU:
        click.echo(f"  {key}) {label}")
    click.echo()

    while True:
        try:
            answer = click.prompt(PROMPT, prompt_suffix=": ")
        except click.Abort:
            click.echo()
            return None
        choice = parse_choice(answer)
        if choice is None:
            click.secho(f"⚠ {INVALID_CHOICE}", fg="yellow")
            continue
        if choice == QUIT:
            return None
        return choice


def quick_start(ctx: click.Context, variant: Variant) -> int:
    """Provision ``variant`` and print the outcome; returns the exit code."""
    project = load_project(ctx)
    config = project.variant(variant)

    click.secho(f"\n🚀 QUICK START — {variant.display_name}\n", fg="magenta", bold=True)

    token = CancelToken()
    with cancel_on_interrupt(token):
        result = provision(variant, project=project, cancel=token)

    if result.error:
        click.secho(f"✗ {result.error}", fg="red", err=True)
        return result.exit_code

    assert result.run is not None
    echo_run(result.run)
    if result.health:
        echo_health(result.health)

    if result.ok:
        click.echo()
        click.secho(f"✓ {variant.display_name} VM is starting...", fg="green")
        click.secho(f"ℹ Connect with: {config.ssh_command}", fg="cyan")
        click.secho(f"ℹ API at: {config.api_url}/docs", fg="cyan")
    return result.exit_code


@click.command("select", cls=SelectCommand)
@click.option("--nixos", "variant", flag_value=Variant.NIXOS.value, help="Quick start with NixOS.")
@click.option("--arch", "variant", flag_value=Variant.ARCH.value, help="Quick start with Arch Linux.")
@click.pass_context
def select(ctx: click.Context, variant: str | None) -> None:
    """Choose a base system (NixOS or Arch Linux) and provision it.

    \b
    Examples:
      agentvm select            Interactive system selection
      agentvm select --nixos    Direct NixOS setup
      agentvm select --arch     Direct Arch Linux setup
    """
    if ctx.parent is None:
        setup_logging()

    if variant is None:
        show_system_info()
        chosen = prompt_for_variant()
        if chosen is None:
            click.secho("ℹ Goodbye!", fg="cyan")
            return
    else:
        chosen = Variant(variant)

    sys.exit(quick_start(ctx, chosen))
