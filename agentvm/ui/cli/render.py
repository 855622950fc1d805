"""
CLI commands that print generated files without running a pipeline.

Arch Linux only: the NixOS image declares all of these in its flake.
"""

from __future__ import annotations

import json
import sys

import click

from agentvm.core.models.template import GeneratedFile
from agentvm.core.models.variant import Variant
from agentvm.ui.cli.output import VARIANT_CHOICE, load_project


@click.group()
def render() -> None:
    """Render — preview cloud-init, launch script, and guest units."""


def _require_arch(variant: str) -> Variant:
    v = Variant(variant.lower())
    if v != Variant.ARCH:
        click.secho(
            f"⚠️  {v.display_name} generates these files from its flake (nix build)",
            fg="yellow",
            err=True,
        )
        sys.exit(1)
    return v


def _emit(files: list[GeneratedFile], as_json: bool) -> None:
    if as_json:
        click.echo(json.dumps([f.model_dump() for f in files], indent=2))
        return
    for f in files:
        mode = f" (mode {f.mode})" if f.mode else ""
        click.secho(f"# ── {f.path}{mode} ──", fg="cyan", bold=True)
        if f.reason:
            click.secho(f"# {f.reason}", fg="bright_black")
        click.echo(f.content.rstrip("\n"))
        click.echo()


@render.command("cloud-init")
@click.argument("variant", type=VARIANT_CHOICE, default="arch")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def cloud_init(ctx: click.Context, variant: str, as_json: bool) -> None:
    """cloud-init user-data and meta-data seed files."""
    from agentvm.core.errors import ConfigurationError
    from agentvm.core.services.generators.cloud_init import generate_meta_data, generate_user_data
    from agentvm.core.services.pipelines import resolve_packages

    v = _require_arch(variant)
    project = load_project(ctx)
    try:
        packages = resolve_packages(project, v)
    except ConfigurationError as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        sys.exit(1)

    config = project.variant(v)
    _emit([generate_user_data(config, packages), generate_meta_data(config)], as_json)


@render.command("launch-script")
@click.argument("variant", type=VARIANT_CHOICE, default="arch")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def launch_script(ctx: click.Context, variant: str, as_json: bool) -> None:
    """QEMU launch script."""
    from agentvm.core.services.generators.launch_script import generate_launch_script

    v = _require_arch(variant)
    config = load_project(ctx).variant(v)
    _emit([generate_launch_script(config)], as_json)


@render.command()
@click.argument("variant", type=VARIANT_CHOICE, default="arch")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def units(ctx: click.Context, variant: str, as_json: bool) -> None:
    """systemd units, SSH configuration, and helper scripts of the guest."""
    from agentvm.core.services.generators import guest_files

    v = _require_arch(variant)
    config = load_project(ctx).variant(v)
    _emit([
        *guest_files.systemd_units(config),
        guest_files.generate_api_start_script(config),
        guest_files.generate_api_env(config),
        guest_files.generate_ssh_wrapper(config),
        guest_files.generate_sshd_drop_in(config),
        guest_files.generate_activation_script(config),
    ], as_json)
