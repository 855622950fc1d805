"""
CLI commands for package manifests.

Thin wrappers over ``agentvm.core.services.manifest``.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click


@click.group()
def packages() -> None:
    """Packages — list and resolve package manifests."""


@packages.command("list")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def list_manifests(as_json: bool) -> None:
    """List the bundled manifests."""
    from agentvm.core.services.manifest import bundled_names, bundled_path, effective_packages

    names = bundled_names()
    if as_json:
        click.echo(json.dumps(
            {name: len(effective_packages(bundled_path(name))) for name in names}, indent=2
        ))
        return

    click.secho("📦 Bundled manifests:", fg="cyan", bold=True)
    for name in names:
        count = len(effective_packages(bundled_path(name)))
        click.echo(f"   • {name} ({count} packages)")


@packages.command()
@click.argument("manifest")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def resolve(manifest: str, as_json: bool) -> None:
    """Print the effective package list of MANIFEST.

    MANIFEST is a bundled name (minimal, standard, full) or a path.
    Includes are expanded and duplicates removed, first occurrence wins.
    """
    from agentvm.core.errors import ManifestError
    from agentvm.core.services.manifest import locate_manifest, resolve_manifest

    try:
        resolved = resolve_manifest(locate_manifest(manifest, Path.cwd()))
    except ManifestError as e:
        if as_json:
            click.echo(json.dumps({"error": str(e)}, indent=2))
        else:
            click.secho(f"❌ {e}", fg="red", err=True)
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(resolved.to_dict(), indent=2))
        return

    for package in resolved.packages:
        click.echo(package)
    click.secho(
        f"✅ {len(resolved.packages)} packages from {len(resolved.files)} file(s)",
        fg="green",
        err=True,
    )
