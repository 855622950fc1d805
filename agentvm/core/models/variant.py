"""
Variant model — the two supported base systems.

A Variant owns its own pipeline, its own package manifest, and its own
service endpoints. Every dispatch on a variant goes through the tables
in this module so that adding a variant fails loudly where a handler
is missing.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from agentvm.core.models.health import HealthCheckSpec


class Variant(StrEnum):
    """Supported deployment targets."""

    NIXOS = "nixos"
    ARCH = "arch"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]


_DISPLAY_NAMES: dict[Variant, str] = {
    Variant.NIXOS: "NixOS",
    Variant.ARCH: "Arch Linux",
}


class VariantConfig(BaseModel):
    """Immutable per-variant settings.

    Paths are relative to the distribution root unless absolute.
    """

    model_config = ConfigDict(frozen=True)

    variant: Variant
    work_dir: str = "."

    # ── Endpoints ────────────────────────────────────────────────
    ssh_host: str = "127.0.0.1"
    ssh_port: int = 2222
    api_port: int = 8000
    ssh_user: str = "agent"
    default_password: str = "agent"

    # ── Packages & tools ─────────────────────────────────────────
    manifest: str | None = None
    required_tools: tuple[str, ...] = ()

    # ── VM sizing ────────────────────────────────────────────────
    vm_name: str = ""
    memory_mb: int = 8192
    cpus: int = 6
    disk_size: str = "32G"

    # ── Images ───────────────────────────────────────────────────
    iso_url: str = ""
    iso_path: str = ""
    disk_path: str = ""
    flake_image: str = ""
    flake_run: str = ""

    # ── Host integration ─────────────────────────────────────────
    host_projects_path: str = ""
    cpu_isolation: bool = False

    # ── Verification ─────────────────────────────────────────────
    boot_timeout: float = 60.0
    health_checks: tuple[HealthCheckSpec, ...] = Field(default_factory=tuple)

    @property
    def display_name(self) -> str:
        return self.variant.display_name

    @property
    def api_url(self) -> str:
        return f"http://{self.ssh_host}:{self.api_port}"

    @property
    def ssh_command(self) -> str:
        return f"ssh {self.ssh_user}@{self.ssh_host} -p {self.ssh_port}"

    def default_health_checks(self) -> tuple[HealthCheckSpec, ...]:
        """Health checks used when none are configured explicitly."""
        return (
            HealthCheckSpec(
                name="ssh",
                kind="tcp",
                target=f"{self.ssh_host}:{self.ssh_port}",
                timeout=self.boot_timeout,
            ),
            HealthCheckSpec(
                name="agent-api",
                kind="http",
                target=f"{self.api_url}/health",
                timeout=self.boot_timeout,
            ),
        )

    @property
    def effective_health_checks(self) -> tuple[HealthCheckSpec, ...]:
        return self.health_checks or self.default_health_checks()


_ARCH_ISO_MIRROR = "https://mirror.archlinux.org/iso/latest/"

_DEFAULTS: dict[Variant, dict] = {
    Variant.NIXOS: {
        "work_dir": ".",
        "ssh_user": "user",
        "default_password": "user",
        "required_tools": ("nix",),
        "vm_name": "agentvm-nixos",
        "flake_image": ".#nixos-agent-vm-qcow2",
        "flake_run": ".#nixos-run",
        "disk_path": "result/nixos.qcow2",
    },
    Variant.ARCH: {
        "work_dir": "arch-vm",
        "ssh_user": "agent",
        "default_password": "agent",
        "manifest": "standard",
        "required_tools": ("qemu-system-x86_64", "qemu-img", "wget", "curl", "git"),
        "vm_name": "agentvm-arch",
        "iso_url": _ARCH_ISO_MIRROR + "archlinux-x86_64.iso",
        "iso_path": "iso/archlinux-latest-x86_64.iso",
        "disk_path": "disks/agentvm-arch.qcow2",
    },
}


def default_variant_config(variant: Variant, **overrides) -> VariantConfig:
    """Build the stock configuration for a variant, with optional overrides."""
    data = {"variant": variant, **_DEFAULTS[variant], **overrides}
    return VariantConfig.model_validate(data)
