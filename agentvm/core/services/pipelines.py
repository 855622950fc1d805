"""
Built-in pipelines — the provisioning steps for each variant and stage.

Host stage runs on the developer machine and ends with a booted VM.
Guest stage runs inside the Arch VM as root and installs the agents and
the API service; the NixOS guest is fully declared in the flake, so its
guest stage is empty.

Every step carries conditions describing its goal state, so a second
run over a provisioned machine skips everything.
"""

from __future__ import annotations

import logging
import shlex
from pathlib import Path, PurePosixPath
from typing import Literal

from agentvm.core.engine.registry import StepRegistry
from agentvm.core.models.project import ProjectConfig
from agentvm.core.models.step import Condition, Step
from agentvm.core.models.template import GeneratedFile
from agentvm.core.models.variant import Variant, VariantConfig
from agentvm.core.reliability.retry import RetryPolicy
from agentvm.core.services.generators import cloud_init, guest_files, launch_script
from agentvm.core.services.manifest import effective_packages, locate_manifest

logger = logging.getLogger(__name__)

Stage = Literal["host", "guest"]
STAGES: tuple[str, ...] = ("host", "guest")

GUEST_REQUIRED_TOOLS: tuple[str, ...] = ("pacman", "systemctl", "runuser")

VM_LOG = "vm.log"
VM_PID = "vm.pid"

_DOWNLOAD_RETRY = RetryPolicy(attempts=3, base_delay=2.0)
_PACKAGE_RETRY = RetryPolicy(attempts=3, base_delay=5.0)

_AIDER_SPEC = "aider-chat>=0.38.1"
_OPENCODE_SPEC = "opencode>=0.1.0"
_CLAUDE_CODE_SPEC = "@anthropic-ai/claude-code"
_API_REQUIREMENTS = (
    "fastapi>=0.104.0",
    "uvicorn[standard]>=0.24.0",
    "pydantic>=2.5.0",
    "requests>=2.31.0",
    "websockets>=12.0",
    "redis>=5.0.0",
    "psycopg2-binary>=2.9.0",
    "sqlalchemy>=2.0.0",
    "alembic>=1.12.0",
    "asyncpg>=0.29.0",
)


# ── Step helpers ────────────────────────────────────────────────


def write_step(
    step_id: str,
    description: str,
    files: list[GeneratedFile],
    depends_on: tuple[str, ...] = (),
    exact: bool = True,
) -> Step:
    """A filesystem step that converges ``files`` to their rendered content.

    With ``exact=False`` an existing file is left alone (files the
    operator is expected to edit, like ``.env``).
    """
    if exact:
        checks = tuple(Condition(kind="file_equals", target=f.path, value=f.content) for f in files)
    else:
        checks = tuple(Condition(kind="file_exists", target=f.path) for f in files)

    if len(files) == 1:
        params = files[0].write_params()
    else:
        params = {
            "operation": "write",
            "files": [
                {k: v for k, v in f.write_params().items() if k != "operation"}
                for f in files
            ],
        }
    return Step(
        id=step_id,
        description=description,
        depends_on=depends_on,
        checks=checks,
        adapter="filesystem",
        params=params,
    )


def _parents(*paths: str) -> list[str]:
    seen: list[str] = []
    for raw in paths:
        parent = str(PurePosixPath(raw).parent)
        if raw and parent not in (".", "") and parent not in seen:
            seen.append(parent)
    return seen


def _ssh_target(config: VariantConfig) -> str:
    return f"{config.ssh_host}:{config.ssh_port}"


def _boot_step(config: VariantConfig, command: str, depends_on: tuple[str, ...]) -> Step:
    return Step(
        id="boot-vm",
        description=f"Boot the {config.display_name} VM",
        depends_on=depends_on,
        checks=(Condition(kind="port_open", target=_ssh_target(config)),),
        params={
            "command": command,
            "background": True,
            "log_file": VM_LOG,
            "pid_file": VM_PID,
            "grace": 2.0,
        },
        timeout=int(config.boot_timeout),
    )


# ── Host stage ──────────────────────────────────────────────────


def arch_host_steps(config: VariantConfig, packages: list[str]) -> list[Step]:
    iso = config.iso_path
    sig = f"{iso}.sig"
    disk = config.disk_path
    q = shlex.quote
    launch = launch_script.generate_launch_script(config)

    directories = _parents(iso, disk) + [cloud_init.SEED_DIR]
    return [
        Step(
            id="create-directories",
            description="Create disk, ISO and cloud-init directories",
            checks=tuple(Condition(kind="dir_exists", target=d) for d in directories),
            adapter="filesystem",
            params={"operation": "mkdir", "paths": directories},
        ),
        Step(
            id="download-iso",
            description="Download the Arch Linux ISO",
            depends_on=("create-directories",),
            checks=(Condition(kind="file_exists", target=iso),),
            params={
                "command": f"wget -q -O {q(iso + '.part')} {q(config.iso_url)} "
                           f"&& mv {q(iso + '.part')} {q(iso)}",
            },
            retry=_DOWNLOAD_RETRY,
        ),
        Step(
            id="download-iso-signature",
            description="Download the ISO signature",
            depends_on=("download-iso",),
            checks=(Condition(kind="file_exists", target=sig),),
            params={"command": f"wget -q -O {q(sig)} {q(config.iso_url + '.sig')}"},
            severity="recoverable",
            retry=_DOWNLOAD_RETRY,
        ),
        Step(
            id="verify-iso-signature",
            description="Verify the ISO signature with gpg",
            depends_on=("download-iso-signature",),
            checks=(Condition(kind="file_exists", target=f"{iso}.verified"),),
            params={
                "command": f"gpg --keyserver-options auto-key-retrieve --verify {q(sig)} {q(iso)} "
                           f"&& touch {q(iso + '.verified')}",
            },
            severity="recoverable",
        ),
        Step(
            id="create-disk",
            description=f"Create the {config.disk_size} qcow2 disk",
            depends_on=("create-directories",),
            checks=(Condition(kind="file_exists", target=disk),),
            params={"command": ["qemu-img", "create", "-f", "qcow2", disk, config.disk_size]},
        ),
        write_step(
            "render-cloud-init",
            "Render the cloud-init seed",
            [
                cloud_init.generate_user_data(config, packages),
                cloud_init.generate_meta_data(config),
            ],
            depends_on=("create-directories",),
        ),
        write_step(
            "write-launch-script",
            "Write the QEMU launch script",
            [launch],
        ),
        _boot_step(
            config,
            f"./{launch.path}",
            depends_on=("download-iso", "create-disk", "render-cloud-init", "write-launch-script"),
        ),
    ]


def nixos_host_steps(config: VariantConfig) -> list[Step]:
    return [
        Step(
            id="nix-build-image",
            description=f"Build the NixOS image ({config.flake_image})",
            checks=(Condition(kind="file_exists", target=config.disk_path),),
            params={"command": ["nix", "build", config.flake_image]},
            timeout=7200,
        ),
        _boot_step(
            config,
            f"nix run {shlex.quote(config.flake_run)}",
            depends_on=("nix-build-image",),
        ),
    ]


# ── Guest stage ─────────────────────────────────────────────────


def install_packages_step(config: VariantConfig, packages: list[str]) -> Step | None:
    """pacman install of the effective manifest, skipped once all are present."""
    if not config.manifest or not packages:
        return None
    return Step(
        id="install-packages",
        description=f"Install {len(packages)} manifest package(s)",
        checks=(Condition(kind="packages_installed", target=config.manifest),),
        params={
            "command": ["pacman", "-S", "--needed", "--noconfirm", *packages],
        },
        retry=_PACKAGE_RETRY,
    )


def arch_guest_steps(config: VariantConfig, packages: list[str] | None = None) -> list[Step]:
    user = config.ssh_user
    venv = guest_files.VENV_DIR
    pip = f"runuser -u {user} -- {venv}/bin/pip install --quiet"
    q = shlex.quote

    sshd = guest_files.generate_sshd_drop_in(config)
    install = install_packages_step(config, packages or [])
    after_packages = (install.id,) if install else ()

    return [
        *([install] if install else []),
        Step(
            id="create-install-dir",
            description=f"Create {guest_files.INSTALL_DIR}",
            checks=(Condition(kind="dir_exists", target=guest_files.INSTALL_DIR),),
            adapter="filesystem",
            params={
                "operation": "mkdir",
                "path": guest_files.INSTALL_DIR,
                "mode": "0755",
                "owner": f"{user}:{user}",
            },
        ),
        Step(
            id="create-venv",
            description="Create the agent virtual environment",
            depends_on=("create-install-dir", *after_packages),
            checks=(Condition(kind="file_exists", target=f"{venv}/bin/activate"),),
            params={
                "command": "command -v python3 >/dev/null || pacman -S --noconfirm --needed python; "
                           f"runuser -u {user} -- python3 -m venv {venv}",
            },
        ),
        Step(
            id="install-aider",
            description="Install aider",
            depends_on=("create-venv",),
            checks=(Condition(kind="file_exists", target=f"{venv}/bin/aider"),),
            params={"command": f"{pip} {q(_AIDER_SPEC)}"},
            retry=_PACKAGE_RETRY,
        ),
        Step(
            id="install-opencode",
            description="Install opencode",
            depends_on=("create-venv",),
            checks=(Condition(kind="file_exists", target=f"{venv}/bin/opencode"),),
            params={"command": f"{pip} {q(_OPENCODE_SPEC)}"},
            retry=_PACKAGE_RETRY,
        ),
        Step(
            id="install-claude-code",
            description="Install claude-code (npm)",
            depends_on=after_packages,
            checks=(Condition(kind="command_available", target="claude"),),
            params={
                "command": "command -v npm >/dev/null || pacman -S --noconfirm --needed nodejs npm; "
                           f"npm install -g {q(_CLAUDE_CODE_SPEC)}",
            },
            severity="recoverable",
            retry=_PACKAGE_RETRY,
        ),
        Step(
            id="install-api-dependencies",
            description="Install agent API dependencies",
            depends_on=("create-venv",),
            checks=(Condition(kind="file_exists", target=f"{venv}/bin/uvicorn"),),
            params={"command": f"{pip} " + " ".join(q(r) for r in _API_REQUIREMENTS)},
            retry=_PACKAGE_RETRY,
        ),
        write_step(
            "write-api-start-script",
            "Write the API start script",
            [guest_files.generate_api_start_script(config)],
            depends_on=("create-venv",),
        ),
        write_step(
            "write-api-unit",
            f"Write {guest_files.API_UNIT}",
            [guest_files.generate_api_unit(config)],
            depends_on=("write-api-start-script",),
        ),
        Step(
            id="enable-api-service",
            description=f"Enable and start {guest_files.API_UNIT}",
            depends_on=("write-api-unit", "install-api-dependencies"),
            checks=(Condition(kind="service_active", target=guest_files.API_UNIT),),
            params={
                "command": f"systemctl daemon-reload && systemctl enable --now {guest_files.API_UNIT}",
            },
        ),
        write_step(
            "write-ssh-wrapper",
            "Write the SSH tmux wrapper",
            [guest_files.generate_ssh_wrapper(config)],
            depends_on=("create-install-dir",),
        ),
        Step(
            id="configure-sshd",
            description="Force the tmux wrapper for the agent user and reload sshd",
            depends_on=("write-ssh-wrapper",),
            checks=(Condition(kind="file_equals", target=sshd.path, value=sshd.content),),
            params={
                "command": f"install -D -m {sshd.mode} /dev/null {q(sshd.path)} "
                           f"&& printf '%s' {q(sshd.content)} > {q(sshd.path)} "
                           "&& systemctl reload sshd.service",
            },
        ),
        write_step(
            "write-cleanup-units",
            "Write the recording cleanup service and timer",
            [
                guest_files.generate_cleanup_service(config),
                guest_files.generate_cleanup_timer(config),
            ],
        ),
        Step(
            id="enable-cleanup-timer",
            description=f"Enable {guest_files.CLEANUP_TIMER}",
            depends_on=("write-cleanup-units",),
            checks=(Condition(kind="service_active", target=guest_files.CLEANUP_TIMER),),
            params={
                "command": f"systemctl daemon-reload && systemctl enable --now {guest_files.CLEANUP_TIMER}",
            },
        ),
        write_step(
            "write-activation-script",
            "Write the venv activation script",
            [guest_files.generate_activation_script(config)],
            depends_on=("create-install-dir",),
        ),
        write_step(
            "write-api-env",
            "Write the API environment file",
            [guest_files.generate_api_env(config)],
            depends_on=("write-api-start-script",),
            exact=False,
        ),
    ]


# ── Assembly ────────────────────────────────────────────────────


def variant_base_dir(project: ProjectConfig, variant: Variant) -> Path:
    """Directory the variant's relative paths resolve against."""
    return Path(project.root) / project.variant(variant).work_dir


def resolve_packages(project: ProjectConfig, variant: Variant) -> list[str]:
    """Effective package list of the variant's manifest ([] when it has none).

    Raises:
        ManifestError: If the manifest or one of its includes is broken.
    """
    config = project.variant(variant)
    if not config.manifest:
        return []
    return effective_packages(locate_manifest(config.manifest, variant_base_dir(project, variant)))


def build_steps(project: ProjectConfig, variant: Variant, stage: Stage = "host") -> list[Step]:
    """The built-in step list for one variant and stage, in registration order."""
    config = project.variant(variant)
    if stage == "host":
        if variant == Variant.ARCH:
            return arch_host_steps(config, resolve_packages(project, variant))
        if variant == Variant.NIXOS:
            return nixos_host_steps(config)
    elif stage == "guest":
        if variant == Variant.ARCH:
            return arch_guest_steps(config, resolve_packages(project, variant))
        if variant == Variant.NIXOS:
            return []
    raise ValueError(f"No pipeline for variant={variant!r} stage={stage!r}")


def build_registry(project: ProjectConfig, variant: Variant, stage: Stage = "host") -> StepRegistry:
    """Registry holding the variant's built-in steps, restricted to it."""
    registry = StepRegistry()
    for step in build_steps(project, variant, stage):
        registry.register(step.model_copy(update={"variants": frozenset({variant})}))
    logger.debug("Built %s %s pipeline: %d steps", variant, stage, len(registry))
    return registry


def required_tools(project: ProjectConfig, variant: Variant, stage: Stage = "host") -> tuple[str, ...]:
    if stage == "guest":
        return GUEST_REQUIRED_TOOLS if variant == Variant.ARCH else ()
    return project.variant(variant).required_tools
