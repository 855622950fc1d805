"""
Parity probes — the same feature checklist asked of both variants.

Each probe is a recoverable step run through the ``probe`` adapter, so
a missing feature is recorded as a failure and the sequence carries on.
Advisories (Arch unit hardening) are evaluated too but only warn.
Paths are relative to the distribution root.
"""

from __future__ import annotations

import logging

from agentvm.core.engine.registry import StepRegistry
from agentvm.core.models.project import ProjectConfig
from agentvm.core.models.step import Condition, Step
from agentvm.core.models.variant import Variant, VariantConfig
from agentvm.core.services.generators import guest_files, launch_script
from agentvm.core.services.generators.cloud_init import SEED_DIR
from agentvm.core.services.manifest import bundled_names, bundled_path

logger = logging.getLogger(__name__)

AGENTS = ("aider", "opencode", "claude")

DOCS = (
    "README.md",
    "docs/EXAMPLES.md",
    "docs/TROUBLESHOOTING.md",
    "arch-vm/README.md",
    "tools/agent_vm_client.py",
)

FLAKE = "flake.nix"
HARDENING = "NoNewPrivileges=true"
SELECTOR = "agentvm-select"


def _probe(step_id: str, description: str, condition: Condition) -> Step:
    return Step(
        id=step_id,
        description=description,
        adapter="probe",
        params={"condition": condition.model_dump()},
        severity="recoverable",
        timeout=30,
    )


def _api_probe(config: VariantConfig) -> Step:
    return _probe(
        "api-health",
        f"{config.display_name} API responds to health check",
        Condition(kind="http_ok", target=f"{config.api_url}/health"),
    )


def _selector_probe() -> Step:
    return _probe(
        "selector",
        "System selection command available",
        Condition(kind="command_available", target=SELECTOR),
    )


def _doc_probes() -> list[Step]:
    return [
        _probe(f"doc-{doc}", f"Documentation {doc} exists", Condition(kind="file_exists", target=doc))
        for doc in DOCS
    ]


def nixos_probes(config: VariantConfig) -> list[Step]:
    build_attr = config.flake_image.partition("#")[2] or config.flake_image
    return [
        _api_probe(config),
        *[
            _probe(f"agent-{a}", f"{a} is available", Condition(kind="command_available", target=a))
            for a in AGENTS
        ],
        _probe(
            "config-flake",
            "NixOS flake configuration exists",
            Condition(kind="file_contains", target=FLAKE, value="nixosSystem"),
        ),
        _probe(
            "build-target",
            f"Build target {build_attr} is declared",
            Condition(kind="file_contains", target=FLAKE, value=build_attr),
        ),
        _selector_probe(),
        *_doc_probes(),
        _probe(
            "security-hardening",
            "systemd hardening configured in the flake",
            Condition(kind="file_contains", target=FLAKE, value=HARDENING),
        ),
        _probe(
            "packages-nixpkgs",
            "nixpkgs is configured",
            Condition(kind="file_contains", target=FLAKE, value="nixpkgs"),
        ),
    ]


def arch_probes(config: VariantConfig) -> list[Step]:
    venv_bin = f"{guest_files.VENV_DIR}/bin"
    work = config.work_dir.rstrip("/")
    return [
        _api_probe(config),
        _probe("agent-aider", "aider installed", Condition(kind="file_exists", target=f"{venv_bin}/aider")),
        _probe(
            "agent-opencode",
            "opencode installed",
            Condition(kind="file_exists", target=f"{venv_bin}/opencode"),
        ),
        _probe(
            "agent-activate",
            "activation script installed",
            Condition(kind="file_exists", target=f"{guest_files.INSTALL_DIR}/activate.sh"),
        ),
        _probe(
            "config-cloud-init",
            "cloud-init seed rendered",
            Condition(kind="file_exists", target=f"{work}/{SEED_DIR}/user-data"),
        ),
        _probe(
            "build-target",
            "QEMU launch script rendered",
            Condition(kind="file_exists", target=f"{work}/{launch_script.LAUNCH_SCRIPT}"),
        ),
        _selector_probe(),
        *_doc_probes(),
        *[
            _probe(
                f"packages-{name}",
                f"Package list {name} exists",
                Condition(kind="file_exists", target=str(bundled_path(name))),
            )
            for name in bundled_names()
        ],
    ]


def build_parity_registry(project: ProjectConfig, variant: Variant) -> StepRegistry:
    config = project.variant(variant)
    if variant == Variant.NIXOS:
        steps = nixos_probes(config)
    elif variant == Variant.ARCH:
        steps = arch_probes(config)
    else:
        raise ValueError(f"No parity probes for variant {variant!r}")

    registry = StepRegistry()
    for step in steps:
        registry.register(step.model_copy(update={"variants": frozenset({variant})}))
    logger.debug("Built %s parity probes: %d", variant, len(registry))
    return registry


# ── Advisories ──────────────────────────────────────────────────


def arch_advisories() -> list[tuple[str, Condition]]:
    """Hardening of the Arch units: reported as warnings, never counted."""
    return [
        (
            f"{unit} hardening not fully configured",
            Condition(kind="file_contains", target=f"{guest_files.UNIT_DIR}/{unit}", value=HARDENING),
        )
        for unit in (guest_files.API_UNIT, guest_files.CLEANUP_SERVICE)
    ]


def advisories_for(variant: Variant) -> list[tuple[str, Condition]]:
    return arch_advisories() if variant == Variant.ARCH else []
