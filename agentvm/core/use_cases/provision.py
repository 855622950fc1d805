"""
Provision use case — run one variant's pipeline end to end.

This is the entry point both the interactive selector and the direct
``--nixos`` / ``--arch`` flags call, so the two paths cannot drift:

    load config → build + order steps → preflight → lock → execute
    → health verification (separate phase) → audit

Configuration and dependency problems are reported before any step
runs. Health results never change step outcomes.
"""

from __future__ import annotations

import contextlib
import logging
import os
import signal
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from pathlib import Path

from agentvm.adapters import (
    AdapterRegistry,
    FilesystemAdapter,
    ProbeAdapter,
    RetryAdapter,
    ShellCommandAdapter,
)
from agentvm.core.config.loader import load_config, resolve_path
from agentvm.core.engine.checker import IdempotencyChecker
from agentvm.core.engine.executor import (
    CancelToken,
    Executor,
    PipelineRun,
    generate_operation_id,
    write_audit_entry,
)
from agentvm.core.engine.lock import RunLock
from agentvm.core.errors import (
    ConfigurationError,
    DependencyError,
    MissingToolError,
    RunLockError,
)
from agentvm.core.models.project import ProjectConfig
from agentvm.core.models.step import Step
from agentvm.core.models.variant import Variant
from agentvm.core.observability.health import HealthVerifier, SystemHealth, verify_variant
from agentvm.core.persistence.audit import AuditWriter
from agentvm.core.services import probes
from agentvm.core.services.pipelines import (
    Stage,
    build_registry,
    required_tools,
)

logger = logging.getLogger(__name__)

OS_RELEASE = Path("/etc/os-release")


@dataclass
class ProvisionResult:
    """Result of provisioning one variant."""

    variant: Variant
    stage: str = "host"
    run: PipelineRun | None = None
    health: SystemHealth | None = None
    error: str | None = None
    error_type: str | None = None

    @property
    def ok(self) -> bool:
        if self.error or self.run is None:
            return False
        return not self.run.fatal and not self.run.cancelled

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1

    def to_dict(self) -> dict:
        result: dict = {"variant": self.variant.value, "stage": self.stage}
        if self.error:
            result["error"] = self.error
            result["error_type"] = self.error_type
            return result
        if self.run:
            result["run"] = self.run.to_dict()
        if self.health:
            result["health"] = self.health.to_dict()
        return result


# ── Wiring ──────────────────────────────────────────────────────


def default_adapters(
    checker: IdempotencyChecker,
    mock_mode: bool = False,
    sleep: Callable[[float], None] = time.sleep,
) -> AdapterRegistry:
    """Adapter registry with every built-in adapter registered."""
    registry = AdapterRegistry(mock_mode=mock_mode)
    registry.register(ShellCommandAdapter())
    registry.register(FilesystemAdapter())
    registry.register(ProbeAdapter(checker))
    registry.register(RetryAdapter(registry, sleep=sleep))
    return registry


@contextlib.contextmanager
def cancel_on_interrupt(token: CancelToken) -> Iterator[None]:
    """First Ctrl-C cancels before the next step; a second one interrupts."""
    def handler(signum: int, frame: object) -> None:
        if token.cancelled:
            raise KeyboardInterrupt
        logger.warning("Interrupt received: finishing the current step, press Ctrl-C again to abort it")
        token.cancel()

    try:
        previous = signal.signal(signal.SIGINT, handler)
    except ValueError:
        # Not the main thread: leave signal handling alone
        yield
        return
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


# ── Preflight ───────────────────────────────────────────────────


def check_required_tools(tools: tuple[str, ...] | list[str]) -> None:
    """Raises MissingToolError naming every tool not on PATH."""
    missing = [t for t in tools if probes.command_path(t) is None]
    if missing:
        raise MissingToolError(missing)


def check_guest_host(os_release: Path = OS_RELEASE, euid: int | None = None) -> None:
    """The guest stage installs system-wide: Arch Linux and root only."""
    euid = os.geteuid() if euid is None else euid
    if euid != 0:
        raise ConfigurationError("The guest stage must be run as root")
    text = probes.read_text(os_release) or ""
    if "Arch Linux" not in text:
        raise ConfigurationError(f"The guest stage runs on Arch Linux only ({os_release})")


def plan_pipeline(project: ProjectConfig, variant: Variant, stage: Stage = "host") -> list[Step]:
    """Dependency-ordered steps for a variant.

    Raises:
        ConfigurationError: Broken manifest.
        DependencyError: Invalid step graph.
    """
    return build_registry(project, variant, stage).resolve_order(variant)


# ── Use case ────────────────────────────────────────────────────


def provision(
    variant: Variant,
    stage: Stage = "host",
    project: ProjectConfig | None = None,
    dry_run: bool = False,
    mock_mode: bool = False,
    verify_health: bool = True,
    cancel: CancelToken | None = None,
    adapters: AdapterRegistry | None = None,
    verifier: HealthVerifier | None = None,
    audit: bool = True,
) -> ProvisionResult:
    """Provision one variant.

    Args:
        variant: Which VM to provision.
        stage: 'host' (build and boot) or 'guest' (inside the Arch VM).
        project: Loaded configuration (default: ``load_config()``).
        dry_run: Validate and resolve every action without running it.
        mock_mode: Dispatch to the mock adapter; skips the tool check.
        verify_health: Run the variant's health checks after the host stage.
        cancel: Token checked before each step.
        adapters: Pre-configured adapter registry (tests).
        verifier: Health verifier (tests inject clock and sleep).
        audit: Append the run to the audit ledger.

    Returns:
        ProvisionResult; ``error`` is set when nothing was executed.
    """
    result = ProvisionResult(variant=variant, stage=stage)

    try:
        project = project or load_config()
        steps = plan_pipeline(project, variant, stage)

        if not mock_mode:
            check_required_tools(required_tools(project, variant, stage))
            if stage == "guest" and steps:
                check_guest_host()
    except (ConfigurationError, DependencyError) as e:
        logger.error("✗ %s", e)
        result.error = str(e)
        result.error_type = type(e).__name__
        return result

    # Guest steps use absolute paths and must not depend on a host checkout
    if stage == "guest":
        root, work_dir = "/", "."
    else:
        root, work_dir = project.root, project.variant(variant).work_dir

    checker = IdempotencyChecker(Path(root) / work_dir)
    if adapters is None:
        adapters = default_adapters(checker, mock_mode=mock_mode)

    executor = Executor(
        adapters,
        checker,
        root=root,
        work_dir=work_dir,
        output_limit=project.output_limit,
        dry_run=dry_run,
        cancel=cancel,
    )

    state_dir = resolve_path(project, project.state_dir)
    operation_id = generate_operation_id()
    logger.info("Provisioning %s (%s stage, %d steps)", variant.display_name, stage, len(steps))

    try:
        with RunLock(state_dir, variant):
            result.run = executor.run_pipeline(steps, variant, stage=stage, operation_id=operation_id)
    except RunLockError as e:
        logger.error("✗ %s", e)
        result.error = str(e)
        result.error_type = type(e).__name__
        return result

    if audit:
        write_audit_entry(result.run, AuditWriter(state_dir))

    # ── Verification phase ──────────────────────────────────────
    if (
        verify_health
        and stage == "host"
        and not dry_run
        and not mock_mode
        and result.ok
    ):
        result.health = verify_variant(project.variant(variant), verifier)

    return result
