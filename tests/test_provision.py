"""
Tests for the provision use case — preflight, execution, idempotent
re-runs, health verification and locking.
"""

import socket
import stat
from pathlib import Path

import pytest

from agentvm.adapters.mock import MockAdapter
from agentvm.adapters.registry import AdapterRegistry
from agentvm.adapters.retry import RetryAdapter
from agentvm.adapters.shell.filesystem import FilesystemAdapter
from agentvm.core.engine.lock import RunLock
from agentvm.core.errors import ConfigurationError
from agentvm.core.models.project import ProjectConfig
from agentvm.core.models.step import Outcome
from agentvm.core.models.variant import Variant
from agentvm.core.observability.health import HealthVerifier
from agentvm.core.persistence.audit import AuditWriter
from agentvm.core.use_cases.provision import (
    check_guest_host,
    check_required_tools,
    plan_pipeline,
    provision,
)


def _closed_port() -> int:
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture
def arch_project(project: ProjectConfig) -> ProjectConfig:
    """Stock project whose Arch SSH port is guaranteed closed."""
    arch = project.variant(Variant.ARCH).model_copy(update={"ssh_port": _closed_port()})
    return project.model_copy(update={"variants": {**project.variants, Variant.ARCH: arch}})


def _adapters() -> tuple[AdapterRegistry, MockAdapter]:
    """Real filesystem writes, simulated shell commands."""
    registry = AdapterRegistry()
    shell = MockAdapter(adapter_name="shell")
    registry.register(shell)
    registry.register(FilesystemAdapter())
    registry.register(RetryAdapter(registry, sleep=lambda s: None))
    return registry, shell


def _healthy() -> HealthVerifier:
    return HealthVerifier(probe=lambda spec: (True, "ok"))


class TestPreflight:
    def test_missing_tool_stops_before_any_step(self, project: ProjectConfig):
        nixos = project.variant(Variant.NIXOS).model_copy(
            update={"required_tools": ("agentvm-missing-tool",)}
        )
        project = project.model_copy(update={"variants": {**project.variants, Variant.NIXOS: nixos}})
        registry, shell = _adapters()

        result = provision(Variant.NIXOS, project=project, adapters=registry)

        assert not result.ok
        assert result.exit_code == 1
        assert result.run is None
        assert result.error_type == "MissingToolError"
        assert "agentvm-missing-tool" in result.error
        assert shell.call_count == 0

    def test_check_required_tools_names_all_missing(self):
        with pytest.raises(ConfigurationError) as exc:
            check_required_tools(["sh", "agentvm-nope-1", "agentvm-nope-2"])
        assert exc.value.tools == ["agentvm-nope-1", "agentvm-nope-2"]

    def test_broken_manifest_reported(self, project: ProjectConfig):
        arch = project.variant(Variant.ARCH).model_copy(update={"manifest": "missing.txt"})
        project = project.model_copy(update={"variants": {**project.variants, Variant.ARCH: arch}})

        result = provision(Variant.ARCH, project=project, adapters=_adapters()[0])

        assert result.error_type == "ManifestError"
        assert result.run is None

    def test_guest_host_requires_root(self, tmp_path: Path):
        release = tmp_path / "os-release"
        release.write_text('NAME="Arch Linux"\n')
        with pytest.raises(ConfigurationError, match="root"):
            check_guest_host(release, euid=1000)
        check_guest_host(release, euid=0)

    def test_guest_host_requires_arch(self, tmp_path: Path):
        release = tmp_path / "os-release"
        release.write_text('NAME="Ubuntu"\n')
        with pytest.raises(ConfigurationError, match="Arch Linux only"):
            check_guest_host(release, euid=0)

    def test_plan_is_dependency_ordered(self, project: ProjectConfig):
        ids = [s.id for s in plan_pipeline(project, Variant.ARCH)]
        assert ids.index("create-directories") < ids.index("download-iso")
        assert ids.index("download-iso") < ids.index("verify-iso-signature")
        assert ids[-1] == "boot-vm"


class TestProvisionArch:
    def test_first_run_writes_files(self, arch_project: ProjectConfig, tmp_path: Path):
        registry, shell = _adapters()

        result = provision(Variant.ARCH, project=arch_project, adapters=registry, verifier=_healthy())

        assert result.ok
        assert result.run.status == "ok"
        assert result.run.result("create-directories").outcome == Outcome.SUCCEEDED
        work = tmp_path / "arch-vm"
        assert (work / "iso").is_dir()
        assert (work / "cloud-init" / "user-data").read_text().startswith("#cloud-config")
        launch = work / "launch-vm.sh"
        assert stat.S_IMODE(launch.stat().st_mode) == 0o755
        assert "download-iso" in shell.executed_ids
        assert "boot-vm" in shell.executed_ids

    def test_second_run_skips_satisfied_steps(self, arch_project: ProjectConfig):
        registry, _ = _adapters()
        provision(Variant.ARCH, project=arch_project, adapters=registry, verifier=_healthy())

        registry, shell = _adapters()
        result = provision(Variant.ARCH, project=arch_project, adapters=registry, verifier=_healthy())

        for step_id in ("create-directories", "render-cloud-init", "write-launch-script"):
            assert result.run.result(step_id).outcome == Outcome.SKIPPED
        # The mock shell never produced the ISO, so the download still runs
        assert result.run.result("download-iso").outcome == Outcome.SUCCEEDED
        assert "download-iso" in shell.executed_ids

    def test_health_is_a_separate_phase(self, arch_project: ProjectConfig):
        registry, _ = _adapters()
        result = provision(Variant.ARCH, project=arch_project, adapters=registry, verifier=_healthy())

        assert result.health is not None
        assert result.health.healthy
        assert [c.name for c in result.health.components] == ["ssh", "agent-api"]
        assert "health" in result.to_dict()

    def test_failed_health_leaves_steps_alone(self, arch_project: ProjectConfig):
        registry, _ = _adapters()
        verifier = HealthVerifier(
            clock=iter(range(0, 10_000)).__next__,
            sleep=lambda s: None,
            probe=lambda spec: (False, "refused"),
        )
        result = provision(Variant.ARCH, project=arch_project, adapters=registry, verifier=verifier)

        assert not result.health.healthy
        assert result.run.status == "ok"
        assert result.ok

    def test_fatal_step_fails_run(self, arch_project: ProjectConfig):
        registry, shell = _adapters()
        shell.set_failure("create-disk", error="qemu-img: Could not create disk")

        result = provision(Variant.ARCH, project=arch_project, adapters=registry, verifier=_healthy())

        assert not result.ok
        assert result.run.aborted_by == "create-disk"
        assert result.health is None
        assert result.run.result("boot-vm").outcome == Outcome.SKIPPED_DUE_TO_FAILURE

    def test_dry_run_changes_nothing(self, arch_project: ProjectConfig, tmp_path: Path):
        registry, shell = _adapters()

        result = provision(Variant.ARCH, project=arch_project, adapters=registry, dry_run=True)

        assert result.ok
        assert result.health is None
        assert not (tmp_path / "arch-vm").exists()
        assert shell.call_count == 0
        assert all(r.outcome == Outcome.SKIPPED for r in result.run.results)

    def test_audit_entry_written(self, arch_project: ProjectConfig, tmp_path: Path):
        registry, _ = _adapters()
        result = provision(Variant.ARCH, project=arch_project, adapters=registry, verify_health=False)

        entries = AuditWriter(tmp_path / ".agentvm").read_all()
        assert len(entries) == 1
        assert entries[0].operation_id == result.run.operation_id
        assert entries[0].operation_type == "provision:host"
        assert entries[0].variant == "arch"

    def test_lock_held_reports_error(self, arch_project: ProjectConfig, tmp_path: Path):
        registry, shell = _adapters()
        with RunLock(tmp_path / ".agentvm", Variant.ARCH):
            result = provision(Variant.ARCH, project=arch_project, adapters=registry)

        assert result.error_type == "RunLockError"
        assert result.run is None
        assert shell.call_count == 0


class TestProvisionModes:
    def test_mock_mode_skips_tool_check_and_health(self, project: ProjectConfig):
        nixos = project.variant(Variant.NIXOS).model_copy(
            update={"required_tools": ("agentvm-missing-tool",)}
        )
        project = project.model_copy(update={"variants": {**project.variants, Variant.NIXOS: nixos}})

        result = provision(Variant.NIXOS, project=project, mock_mode=True)

        assert result.ok
        assert result.health is None
        assert [r.step_id for r in result.run.results] == ["nix-build-image", "boot-vm"]

    def test_empty_guest_stage(self, project: ProjectConfig):
        result = provision(Variant.NIXOS, stage="guest", project=project, adapters=_adapters()[0])
        assert result.ok
        assert result.run.total == 0
