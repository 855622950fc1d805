"""
Tests for CLI commands — global options, pipeline, packages, render,
parity and status.
"""

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from agentvm.core.engine import checker as checker_module
from agentvm.core.observability.health import HealthVerifier
from agentvm.main import cli


def _invoke(config_file: Path, *args: str):
    return CliRunner().invoke(cli, ["--config", str(config_file), *args])


class TestCLIGlobal:
    """Tests for global CLI behavior."""

    def test_help(self):
        result = CliRunner().invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "AgentVM" in result.output
        for command in ("select", "pipeline", "parity", "packages", "render", "status"):
            assert command in result.output

    def test_version(self):
        result = CliRunner().invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_missing_config_file(self, tmp_path: Path):
        result = CliRunner().invoke(cli, ["--config", str(tmp_path / "nope.yml"), "status"])
        assert result.exit_code == 1
        assert "Config file not found" in result.output

    def test_invalid_variant_in_config(self, tmp_path: Path):
        config = tmp_path / "agentvm.yml"
        config.write_text("variants:\n  debian: {}\n")
        result = CliRunner().invoke(cli, ["--config", str(config), "status"])
        assert result.exit_code == 1
        assert "debian" in result.output


class TestPipelineCommands:
    def test_plan_arch(self, config_file: Path):
        result = _invoke(config_file, "pipeline", "plan", "arch")
        assert result.exit_code == 0
        assert "create-directories" in result.output
        assert "boot-vm" in result.output
        assert "recoverable" in result.output

    def test_plan_json_order(self, config_file: Path):
        result = _invoke(config_file, "pipeline", "plan", "arch", "--json")
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        ids = [s["id"] for s in data["steps"]]
        assert ids[0] == "create-directories"
        assert ids[-1] == "boot-vm"
        assert ids.index("download-iso") < ids.index("download-iso-signature")

    def test_plan_variant_case_insensitive(self, config_file: Path):
        result = _invoke(config_file, "pipeline", "plan", "NIXOS")
        assert result.exit_code == 0
        assert "nix-build-image" in result.output

    def test_plan_empty_guest_stage(self, config_file: Path):
        result = _invoke(config_file, "pipeline", "plan", "nixos", "--stage", "guest")
        assert result.exit_code == 0
        assert "no guest steps" in result.output

    def test_plan_broken_manifest(self, tmp_path: Path):
        config = tmp_path / "agentvm.yml"
        config.write_text("variants:\n  arch:\n    manifest: missing.txt\n")
        result = CliRunner().invoke(cli, ["--config", str(config), "pipeline", "plan", "arch"])
        assert result.exit_code == 1
        assert "missing.txt" in result.output

    def test_unknown_variant_rejected(self, config_file: Path):
        result = _invoke(config_file, "pipeline", "plan", "debian")
        assert result.exit_code != 0

    def test_run_mock(self, config_file: Path):
        result = _invoke(config_file, "pipeline", "run", "arch", "--mock", "--json")
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["run"]["status"] == "ok"
        assert data["run"]["failed"] == 0
        assert (config_file.parent / ".agentvm" / "audit.ndjson").is_file()

    def test_health(self, config_file: Path, monkeypatch):
        monkeypatch.setattr(HealthVerifier, "probe_once", lambda self, spec: (True, "HTTP 200"))
        result = _invoke(config_file, "pipeline", "health", "arch", "--json")
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["status"] == "healthy"
        assert [c["name"] for c in data["components"]] == ["ssh", "agent-api"]

    def test_run_dry_run_writes_nothing(self, config_file: Path):
        result = _invoke(config_file, "pipeline", "run", "arch", "--dry-run", "--no-health")
        assert result.exit_code == 0
        assert "(dry run)" in result.output
        assert not (config_file.parent / "arch-vm" / "cloud-init").exists()


class TestPackagesCommands:
    def test_list(self):
        result = CliRunner().invoke(cli, ["packages", "list"])
        assert result.exit_code == 0
        assert "standard" in result.output

    def test_resolve_bundled(self):
        result = CliRunner().invoke(cli, ["packages", "resolve", "standard", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert "docker" in data["packages"]
        assert data["count"] == len(data["packages"])

    def test_resolve_file(self, tmp_path: Path):
        (tmp_path / "base.txt").write_text("base\ngit\n")
        (tmp_path / "mine.txt").write_text("@base.txt\ndocker\ngit\n")
        result = CliRunner().invoke(cli, ["packages", "resolve", str(tmp_path / "mine.txt")])
        assert result.exit_code == 0
        assert result.stdout.splitlines()[:3] == ["base", "git", "docker"]

    def test_resolve_missing(self, tmp_path: Path):
        result = CliRunner().invoke(cli, ["packages", "resolve", str(tmp_path / "none.txt")])
        assert result.exit_code == 1


class TestRenderCommands:
    def test_cloud_init(self, config_file: Path):
        result = _invoke(config_file, "render", "cloud-init", "arch")
        assert result.exit_code == 0
        assert "#cloud-config" in result.output
        assert "docker" in result.output

    def test_launch_script(self, config_file: Path):
        result = _invoke(config_file, "render", "launch-script")
        assert result.exit_code == 0
        assert "qemu-system-x86_64" in result.output
        assert "hostfwd=tcp::2299-:22" in result.output

    def test_units(self, config_file: Path):
        result = _invoke(config_file, "render", "units", "arch", "--json")
        assert result.exit_code == 0
        paths = [f["path"] for f in json.loads(result.stdout)]
        assert "/etc/systemd/system/agent-api.service" in paths

    def test_nixos_not_rendered(self, config_file: Path):
        result = _invoke(config_file, "render", "cloud-init", "nixos")
        assert result.exit_code == 1
        assert "flake" in result.output


class TestParityCommand:
    @pytest.fixture
    def probes(self, monkeypatch):
        def set_all(answer: bool) -> None:
            monkeypatch.setattr(
                checker_module,
                "DEFAULT_PROBES",
                {kind: (lambda cond, base_dir: answer) for kind in checker_module.DEFAULT_PROBES},
            )
        return set_all

    def test_all_present_passes(self, config_file: Path, probes):
        probes(True)
        result = _invoke(config_file, "parity")
        assert result.exit_code == 0
        assert "Feature Parity Report" in result.output
        assert "→ PASS" in result.output

    def test_all_missing_fails(self, config_file: Path, probes):
        probes(False)
        result = _invoke(config_file, "parity", "--threshold", "50")
        assert result.exit_code == 1
        assert "✗ nixos/api-health" in result.output
        assert "✗ arch/api-health" in result.output

    def test_json(self, config_file: Path, probes):
        probes(True)
        result = _invoke(config_file, "parity", "--json")
        data = json.loads(result.stdout)
        assert data["passed"] is True
        assert data["threshold"] == 80.0


class TestStatusCommand:
    def test_status_before_any_run(self, config_file: Path):
        result = _invoke(config_file, "status")
        assert result.exit_code == 0
        assert "test-distribution" in result.output
        assert "Last run: never" in result.output
        assert "ssh agent@127.0.0.1 -p 2299" in result.output

    def test_status_after_mock_run(self, config_file: Path):
        _invoke(config_file, "pipeline", "run", "nixos", "--mock")
        result = _invoke(config_file, "status", "--json")
        data = json.loads(result.stdout)
        assert data["variants"]["nixos"]["last_run"]["status"] == "ok"
        assert data["variants"]["arch"]["last_run"] is None
