"""
Shared test fixtures and configuration.
"""

from pathlib import Path

import pytest

from agentvm.core.models.project import ProjectConfig
from agentvm.core.models.variant import Variant, default_variant_config


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def tmp_state_dir(tmp_path: Path) -> Path:
    """Return a temporary directory for state files."""
    state_dir = tmp_path / "state"
    state_dir.mkdir()
    return state_dir


@pytest.fixture
def project(tmp_path: Path) -> ProjectConfig:
    """Stock configuration rooted in a temp dir, with no host tools required."""
    return ProjectConfig(
        root=str(tmp_path),
        variants={
            v: default_variant_config(v, required_tools=()) for v in Variant
        },
    )


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    """A minimal agentvm.yml in a temp dir."""
    path = tmp_path / "agentvm.yml"
    path.write_text(
        "name: test-distribution\n"
        "variants:\n"
        "  arch:\n"
        "    required_tools: []\n"
        "    ssh_port: 2299\n"
        "  nixos:\n"
        "    required_tools: []\n"
    )
    return path
