"""
Configuration loader — reads agentvm.yml into domain models.

The directory holding agentvm.yml is the distribution root: every
relative path in the configuration (work dirs, manifests, disks) is
resolved against it. Without a config file the current directory is
the root and stock defaults apply.

Environment overrides:
    ISO_PATH            Arch ISO location
    HOST_PROJECTS_PATH  host directory shared into the Arch VM
    CPU_ISOLATION       non-empty → pin CPUs and enable KVM
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from agentvm.core.errors import ConfigurationError
from agentvm.core.models.project import ProjectConfig
from agentvm.core.models.variant import Variant, default_variant_config

logger = logging.getLogger(__name__)

# Default config filename
CONFIG_FILE = "agentvm.yml"

_VARIANT_ENV: dict[str, tuple[Variant, str]] = {
    "ISO_PATH": (Variant.ARCH, "iso_path"),
    "HOST_PROJECTS_PATH": (Variant.ARCH, "host_projects_path"),
    "CPU_ISOLATION": (Variant.ARCH, "cpu_isolation"),
}


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """Search for agentvm.yml starting from the given directory, walking up."""
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / CONFIG_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    return None


def load_config(
    path: Path | None = None,
    root: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> ProjectConfig:
    """Load and validate the distribution configuration.

    Args:
        path: Explicit path to agentvm.yml. If None, searches upward
            from ``root`` (or cwd); a missing file means defaults.
        root: Distribution root to use when no config file is found.
        env: Environment for overrides (default: ``os.environ``).

    Raises:
        ConfigurationError: If an explicit file is missing, or any
            file is unreadable or invalid.
    """
    env = os.environ if env is None else env
    data: dict[str, Any] = {}

    if path is None:
        path = find_config_file(root)
    elif not path.is_file():
        raise ConfigurationError(f"Config file not found: {path}")

    if path is not None:
        data = _read_yaml(path)
        root = path.parent

    root = (root or Path.cwd()).resolve()

    variant_overrides = data.pop("variants", None) or {}
    if not isinstance(variant_overrides, dict):
        raise ConfigurationError("'variants' must be a mapping of variant name → settings")

    unknown = sorted(set(map(str, variant_overrides)) - {v.value for v in Variant})
    if unknown:
        raise ConfigurationError(
            f"Unknown variant(s) in config: {', '.join(unknown)} "
            f"(expected: {', '.join(v.value for v in Variant)})"
        )

    variants = {}
    for variant in Variant:
        overrides = dict(variant_overrides.get(variant.value) or {})
        overrides.update(_env_overrides(variant, env))
        try:
            variants[variant] = default_variant_config(variant, **overrides)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid settings for variant '{variant}': {e}") from e

    try:
        config = ProjectConfig.model_validate({**data, "root": str(root), "variants": variants})
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e

    logger.info("Loaded configuration (root=%s, file=%s)", root, path or "defaults")
    return config


def resolve_path(config: ProjectConfig, *parts: str) -> Path:
    """Resolve a path relative to the distribution root."""
    return Path(config.root).joinpath(*parts)


def _read_yaml(path: Path) -> dict[str, Any]:
    logger.debug("Loading config from %s", path)
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")
    return data


def _env_overrides(variant: Variant, env: Mapping[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for name, (target, field_name) in _VARIANT_ENV.items():
        value = env.get(name)
        if target != variant or value is None:
            continue
        if field_name == "cpu_isolation":
            overrides[field_name] = bool(value)
        else:
            overrides[field_name] = value
    return overrides
