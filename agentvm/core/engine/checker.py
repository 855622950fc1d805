"""
Idempotency checker — does a step's goal state already hold?

Every condition is evaluated against live state at the moment of the
call; nothing is cached between steps or runs. Evaluation is read-only.
If a condition cannot be evaluated (StateInspectionError) the step is
reported as not satisfied and a warning is recorded, so provisioning
proceeds instead of stalling on inspection.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

from agentvm.core.errors import ConfigurationError, StateInspectionError
from agentvm.core.models.step import Condition, Step
from agentvm.core.services import probes
from agentvm.core.services.manifest import effective_packages, locate_manifest

logger = logging.getLogger(__name__)

Probe = Callable[[Condition, Path], bool]


def _resolve(target: str, base_dir: Path) -> Path:
    path = Path(target).expanduser()
    return path if path.is_absolute() else base_dir / path


def _file_exists(cond: Condition, base_dir: Path) -> bool:
    return probes.path_kind(_resolve(cond.target, base_dir)) == "file"


def _dir_exists(cond: Condition, base_dir: Path) -> bool:
    return probes.path_kind(_resolve(cond.target, base_dir)) == "dir"


def _file_equals(cond: Condition, base_dir: Path) -> bool:
    return probes.read_text(_resolve(cond.target, base_dir)) == cond.value


def _file_contains(cond: Condition, base_dir: Path) -> bool:
    text = probes.read_text(_resolve(cond.target, base_dir))
    return text is not None and cond.value in text


def _command_available(cond: Condition, base_dir: Path) -> bool:
    return probes.command_path(cond.target) is not None


def _service_active(cond: Condition, base_dir: Path) -> bool:
    return probes.service_state(cond.target) == "active"


def _port_open(cond: Condition, base_dir: Path) -> bool:
    return probes.tcp_reachable(cond.target)


def _http_ok(cond: Condition, base_dir: Path) -> bool:
    expected = int(cond.value) if cond.value else 200
    return probes.http_status(cond.target) == expected


def _packages_installed(cond: Condition, base_dir: Path) -> bool:
    try:
        packages = effective_packages(locate_manifest(cond.target, base_dir))
    except ConfigurationError as e:
        raise StateInspectionError(str(e)) from e
    missing = probes.missing_packages(packages)
    if missing:
        logger.debug("%d package(s) not installed: %s", len(missing), ", ".join(missing[:10]))
    return not missing


DEFAULT_PROBES: dict[str, Probe] = {
    "file_exists": _file_exists,
    "dir_exists": _dir_exists,
    "file_equals": _file_equals,
    "file_contains": _file_contains,
    "command_available": _command_available,
    "service_active": _service_active,
    "port_open": _port_open,
    "http_ok": _http_ok,
    "packages_installed": _packages_installed,
}


class IdempotencyChecker:
    """Evaluate step conditions relative to a variant's working directory.

    Args:
        base_dir: Directory relative condition targets resolve against.
        overrides: Probes replacing entries of the default table.
    """

    def __init__(self, base_dir: Path, overrides: dict[str, Probe] | None = None):
        self.base_dir = base_dir
        self._probes = {**DEFAULT_PROBES, **(overrides or {})}
        self.warnings: list[str] = []

    def evaluate(self, condition: Condition) -> bool:
        """Evaluate one condition.

        Raises:
            StateInspectionError: If the condition could not be evaluated.
        """
        probe = self._probes.get(condition.kind)
        if probe is None:
            raise StateInspectionError(f"No probe for condition kind '{condition.kind}'")
        try:
            return bool(probe(condition, self.base_dir))
        except StateInspectionError:
            raise
        except OSError as e:
            raise StateInspectionError(f"{condition.describe()}: {e}") from e

    def is_satisfied(self, step: Step) -> bool:
        """Whether every condition of ``step`` holds right now.

        Steps without conditions are never satisfied.
        """
        if not step.checks:
            return False

        for condition in step.checks:
            try:
                if not self.evaluate(condition):
                    logger.debug("Step '%s' not satisfied: %s", step.id, condition.describe())
                    return False
            except StateInspectionError as e:
                message = f"{step.id}: cannot inspect {condition.describe()} ({e}) — running step"
                logger.warning(message)
                self.warnings.append(message)
                return False

        return True
