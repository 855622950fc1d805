"""
Error taxonomy for provisioning runs.

ConfigurationError and DependencyError are raised before any step
executes. ExecutionError and HealthTimeoutError describe what happened
during a run. StateInspectionError never leaves the idempotency checker:
it degrades to "not satisfied" with a warning.
"""

from __future__ import annotations


class AgentVMError(Exception):
    """Base class for every error raised by agentvm."""


# ── Configuration ───────────────────────────────────────────────


class ConfigurationError(AgentVMError):
    """Raised when configuration, a manifest, or a required tool is invalid."""


class ManifestError(ConfigurationError):
    """Raised when a package manifest cannot be resolved."""


class MissingToolError(ConfigurationError):
    """Raised when a required host tool is not on PATH."""

    def __init__(self, tools: list[str]):
        self.tools = list(tools)
        super().__init__(f"Required tool(s) not installed: {', '.join(self.tools)}")


# ── Dependencies ────────────────────────────────────────────────


class DependencyError(AgentVMError):
    """Raised when the step graph is invalid."""


class DuplicateStepError(DependencyError):
    def __init__(self, step_id: str):
        self.step_id = step_id
        super().__init__(f"Duplicate step ID: {step_id}")


class MissingDependencyError(DependencyError):
    def __init__(self, step_id: str, dependency: str):
        self.step_id = step_id
        self.dependency = dependency
        super().__init__(f"Step '{step_id}' depends on unknown step '{dependency}'")


class CyclicDependencyError(DependencyError):
    def __init__(self, step_ids: list[str]):
        self.step_ids = list(step_ids)
        super().__init__(
            f"Dependency cycle detected between steps: {', '.join(self.step_ids)}"
        )


# ── Runtime ─────────────────────────────────────────────────────


class ExecutionError(AgentVMError):
    """A step's action exited non-zero."""

    def __init__(self, step_id: str, message: str, fatal: bool = True):
        self.step_id = step_id
        self.fatal = fatal
        super().__init__(f"{step_id}: {message}")


class HealthTimeoutError(AgentVMError):
    """A health check did not succeed within its timeout."""

    def __init__(self, name: str, timeout: float, attempts: int, last_state: str):
        self.name = name
        self.timeout = timeout
        self.attempts = attempts
        self.last_state = last_state
        super().__init__(
            f"Health check '{name}' timed out after {timeout:g}s "
            f"({attempts} attempts, last state: {last_state})"
        )


class StateInspectionError(AgentVMError):
    """An idempotency predicate could not be evaluated."""


class RunLockError(AgentVMError):
    """Another pipeline already holds the lock for this variant."""
