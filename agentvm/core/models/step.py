"""
Step and StepResult models — the provisioning contract.

A Step is a named, idempotent unit of provisioning work: a set of
conditions that say "already done", an action that makes it so, and
the dependencies that must complete first. Steps are defined once when
the registry is built and never mutated.

A StepResult is written exactly once per step per run.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from agentvm.core.models.variant import Variant
from agentvm.core.reliability.retry import RetryPolicy


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


ConditionKind = Literal[
    "file_exists",
    "dir_exists",
    "file_equals",
    "file_contains",
    "command_available",
    "service_active",
    "port_open",
    "http_ok",
    "packages_installed",
]

Severity = Literal["fatal", "recoverable"]


class Condition(BaseModel):
    """A side-effect-free predicate over live system state.

    ``target`` is a path, command, unit, ``host:port``, URL, or manifest
    path depending on ``kind``. ``value`` carries the expected content
    for ``file_equals`` / ``file_contains``.
    """

    model_config = ConfigDict(frozen=True)

    kind: ConditionKind
    target: str
    value: str = ""

    def describe(self) -> str:
        if self.kind == "file_contains":
            return f"{self.target} contains {self.value!r}"
        return f"{self.kind}:{self.target}"


class Step(BaseModel):
    """A single provisioning step.

    An empty ``checks`` tuple means the step is never considered
    satisfied and always runs. An empty ``variants`` set means the step
    applies to every variant.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    description: str = ""
    depends_on: tuple[str, ...] = ()
    checks: tuple[Condition, ...] = ()

    # The action
    adapter: str = "shell"
    params: dict[str, Any] = Field(default_factory=dict)
    timeout: int = 3600

    severity: Severity = "fatal"
    retry: RetryPolicy | None = None
    variants: frozenset[Variant] = frozenset()

    @property
    def fatal(self) -> bool:
        return self.severity == "fatal"

    def applies_to(self, variant: Variant) -> bool:
        return not self.variants or variant in self.variants


class Outcome(StrEnum):
    """Terminal state of a step within one run."""

    SKIPPED = "skipped"
    SUCCEEDED = "succeeded"
    FAILED_RECOVERABLE = "failed_recoverable"
    FAILED_FATAL = "failed_fatal"
    SKIPPED_DUE_TO_FAILURE = "skipped_due_to_failure"
    CANCELLED = "cancelled"


_FAILED = {Outcome.FAILED_RECOVERABLE, Outcome.FAILED_FATAL}
_NOT_ATTEMPTED = {
    Outcome.SKIPPED,
    Outcome.SKIPPED_DUE_TO_FAILURE,
    Outcome.CANCELLED,
}


class StepResult(BaseModel):
    """Immutable record of one step execution."""

    model_config = ConfigDict(frozen=True)

    step_id: str
    outcome: Outcome
    description: str = ""
    output: str = ""
    error: str | None = None
    timestamp: str = Field(default_factory=_now_iso)
    duration_ms: int = 0
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.outcome == Outcome.SUCCEEDED

    @property
    def failed(self) -> bool:
        return self.outcome in _FAILED

    @property
    def attempted(self) -> bool:
        return self.outcome not in _NOT_ATTEMPTED

    @property
    def marker(self) -> str:
        if self.ok:
            return "✓"
        if self.failed:
            return "✗"
        return "⊘"
