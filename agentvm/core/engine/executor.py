"""
Engine executor — runs one variant's pipeline, step by step.

Flow per step:
    cancelled? → dependency failed? → already satisfied? → dispatch → classify

A fatal failure aborts the rest of the variant's pipeline; a recoverable
one skips only the steps that (transitively) depend on it. The executor
never retries on its own — steps that carry a RetryPolicy are dispatched
through the ``retry`` adapter so each attempt is visible.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime

from agentvm.adapters.registry import AdapterRegistry
from agentvm.core.engine.checker import IdempotencyChecker
from agentvm.core.models.action import Action
from agentvm.core.models.step import Outcome, Step, StepResult
from agentvm.core.models.variant import Variant
from agentvm.core.persistence.audit import AuditEntry, AuditWriter

logger = logging.getLogger(__name__)


class CancelToken:
    """Cooperative cancellation flag, checked before each step."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class PipelineRun:
    """Ordered results of one pipeline run for one variant."""

    variant: Variant
    stage: str = "host"
    operation_id: str = ""
    results: list[StepResult] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    aborted_by: str | None = None
    cancelled: bool = False

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.failed)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if not r.attempted)

    @property
    def failed_steps(self) -> list[str]:
        return [r.step_id for r in self.results if r.failed]

    @property
    def fatal(self) -> bool:
        return self.aborted_by is not None

    @property
    def status(self) -> str:
        if self.cancelled:
            return "cancelled"
        if self.failed == 0:
            return "ok"
        if self.fatal:
            return "failed"
        return "partial"

    def result(self, step_id: str) -> StepResult | None:
        for r in self.results:
            if r.step_id == step_id:
                return r
        return None

    def to_dict(self) -> dict:
        return {
            "operation_id": self.operation_id,
            "variant": self.variant.value,
            "stage": self.stage,
            "status": self.status,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "aborted_by": self.aborted_by,
            "failed_steps": self.failed_steps,
            "warnings": self.warnings,
            "results": [r.model_dump(mode="json") for r in self.results],
        }


def build_action(step: Step) -> Action:
    """Turn a step into the action the adapter registry dispatches."""
    if step.retry is None:
        return Action(
            id=step.id,
            adapter=step.adapter,
            description=step.description,
            params=dict(step.params),
            timeout=step.timeout,
        )
    return Action(
        id=step.id,
        adapter="retry",
        description=step.description,
        params={
            "adapter": step.adapter,
            "params": dict(step.params),
            "policy": step.retry.model_dump(),
        },
        timeout=step.timeout,
    )


def _tail(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[-limit:]


class Executor:
    """Run steps through the adapter registry, honouring idempotency."""

    def __init__(
        self,
        registry: AdapterRegistry,
        checker: IdempotencyChecker,
        root: str = ".",
        work_dir: str = ".",
        output_limit: int = 64 * 1024,
        dry_run: bool = False,
        cancel: CancelToken | None = None,
    ):
        self.registry = registry
        self.checker = checker
        self.root = root
        self.work_dir = work_dir
        self.output_limit = output_limit
        self.dry_run = dry_run
        self.cancel = cancel or CancelToken()

    def run(self, step: Step) -> StepResult:
        """Run one step: skip when satisfied, otherwise dispatch and classify."""
        if self.checker.is_satisfied(step):
            result = StepResult(
                step_id=step.id,
                description=step.description,
                outcome=Outcome.SKIPPED,
                output="already satisfied",
            )
            self._log(result)
            return result

        receipt = self.registry.execute_action(
            build_action(step),
            root=self.root,
            work_dir=self.work_dir,
            dry_run=self.dry_run,
            output_limit=self.output_limit,
        )

        if receipt.ok:
            outcome = Outcome.SUCCEEDED
        elif receipt.failed:
            outcome = Outcome.FAILED_FATAL if step.fatal else Outcome.FAILED_RECOVERABLE
        else:
            outcome = Outcome.SKIPPED

        result = StepResult(
            step_id=step.id,
            description=step.description,
            outcome=outcome,
            output=_tail(receipt.output, self.output_limit),
            error=receipt.error,
            timestamp=receipt.started_at,
            duration_ms=receipt.duration_ms,
            attempts=receipt.attempts if receipt.status != "skipped" else 0,
        )
        self._log(result)
        return result

    def run_pipeline(
        self,
        steps: list[Step],
        variant: Variant,
        stage: str = "host",
        operation_id: str = "",
    ) -> PipelineRun:
        """Run steps (already dependency-ordered) for one variant."""
        run = PipelineRun(
            variant=variant,
            stage=stage,
            operation_id=operation_id or generate_operation_id(),
        )
        blocked: dict[str, str] = {}
        seen_warnings = len(self.checker.warnings)

        for index, step in enumerate(steps):
            if self.cancel.cancelled:
                run.cancelled = True
                self._record_rest(run, steps[index:], Outcome.CANCELLED, "run cancelled")
                break

            failed_dep = next((d for d in step.depends_on if d in blocked), None)
            if failed_dep is not None:
                reason = f"dependency '{failed_dep}' did not complete"
                run.results.append(_not_run(step, Outcome.SKIPPED_DUE_TO_FAILURE, reason))
                blocked[step.id] = failed_dep
                continue

            try:
                result = self.run(step)
            except KeyboardInterrupt:
                logger.warning("Interrupted during '%s'", step.id)
                run.cancelled = True
                self._record_rest(run, steps[index:], Outcome.CANCELLED, "interrupted")
                break

            run.results.append(result)

            if result.outcome == Outcome.FAILED_FATAL:
                run.aborted_by = step.id
                self._record_rest(
                    run,
                    steps[index + 1:],
                    Outcome.SKIPPED_DUE_TO_FAILURE,
                    f"pipeline aborted after fatal step '{step.id}'",
                )
                break
            if result.outcome == Outcome.FAILED_RECOVERABLE:
                blocked[step.id] = step.id

        run.warnings.extend(self.checker.warnings[seen_warnings:])
        return run

    def _record_rest(self, run: PipelineRun, rest: list[Step], outcome: Outcome, reason: str) -> None:
        for step in rest:
            run.results.append(_not_run(step, outcome, reason))

    def _log(self, result: StepResult) -> None:
        if result.failed:
            logger.error("%s %s → %s: %s", result.marker, result.step_id, result.outcome, result.error)
        else:
            logger.info("%s %s → %s", result.marker, result.step_id, result.outcome)


def _not_run(step: Step, outcome: Outcome, reason: str) -> StepResult:
    return StepResult(
        step_id=step.id,
        description=step.description,
        outcome=outcome,
        output=reason,
    )


def write_audit_entry(run: PipelineRun, audit_writer: AuditWriter) -> None:
    """Append a run summary to the audit ledger."""
    entry = AuditEntry(
        operation_id=run.operation_id,
        operation_type=f"provision:{run.stage}",
        variant=run.variant.value,
        status=run.status,
        steps_total=run.total,
        steps_succeeded=run.succeeded,
        steps_failed=run.failed,
        steps_skipped=run.skipped,
        errors=[
            f"{r.step_id}: {r.error}" for r in run.results if r.failed and r.error
        ],
    )
    audit_writer.write(entry)


def generate_operation_id() -> str:
    """Generate a unique operation ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"op-{now}-{short}"
