"""
Parity use case — run the feature checklist on both variants and compare.

Every probe runs unconditionally; a failing probe never stops the
sequence. The exit status reflects the overall success rate against
the configured threshold.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from agentvm.adapters.registry import AdapterRegistry
from agentvm.core.config.loader import load_config, resolve_path
from agentvm.core.engine.checker import IdempotencyChecker, Probe
from agentvm.core.engine.executor import Executor, PipelineRun, generate_operation_id
from agentvm.core.engine.report import aggregate
from agentvm.core.errors import StateInspectionError
from agentvm.core.models.project import ProjectConfig
from agentvm.core.models.report import ParityReport
from agentvm.core.models.variant import Variant
from agentvm.core.persistence.audit import AuditEntry, AuditWriter
from agentvm.core.services.parity import advisories_for, build_parity_registry
from agentvm.core.use_cases.provision import default_adapters

logger = logging.getLogger(__name__)


@dataclass
class ParityResult:
    """Result of a parity run across variants."""

    report: ParityReport
    threshold: float
    runs: dict[Variant, PipelineRun] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.report.passes(self.threshold)

    @property
    def exit_code(self) -> int:
        return 0 if self.passed else 1

    def to_dict(self) -> dict:
        return {
            "threshold": self.threshold,
            "passed": self.passed,
            "report": self.report.to_dict(),
            "warnings": self.warnings,
        }


def run_parity(
    project: ProjectConfig | None = None,
    threshold: float | None = None,
    variants: tuple[Variant, ...] = tuple(Variant),
    probe_overrides: dict[str, Probe] | None = None,
    adapters: AdapterRegistry | None = None,
    audit: bool = True,
) -> ParityResult:
    """Run the parity probes for ``variants`` and aggregate them.

    Args:
        project: Loaded configuration (default: ``load_config()``).
        threshold: Pass mark in percent (default: the configured one).
        variants: Variants to probe, in report order.
        probe_overrides: Replacement condition probes (tests).
        adapters: Pre-configured adapter registry (tests).
        audit: Append a summary to the audit ledger.
    """
    project = project or load_config()
    threshold = project.parity_threshold if threshold is None else threshold
    root = Path(project.root)

    checker = IdempotencyChecker(root, overrides=probe_overrides)
    if adapters is None:
        adapters = default_adapters(checker)
    executor = Executor(adapters, checker, root=project.root, output_limit=project.output_limit)

    operation_id = generate_operation_id()
    runs: dict[Variant, PipelineRun] = {}
    warnings: list[str] = []
    for variant in variants:
        registry = build_parity_registry(project, variant)
        steps = registry.resolve_order(variant)
        logger.info("Parity probes for %s: %d", variant.display_name, len(steps))
        runs[variant] = executor.run_pipeline(
            steps, variant, stage="parity", operation_id=operation_id
        )
        warnings.extend(_advisory_warnings(checker, variant))

    report = aggregate({v: run.results for v, run in runs.items()})
    result = ParityResult(report=report, threshold=threshold, runs=runs, warnings=warnings)

    if audit:
        AuditWriter(resolve_path(project, project.state_dir)).write(AuditEntry(
            operation_id=operation_id,
            operation_type="parity",
            variant=",".join(v.value for v in variants),
            status="ok" if result.passed else "failed",
            steps_total=report.succeeded + report.failed + report.skipped,
            steps_succeeded=report.succeeded,
            steps_failed=report.failed,
            steps_skipped=report.skipped,
            errors=[f"{v.value}/{step}" for v, step in report.failed_steps],
            context={
                "threshold": threshold,
                "success_rate": report.success_rate,
                "warnings": warnings,
            },
        ))

    return result


def _advisory_warnings(checker: IdempotencyChecker, variant: Variant) -> list[str]:
    warnings = []
    for message, condition in advisories_for(variant):
        try:
            ok = checker.evaluate(condition)
        except StateInspectionError as e:
            ok = False
            message = f"{message} ({e})"
        if not ok:
            logger.warning("⚠ %s: %s", variant.display_name, message)
            warnings.append(f"{variant.value}: {message}")
    return warnings
