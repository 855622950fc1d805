"""
Report aggregator — cross-variant comparison of step results.

``aggregate`` builds a ParityReport from per-variant result lists;
``render_text`` / ``render_json`` turn it into stable output. Both
renderings depend only on the results and the single ``generated_at``
stamp, so identical results give identical reports.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime

from agentvm.core.models.report import ParityReport, VariantSummary
from agentvm.core.models.step import StepResult
from agentvm.core.models.variant import Variant

logger = logging.getLogger(__name__)

_RULE = "═" * 60


def aggregate(
    variant_results: Mapping[Variant, Sequence[StepResult]],
    generated_at: str | None = None,
) -> ParityReport:
    """Summarise results per variant.

    Variants appear in declaration order (NixOS, then Arch) regardless
    of mapping order; results keep the order they were produced in.
    """
    summaries = [
        VariantSummary(variant=variant, results=list(variant_results[variant]))
        for variant in Variant
        if variant in variant_results
    ]
    report = ParityReport(
        generated_at=generated_at or datetime.now(UTC).isoformat(timespec="seconds"),
        summaries=summaries,
    )
    logger.debug(
        "Aggregated %d variant(s): %d succeeded, %d failed, %d skipped",
        len(summaries),
        report.succeeded,
        report.failed,
        report.skipped,
    )
    return report


def assessment(rate: float | None) -> str:
    """One-line verdict for an overall success rate."""
    if rate is None:
        return "⊘ Nothing attempted"
    if rate >= 90:
        return "🎉 Excellent! Both systems are production-ready."
    if rate >= 80:
        return "✅ Good! Minor improvements needed."
    if rate >= 70:
        return "⚠️  Fair! Some features missing."
    return "❌ Poor! Significant work needed."


def _format_rate(rate: float | None) -> str:
    return "n/a" if rate is None else f"{rate:.1f}%"


def render_text(report: ParityReport, threshold: float | None = None) -> str:
    """Plain-text report, one line per step."""
    lines = [
        _RULE,
        "AgentVM Feature Parity Report",
        f"Generated: {report.generated_at}",
        _RULE,
    ]

    for summary in report.summaries:
        lines.append("")
        lines.append(
            f"{summary.variant.display_name}: "
            f"{summary.succeeded} succeeded, {summary.skipped} skipped, "
            f"{summary.failed} failed (success rate {_format_rate(summary.success_rate)})"
        )
        width = max((len(r.step_id) for r in summary.results), default=0)
        for r in summary.results:
            lines.append(f"  {r.marker} {r.step_id.ljust(width)}  {r.outcome.value}")

    failed = report.failed_steps
    lines.append("")
    lines.append(f"Failed steps ({len(failed)}):")
    for variant, step_id in failed:
        lines.append(f"  ✗ {variant.value}/{step_id}")
    if not failed:
        lines.append("  (none)")

    lines.append("")
    lines.append(_RULE)
    lines.append(
        f"Total: {report.succeeded} succeeded, {report.skipped} skipped, {report.failed} failed"
    )
    lines.append(f"Success rate: {_format_rate(report.success_rate)}")
    if threshold is not None:
        verdict = "PASS" if report.passes(threshold) else "FAIL"
        lines.append(f"Threshold: {threshold:g}% → {verdict}")
    lines.append(assessment(report.success_rate))
    lines.append(_RULE)
    return "\n".join(lines) + "\n"


def render_json(report: ParityReport) -> str:
    return json.dumps(report.to_dict(), indent=2, ensure_ascii=False) + "\n"
