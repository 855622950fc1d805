"""
Parity report models — cross-variant comparison.

Only ``generated_at`` carries a timestamp. Everything under
``summaries`` is derived from step ids and outcomes, so two reports
built from the same results differ in that one field only.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from agentvm.core.models.step import StepResult
from agentvm.core.models.variant import Variant


class VariantSummary(BaseModel):
    """Per-variant counts over one ordered list of step results."""

    variant: Variant
    results: list[StepResult] = Field(default_factory=list)

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
    def attempted(self) -> int:
        return self.succeeded + self.failed

    @property
    def success_rate(self) -> float | None:
        """succeeded / (succeeded + failed); None when nothing was attempted."""
        if self.attempted == 0:
            return None
        return self.succeeded * 100.0 / self.attempted

    @property
    def failed_steps(self) -> list[str]:
        return [r.step_id for r in self.results if r.failed]

    def to_dict(self) -> dict:
        return {
            "variant": self.variant.value,
            "succeeded": self.succeeded,
            "skipped": self.skipped,
            "failed": self.failed,
            "success_rate": _round(self.success_rate),
            "failed_steps": self.failed_steps,
            "results": [
                {"step": r.step_id, "outcome": r.outcome.value}
                for r in self.results
            ],
        }


class ParityReport(BaseModel):
    """Aggregated results for every variant in a run."""

    generated_at: str
    summaries: list[VariantSummary] = Field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(s.succeeded for s in self.summaries)

    @property
    def failed(self) -> int:
        return sum(s.failed for s in self.summaries)

    @property
    def skipped(self) -> int:
        return sum(s.skipped for s in self.summaries)

    @property
    def success_rate(self) -> float | None:
        attempted = self.succeeded + self.failed
        if attempted == 0:
            return None
        return self.succeeded * 100.0 / attempted

    @property
    def failed_steps(self) -> list[tuple[Variant, str]]:
        return [(s.variant, step) for s in self.summaries for step in s.failed_steps]

    def summary(self, variant: Variant) -> VariantSummary | None:
        for s in self.summaries:
            if s.variant == variant:
                return s
        return None

    def passes(self, threshold: float) -> bool:
        rate = self.success_rate
        return rate is not None and rate >= threshold

    def to_dict(self) -> dict:
        return {
            "generated_at": self.generated_at,
            "success_rate": _round(self.success_rate),
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "variants": [s.to_dict() for s in self.summaries],
        }


def _round(rate: float | None) -> float | None:
    return None if rate is None else round(rate, 1)
