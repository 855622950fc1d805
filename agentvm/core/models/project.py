"""
Project configuration — the distribution-wide settings.

Loaded from ``agentvm.yml`` when present; every field has a default so
the tool also runs from a bare checkout.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from agentvm.core.models.variant import Variant, VariantConfig, default_variant_config


def _default_variants() -> dict[Variant, VariantConfig]:
    return {v: default_variant_config(v) for v in Variant}


class ProjectConfig(BaseModel):
    """Root configuration model."""

    name: str = "Oligarchy AgentVM"
    root: str = "."                 # distribution root (set by the loader)
    state_dir: str = ".agentvm"     # locks + audit ledger, relative to root

    parity_threshold: float = 80.0  # percent
    output_limit: int = 64 * 1024   # bytes of step output kept per step
    default_timeout: int = 3600     # seconds per step action

    variants: dict[Variant, VariantConfig] = Field(default_factory=_default_variants)

    def variant(self, variant: Variant) -> VariantConfig:
        return self.variants[variant]
