"""
Domain models — Pydantic types for provisioning runs.

All models are re-exported here for convenient access:

    from agentvm.core.models import Step, StepResult, Variant, VariantConfig
"""

from agentvm.core.models.action import Action, Receipt
from agentvm.core.models.health import HealthCheckSpec, HealthResult
from agentvm.core.models.project import ProjectConfig
from agentvm.core.models.report import ParityReport, VariantSummary
from agentvm.core.models.step import Condition, Outcome, Step, StepResult
from agentvm.core.models.variant import Variant, VariantConfig, default_variant_config

__all__ = [
    # action.py
    "Action",
    # step.py
    "Condition",
    # health.py
    "HealthCheckSpec",
    "HealthResult",
    "Outcome",
    # report.py
    "ParityReport",
    # project.py
    "ProjectConfig",
    "Receipt",
    "Step",
    "StepResult",
    # variant.py
    "Variant",
    "VariantConfig",
    "VariantSummary",
    "default_variant_config",
]
