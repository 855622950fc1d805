"""
Probe adapter — turns a read-only condition into a pass/fail receipt.

Parity pipelines are made of probe steps: each one asserts that some
piece of the agent environment is present (an API endpoint answers,
a config file exists, a unit is hardened) without changing anything.
"""

from __future__ import annotations

import logging

from pydantic import ValidationError

from agentvm.adapters.base import Adapter, ExecutionContext
from agentvm.core.engine.checker import IdempotencyChecker
from agentvm.core.errors import StateInspectionError
from agentvm.core.models.action import Receipt
from agentvm.core.models.step import Condition

logger = logging.getLogger(__name__)


class ProbeAdapter(Adapter):
    """Evaluate ``params['condition']`` with the idempotency checker.

    Action params:
        condition (dict): Condition fields (kind, target, value).
    """

    def __init__(self, checker: IdempotencyChecker):
        self._checker = checker

    @property
    def name(self) -> str:
        return "probe"

    def is_available(self) -> bool:
        return True

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        raw = context.action.params.get("condition")
        if not raw:
            return False, "Missing required param: 'condition'"
        try:
            Condition.model_validate(raw)
        except ValidationError as e:
            return False, f"Invalid condition: {e.errors()[0]['msg']}"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        condition = Condition.model_validate(context.action.params["condition"])
        try:
            holds = self._checker.evaluate(condition)
        except StateInspectionError as e:
            return Receipt.failure(
                adapter=self.name,
                action_id=context.action.id,
                error=f"Cannot inspect: {e}",
            )

        if holds:
            return Receipt.success(
                adapter=self.name,
                action_id=context.action.id,
                output=f"present: {condition.describe()}",
            )
        return Receipt.failure(
            adapter=self.name,
            action_id=context.action.id,
            error=f"missing: {condition.describe()}",
        )
