"""
Retry adapter — re-dispatches an inner action under a RetryPolicy.

The executor builds a ``retry`` action for any step that carries a
policy; this adapter replays the inner action through the registry
until it succeeds or attempts run out, and stamps the attempt count on
the final receipt.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from pydantic import ValidationError

from agentvm.adapters.base import Adapter, ExecutionContext
from agentvm.adapters.registry import AdapterRegistry
from agentvm.core.models.action import Action, Receipt
from agentvm.core.reliability.retry import RetryPolicy, run_with_retry

logger = logging.getLogger(__name__)


class RetryAdapter(Adapter):
    """Wraps another adapter's action with bounded retries.

    Action params:
        adapter (str): Name of the inner adapter.
        params (dict): Params for the inner action.
        policy (dict): RetryPolicy fields.
    """

    def __init__(self, registry: AdapterRegistry, sleep: Callable[[float], None] = time.sleep):
        self._registry = registry
        self._sleep = sleep

    @property
    def name(self) -> str:
        return "retry"

    def is_available(self) -> bool:
        return True

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        params = context.action.params
        inner = params.get("adapter", "")
        if not inner:
            return False, "Missing required param: 'adapter'"
        if inner == self.name:
            return False, "Retry adapter cannot wrap itself"
        if self._registry.get(inner) is None:
            return False, f"No adapter registered for '{inner}'"
        try:
            RetryPolicy.model_validate(params.get("policy", {}))
        except ValidationError as e:
            return False, f"Invalid retry policy: {e.errors()[0]['msg']}"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        params = context.action.params
        policy = RetryPolicy.model_validate(params.get("policy", {}))
        inner = Action(
            id=context.action.id,
            adapter=params["adapter"],
            description=context.action.description,
            params=dict(params.get("params", {})),
            timeout=context.action.timeout,
        )

        def attempt(n: int) -> Receipt:
            logger.debug("%s: attempt %d/%d", inner.id, n, policy.attempts)
            return self._registry.execute_action(
                inner,
                root=context.root,
                work_dir=context.work_dir,
                dry_run=context.dry_run,
                output_limit=context.output_limit,
            )

        receipt, attempts = run_with_retry(
            attempt,
            lambda r: not r.failed,
            policy,
            label=inner.id,
            sleep=self._sleep,
        )
        receipt.attempts = attempts
        if receipt.failed and attempts > 1:
            receipt.error = f"{receipt.error} (after {attempts} attempts)"
        return receipt
