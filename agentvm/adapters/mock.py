"""
Mock adapter — test double for provisioning actions.

Succeeds by default. Individual actions can be made to fail, and an
``on_execute`` hook lets tests simulate the side effect a real action
would have (e.g. creating the disk image a later predicate checks).
"""

from __future__ import annotations

from collections.abc import Callable

from agentvm.adapters.base import Adapter, ExecutionContext
from agentvm.core.models.action import Receipt


class MockAdapter(Adapter):
    """Configurable stand-in for any adapter name."""

    def __init__(
        self,
        adapter_name: str = "mock",
        available: bool = True,
        default_output: str = "[mock] executed",
        on_execute: Callable[[ExecutionContext], None] | None = None,
    ):
        self._name = adapter_name
        self._available = available
        self._default_output = default_output
        self._on_execute = on_execute
        self._responses: dict[str, list[Receipt]] = {}
        self._call_log: list[ExecutionContext] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def call_log(self) -> list[ExecutionContext]:
        return self._call_log

    @property
    def call_count(self) -> int:
        return len(self._call_log)

    @property
    def executed_ids(self) -> list[str]:
        return [ctx.action.id for ctx in self._call_log]

    def is_available(self) -> bool:
        return self._available

    def set_response(self, action_id: str, *receipts: Receipt) -> None:
        """Queue responses for an action; the last one repeats."""
        self._responses[action_id] = list(receipts)

    def set_failure(self, action_id: str, error: str = "Mock failure", return_code: int = 1) -> None:
        self.set_response(
            action_id,
            Receipt.failure(
                adapter=self._name,
                action_id=action_id,
                error=error,
                return_code=return_code,
            ),
        )

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        self._call_log.append(context)

        queued = self._responses.get(context.action.id)
        if queued:
            receipt = queued.pop(0) if len(queued) > 1 else queued[0]
            return receipt.model_copy()

        if self._on_execute is not None:
            self._on_execute(context)

        return Receipt.success(
            adapter=self._name,
            action_id=context.action.id,
            output=self._default_output,
            return_code=0,
            metadata={"mock": True},
        )

    def reset(self) -> None:
        self._call_log.clear()
        self._responses.clear()
