"""
Adapter registry — every step action is dispatched through here.

The executor never calls an adapter itself. The registry picks the
adapter named by the action, validates, honours dry-run and mock mode,
and always hands back a Receipt, even when an adapter misbehaves.
"""

from __future__ import annotations

import logging
import time

from agentvm.adapters.base import Adapter, ExecutionContext
from agentvm.core.models.action import Action, Receipt

logger = logging.getLogger(__name__)


class AdapterRegistry:
    """Adapters by name.

    With ``mock_mode`` nothing touches the host: every action succeeds
    without being handed to an adapter (``pipeline run --mock``).
    """

    def __init__(self, mock_mode: bool = False):
        self._adapters: dict[str, Adapter] = {}
        self._mock_mode = mock_mode

    @property
    def mock_mode(self) -> bool:
        return self._mock_mode

    def register(self, adapter: Adapter) -> None:
        if adapter.name in self._adapters:
            logger.warning("Replacing adapter '%s'", adapter.name)
        self._adapters[adapter.name] = adapter
        logger.debug("Registered adapter: %s", adapter.name)

    def get(self, name: str) -> Adapter | None:
        return self._adapters.get(name)

    def execute_action(
        self,
        action: Action,
        root: str = ".",
        work_dir: str = ".",
        dry_run: bool = False,
        output_limit: int = 64 * 1024,
    ) -> Receipt:
        """Run ``action`` through its adapter. Never raises.

        KeyboardInterrupt is the one exception let through, so a second
        Ctrl-C still stops the run.
        """
        started = time.monotonic()

        if self._mock_mode:
            return Receipt.success(
                adapter=action.adapter,
                action_id=action.id,
                output=f"[mock] {action.adapter}:{action.id} executed",
                metadata={"mock": True, "dry_run": dry_run},
            )

        adapter = self._adapters.get(action.adapter)
        if adapter is None:
            return Receipt.failure(
                adapter=action.adapter,
                action_id=action.id,
                error=f"No adapter registered for '{action.adapter}'",
            )

        if not adapter.is_available():
            return Receipt.failure(
                adapter=action.adapter,
                action_id=action.id,
                error=f"Adapter '{action.adapter}' is not available on this host",
            )

        context = ExecutionContext(
            action=action,
            root=root,
            work_dir=work_dir,
            dry_run=dry_run,
            output_limit=output_limit,
        )

        problem = _validation_problem(adapter, context)
        if problem:
            return Receipt.failure(adapter=action.adapter, action_id=action.id, error=problem)

        if dry_run:
            return Receipt.skip(
                adapter=action.adapter,
                action_id=action.id,
                reason=f"[dry-run] would run {action.adapter}:{action.id}",
                metadata={"dry_run": True},
            )

        try:
            receipt = adapter.execute(context)
        except KeyboardInterrupt:
            raise
        except Exception as e:
            logger.error("Adapter '%s' raised on %s: %s", action.adapter, action.id, e)
            receipt = Receipt.failure(
                adapter=action.adapter,
                action_id=action.id,
                error=f"Unexpected error: {e}",
            )

        receipt.duration_ms = int((time.monotonic() - started) * 1000)
        return receipt


def _validation_problem(adapter: Adapter, context: ExecutionContext) -> str:
    """Why the action cannot run, or '' when it can."""
    try:
        valid, message = adapter.validate(context)
    except Exception as e:
        return f"Validation error: {e}"
    return "" if valid else f"Validation failed: {message}"
