"""
Retry policy — explicit, bounded retries with exponential backoff.

The executor never retries on its own. A step that tolerates transient
failure (mirror downloads, package fetches) carries a RetryPolicy and
is dispatched through the retry adapter, so every attempt shows up in
the logs and the attempt count lands on the step result.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from typing import TypeVar

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy(BaseModel):
    """Bounded retry with exponential backoff (+ optional jitter)."""

    model_config = ConfigDict(frozen=True)

    attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(default=2.0, ge=0)
    max_delay: float = 60.0
    jitter: float = 0.0  # fraction of the delay, 0.3 = up to +30%

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based, after a failure)."""
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        if self.jitter:
            delay += random.uniform(0, delay * self.jitter)
        return delay

    def delays(self) -> list[float]:
        """All delays the policy would sleep, in order (without jitter)."""
        return [
            min(self.base_delay * (2 ** (n - 1)), self.max_delay)
            for n in range(1, self.attempts)
        ]


def run_with_retry(
    func: Callable[[int], T],
    is_success: Callable[[T], bool],
    policy: RetryPolicy,
    label: str = "",
    sleep: Callable[[float], None] = time.sleep,
) -> tuple[T, int]:
    """Call ``func(attempt)`` until ``is_success`` or attempts run out.

    Returns:
        (last result, number of attempts made)
    """
    result = func(1)
    attempt = 1
    while not is_success(result) and attempt < policy.attempts:
        delay = policy.delay_for(attempt)
        logger.warning(
            "%s failed (attempt %d/%d), retrying in %.1fs",
            label or "operation",
            attempt,
            policy.attempts,
            delay,
        )
        sleep(delay)
        attempt += 1
        result = func(attempt)
    return result, attempt
