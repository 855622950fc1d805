"""
Health check models — what to poll and what came back.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict

HealthKind = Literal["http", "tcp", "service", "command"]

# Suggested defaults: local service checks vs. VM boot checks
DEFAULT_INTERVAL = 2.0
LOCAL_TIMEOUT = 30.0
BOOT_TIMEOUT = 60.0


class HealthCheckSpec(BaseModel):
    """A bounded, retrying probe of one readiness signal.

    ``target`` is a URL for ``http``, ``host:port`` for ``tcp``,
    a unit name for ``service`` and an executable name for ``command``.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    kind: HealthKind
    target: str
    expected_status: int = 200
    timeout: float = LOCAL_TIMEOUT
    interval: float = DEFAULT_INTERVAL


class HealthResult(BaseModel):
    """Outcome of a successful health check."""

    name: str
    ok: bool = True
    latency_ms: int = 0
    attempts: int = 0
    last_state: str = ""
