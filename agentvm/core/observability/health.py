"""
Health verifier — bounded polling of readiness signals.

A check polls its target every ``interval`` seconds, measured from the
start of one poll to the start of the next, until it answers or
``timeout`` elapses, then either returns a HealthResult or raises
HealthTimeoutError naming the check, the timeout and the last observed
state. Clock and sleep are injectable so timeouts are testable without
waiting.

``verify_variant`` runs all checks of a variant and aggregates them into
a SystemHealth; that aggregate is reported separately from step results.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from agentvm.core.errors import HealthTimeoutError, StateInspectionError
from agentvm.core.models.health import HealthCheckSpec, HealthResult
from agentvm.core.models.variant import VariantConfig
from agentvm.core.services import probes

logger = logging.getLogger(__name__)

Probe = Callable[[HealthCheckSpec], tuple[bool, str]]


# ── Probes ──────────────────────────────────────────────────────


def _probe_http(spec: HealthCheckSpec) -> tuple[bool, str]:
    status = probes.http_status(spec.target, timeout=max(spec.interval, 1.0))
    if status is None:
        return False, "unreachable"
    return status == spec.expected_status, f"HTTP {status}"


def _probe_tcp(spec: HealthCheckSpec) -> tuple[bool, str]:
    ok = probes.tcp_reachable(spec.target, timeout=max(spec.interval, 1.0))
    return ok, "open" if ok else "connection refused"


def _probe_service(spec: HealthCheckSpec) -> tuple[bool, str]:
    state = probes.service_state(spec.target)
    return state == "active", state


def _probe_command(spec: HealthCheckSpec) -> tuple[bool, str]:
    path = probes.command_path(spec.target)
    return path is not None, path or "not found"


_PROBES: dict[str, Probe] = {
    "http": _probe_http,
    "tcp": _probe_tcp,
    "service": _probe_service,
    "command": _probe_command,
}


# ── Verifier ────────────────────────────────────────────────────


class HealthVerifier:
    """Poll health checks with a fixed interval and a hard timeout."""

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        probe: Probe | None = None,
    ):
        self._clock = clock
        self._sleep = sleep
        self._probe = probe

    def probe_once(self, spec: HealthCheckSpec) -> tuple[bool, str]:
        """One probe attempt: (ok, observed state). Never raises."""
        if self._probe is not None:
            return self._probe(spec)
        try:
            return _PROBES[spec.kind](spec)
        except StateInspectionError as e:
            return False, f"uninspectable: {e}"

    def check(self, spec: HealthCheckSpec) -> HealthResult:
        """Poll until ``spec`` succeeds.

        Raises:
            HealthTimeoutError: If no attempt succeeded before the deadline.
        """
        start = self._clock()
        deadline = start + spec.timeout
        next_start = start
        attempts = 0

        while True:
            attempts += 1
            ok, state = self.probe_once(spec)
            if ok:
                latency_ms = int((self._clock() - start) * 1000)
                logger.info("✓ %s healthy (%s, %d attempt(s))", spec.name, state, attempts)
                return HealthResult(
                    name=spec.name,
                    latency_ms=latency_ms,
                    attempts=attempts,
                    last_state=state,
                )

            # Polls are scheduled from the previous poll's start, not its end.
            next_start += spec.interval
            if next_start >= deadline:
                logger.error("✗ %s not healthy after %d attempts: %s", spec.name, attempts, state)
                raise HealthTimeoutError(spec.name, spec.timeout, attempts, state)

            delay = max(0.0, next_start - self._clock())
            logger.debug("%s not ready (%s), retrying in %.1fs", spec.name, state, delay)
            if delay:
                self._sleep(delay)


# ── Aggregation ─────────────────────────────────────────────────


@dataclass
class ComponentHealth:
    """Health of a single readiness signal."""

    name: str
    status: str = "unknown"  # healthy, unhealthy, unknown
    message: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status,
            "message": self.message,
            "details": self.details,
        }


@dataclass
class SystemHealth:
    """Aggregate health of a variant's VM."""

    variant: str = ""
    status: str = "healthy"
    timestamp: str = ""
    components: list[ComponentHealth] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.timestamp:
            self.timestamp = datetime.now(UTC).isoformat()

    @property
    def healthy(self) -> bool:
        return self.status == "healthy"

    def add(self, component: ComponentHealth) -> None:
        self.components.append(component)
        self._recalculate()

    def _recalculate(self) -> None:
        statuses = [c.status for c in self.components]
        if any(s == "unhealthy" for s in statuses):
            self.status = "unhealthy"
        elif all(s == "healthy" for s in statuses):
            self.status = "healthy"
        else:
            self.status = "unknown"

    def to_dict(self) -> dict[str, Any]:
        return {
            "variant": self.variant,
            "status": self.status,
            "timestamp": self.timestamp,
            "components": [c.to_dict() for c in self.components],
        }


def verify_variant(config: VariantConfig, verifier: HealthVerifier | None = None) -> SystemHealth:
    """Run every health check of a variant, in order, and aggregate."""
    verifier = verifier or HealthVerifier()
    health = SystemHealth(variant=config.variant.value)

    for spec in config.effective_health_checks:
        try:
            result = verifier.check(spec)
        except HealthTimeoutError as e:
            health.add(ComponentHealth(
                name=spec.name,
                status="unhealthy",
                message=str(e),
                details={"target": spec.target, "attempts": e.attempts, "last_state": e.last_state},
            ))
            continue
        health.add(ComponentHealth(
            name=spec.name,
            status="healthy",
            message=f"{result.last_state} after {result.attempts} attempt(s)",
            details={"target": spec.target, "latency_ms": result.latency_ms},
        ))

    return health
