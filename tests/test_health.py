"""
Tests for the health verifier — bounded polling and aggregation.

Timeouts run against a fake clock; the HTTP checks run against a real
Flask app served on an ephemeral port.
"""

import socket
import threading

import pytest
from flask import Flask
from werkzeug.serving import make_server

from agentvm.core.errors import HealthTimeoutError, StateInspectionError
from agentvm.core.models.health import HealthCheckSpec
from agentvm.core.models.variant import Variant, default_variant_config
from agentvm.core.observability.health import (
    ComponentHealth,
    HealthVerifier,
    SystemHealth,
    verify_variant,
)


class FakeClock:
    """Monotonic clock that only moves when the verifier sleeps."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def _scripted(*answers: bool):
    """Probe answering from ``answers``, then repeating the last one."""
    remaining = list(answers)

    def probe(spec: HealthCheckSpec) -> tuple[bool, str]:
        ok = remaining.pop(0) if len(remaining) > 1 else remaining[0]
        return ok, "HTTP 200" if ok else "connection refused"

    return probe


@pytest.fixture
def api_server():
    """Agent-API stand-in: /health answers 200, everything else 404."""
    app = Flask("agent-api")

    @app.get("/health")
    def health():
        return {"status": "healthy"}

    server = make_server("127.0.0.1", 0, app)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{server.server_port}"
    server.shutdown()
    thread.join(timeout=5)


def _closed_port() -> int:
    s = socket.socket()
    s.bind(("127.0.0.1", 0))
    port = s.getsockname()[1]
    s.close()
    return port


class TestVerifierTiming:
    def test_never_ready_times_out_after_fifteen_attempts(self):
        clock = FakeClock()
        verifier = HealthVerifier(clock=clock, sleep=clock.sleep, probe=_scripted(False))
        spec = HealthCheckSpec(name="api", kind="http", target="http://vm/health", timeout=30, interval=2)

        with pytest.raises(HealthTimeoutError) as exc:
            verifier.check(spec)

        assert exc.value.attempts == 15
        assert exc.value.name == "api"
        assert exc.value.timeout == 30
        assert exc.value.last_state == "connection refused"
        assert "30s" in str(exc.value)
        assert clock.sleeps == [2] * 14
        assert clock.now < 30

    def test_ready_on_third_attempt(self):
        clock = FakeClock()
        verifier = HealthVerifier(clock=clock, sleep=clock.sleep, probe=_scripted(False, False, True))
        spec = HealthCheckSpec(name="api", kind="http", target="http://vm/health", timeout=30, interval=2)

        result = verifier.check(spec)

        assert result.ok
        assert result.attempts == 3
        assert result.latency_ms == 4000
        assert result.last_state == "HTTP 200"

    def test_immediately_ready_does_not_sleep(self):
        clock = FakeClock()
        verifier = HealthVerifier(clock=clock, sleep=clock.sleep, probe=_scripted(True))
        result = verifier.check(HealthCheckSpec(name="ssh", kind="tcp", target="vm:22"))
        assert result.attempts == 1
        assert clock.sleeps == []

    def test_slow_check_keeps_fixed_interval(self):
        clock = FakeClock()

        def slow(spec: HealthCheckSpec) -> tuple[bool, str]:
            clock.now += 1.9
            return False, "timed out"

        verifier = HealthVerifier(clock=clock, sleep=clock.sleep, probe=slow)
        spec = HealthCheckSpec(name="api", kind="http", target="http://vm/health", timeout=30, interval=2)

        with pytest.raises(HealthTimeoutError) as exc:
            verifier.check(spec)

        assert exc.value.attempts == 15
        assert len(clock.sleeps) == 14
        assert all(s == pytest.approx(0.1) for s in clock.sleeps)

    def test_check_slower_than_interval_polls_back_to_back(self):
        clock = FakeClock()

        def hanging(spec: HealthCheckSpec) -> tuple[bool, str]:
            clock.now += 3
            return False, "timed out"

        verifier = HealthVerifier(clock=clock, sleep=clock.sleep, probe=hanging)
        spec = HealthCheckSpec(name="api", kind="http", target="http://vm/health", timeout=10, interval=2)

        with pytest.raises(HealthTimeoutError):
            verifier.check(spec)

        assert clock.sleeps == []

    def test_uninspectable_counts_as_not_ready(self, monkeypatch):
        from agentvm.core.observability import health as health_module

        def broken(spec):
            raise StateInspectionError("systemctl not available")

        monkeypatch.setitem(health_module._PROBES, "service", broken)
        clock = FakeClock()
        verifier = HealthVerifier(clock=clock, sleep=clock.sleep)
        spec = HealthCheckSpec(name="api-unit", kind="service", target="agent-api", timeout=4, interval=2)

        with pytest.raises(HealthTimeoutError) as exc:
            verifier.check(spec)
        assert "uninspectable" in exc.value.last_state


class TestLiveProbes:
    def test_http_health_endpoint(self, api_server):
        verifier = HealthVerifier()
        spec = HealthCheckSpec(name="api", kind="http", target=f"{api_server}/health", timeout=5, interval=0.2)

        result = verifier.check(spec)

        assert result.attempts == 1
        assert result.last_state == "HTTP 200"

    def test_http_wrong_status(self, api_server):
        clock = FakeClock()
        verifier = HealthVerifier(clock=clock, sleep=clock.sleep)
        spec = HealthCheckSpec(name="api", kind="http", target=f"{api_server}/missing", timeout=1, interval=0.5)

        with pytest.raises(HealthTimeoutError) as exc:
            verifier.check(spec)
        assert exc.value.attempts == 2
        assert exc.value.last_state == "HTTP 404"

    def test_tcp_refused(self):
        clock = FakeClock()
        verifier = HealthVerifier(clock=clock, sleep=clock.sleep)
        spec = HealthCheckSpec(name="ssh", kind="tcp", target=f"127.0.0.1:{_closed_port()}", timeout=2, interval=1)

        with pytest.raises(HealthTimeoutError) as exc:
            verifier.check(spec)
        assert exc.value.last_state == "connection refused"

    def test_command_probe(self):
        verifier = HealthVerifier()
        assert verifier.probe_once(HealthCheckSpec(name="sh", kind="command", target="sh"))[0]


class TestAggregation:
    def test_system_health_status(self):
        health = SystemHealth(variant="arch")
        health.add(ComponentHealth(name="ssh", status="healthy"))
        assert health.healthy
        health.add(ComponentHealth(name="api", status="unhealthy"))
        assert health.status == "unhealthy"
        assert health.to_dict()["components"][1]["name"] == "api"

    def test_verify_variant_reports_each_check(self, api_server):
        port = _closed_port()
        config = default_variant_config(
            Variant.ARCH,
            health_checks=(
                HealthCheckSpec(name="agent-api", kind="http", target=f"{api_server}/health", timeout=5),
                HealthCheckSpec(name="ssh", kind="tcp", target=f"127.0.0.1:{port}", timeout=1, interval=1),
            ),
        )

        health = verify_variant(config)

        assert health.variant == "arch"
        assert health.status == "unhealthy"
        by_name = {c.name: c for c in health.components}
        assert by_name["agent-api"].status == "healthy"
        assert by_name["ssh"].status == "unhealthy"
        assert by_name["ssh"].details["attempts"] >= 1

    def test_default_checks_cover_ssh_and_api(self):
        config = default_variant_config(Variant.NIXOS)
        names = [c.name for c in config.effective_health_checks]
        assert names == ["ssh", "agent-api"]
        assert config.effective_health_checks[0].target == "127.0.0.1:2222"
