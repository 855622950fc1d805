"""
Tests for the executor — idempotent runs, failure classification,
cancellation and retries.
"""

from pathlib import Path

from agentvm.adapters.base import ExecutionContext
from agentvm.adapters.mock import MockAdapter
from agentvm.adapters.registry import AdapterRegistry
from agentvm.adapters.retry import RetryAdapter
from agentvm.core.engine.checker import IdempotencyChecker
from agentvm.core.engine.executor import (
    CancelToken,
    Executor,
    build_action,
    generate_operation_id,
    write_audit_entry,
)
from agentvm.core.errors import StateInspectionError
from agentvm.core.models.action import Receipt
from agentvm.core.models.step import Condition, Outcome, Step
from agentvm.core.models.variant import Variant, default_variant_config
from agentvm.core.persistence.audit import AuditWriter
from agentvm.core.reliability.retry import RetryPolicy
from agentvm.core.services.pipelines import install_packages_step


def _touch(ctx: ExecutionContext) -> None:
    """Simulate the side effect: create the file named by ``params['path']``."""
    path = ctx.action.params.get("path")
    if path:
        ctx.resolve(path).write_text("done")


def _setup(tmp_path: Path, mock: MockAdapter | None = None, **kwargs) -> tuple[Executor, MockAdapter]:
    mock = mock or MockAdapter(adapter_name="shell", on_execute=_touch)
    registry = AdapterRegistry()
    registry.register(mock)
    registry.register(RetryAdapter(registry, sleep=lambda s: None))
    checker = IdempotencyChecker(tmp_path, overrides=kwargs.pop("overrides", None))
    return Executor(registry, checker, root=str(tmp_path), **kwargs), mock


def _file_step(step_id: str, *depends_on: str, **kwargs) -> Step:
    return Step(
        id=step_id,
        depends_on=depends_on,
        checks=(Condition(kind="file_exists", target=f"{step_id}.done"),),
        params={"command": f"make {step_id}", "path": f"{step_id}.done"},
        **kwargs,
    )


def _outcomes(run) -> dict[str, Outcome]:
    return {r.step_id: r.outcome for r in run.results}


class TestIdempotency:
    def test_second_run_skips_everything(self, tmp_path: Path):
        executor, mock = _setup(tmp_path)
        steps = [_file_step("a"), _file_step("b", "a"), _file_step("c", "b")]

        first = executor.run_pipeline(steps, Variant.ARCH)
        assert all(r.outcome == Outcome.SUCCEEDED for r in first.results)
        assert mock.call_count == 3

        second = executor.run_pipeline(steps, Variant.ARCH)
        assert all(r.outcome == Outcome.SKIPPED for r in second.results)
        assert mock.call_count == 3
        assert second.status == "ok"

    def test_only_unsatisfied_steps_run(self, tmp_path: Path):
        (tmp_path / "a.done").write_text("")
        executor, mock = _setup(tmp_path)

        run = executor.run_pipeline([_file_step("a"), _file_step("b", "a")], Variant.ARCH)
        assert _outcomes(run) == {"a": Outcome.SKIPPED, "b": Outcome.SUCCEEDED}
        assert mock.executed_ids == ["b"]

    def test_step_without_checks_always_runs(self, tmp_path: Path):
        executor, mock = _setup(tmp_path)
        step = Step(id="reload", params={"command": "systemctl reload sshd"})
        executor.run_pipeline([step], Variant.ARCH)
        executor.run_pipeline([step], Variant.ARCH)
        assert mock.call_count == 2


class TestFailures:
    def test_fatal_failure_aborts_remaining_steps(self, tmp_path: Path):
        executor, mock = _setup(tmp_path)
        mock.set_failure("b", error="exit 1")
        steps = [_file_step("a"), _file_step("b"), _file_step("c"), _file_step("d", "c")]

        run = executor.run_pipeline(steps, Variant.ARCH)

        assert _outcomes(run) == {
            "a": Outcome.SUCCEEDED,
            "b": Outcome.FAILED_FATAL,
            "c": Outcome.SKIPPED_DUE_TO_FAILURE,
            "d": Outcome.SKIPPED_DUE_TO_FAILURE,
        }
        assert run.aborted_by == "b"
        assert run.fatal
        assert run.status == "failed"
        assert run.failed_steps == ["b"]
        assert mock.executed_ids == ["a", "b"]

    def test_recoverable_failure_skips_only_dependents(self, tmp_path: Path):
        executor, mock = _setup(tmp_path)
        mock.set_failure("sig", error="signature mirror down")
        steps = [
            _file_step("iso"),
            _file_step("sig", "iso", severity="recoverable"),
            _file_step("verify", "sig"),
            _file_step("report", "verify"),
            _file_step("disk"),
        ]

        run = executor.run_pipeline(steps, Variant.ARCH)

        assert _outcomes(run) == {
            "iso": Outcome.SUCCEEDED,
            "sig": Outcome.FAILED_RECOVERABLE,
            "verify": Outcome.SKIPPED_DUE_TO_FAILURE,
            "report": Outcome.SKIPPED_DUE_TO_FAILURE,
            "disk": Outcome.SUCCEEDED,
        }
        assert not run.fatal
        assert run.status == "partial"
        assert "sig" in run.result("verify").output

    def test_every_step_gets_exactly_one_result(self, tmp_path: Path):
        executor, mock = _setup(tmp_path)
        mock.set_failure("b")
        steps = [_file_step(s) for s in "abcdef"]
        run = executor.run_pipeline(steps, Variant.ARCH)
        assert [r.step_id for r in run.results] == list("abcdef")

    def test_failure_diagnostics_kept(self, tmp_path: Path):
        executor, mock = _setup(tmp_path)
        mock.set_response("a", Receipt.failure(
            adapter="shell", action_id="a", error="Command exited with code 2",
            output="error: target not found: nonexistent-pkg",
        ))
        result = executor.run(_file_step("a"))
        assert result.outcome == Outcome.FAILED_FATAL
        assert result.error == "Command exited with code 2"
        assert "nonexistent-pkg" in result.output

    def test_output_truncated_to_tail(self, tmp_path: Path):
        mock = MockAdapter(adapter_name="shell", default_output="x" * 50 + "END")
        executor, _ = _setup(tmp_path, mock, output_limit=10)
        result = executor.run(Step(id="noisy", params={"command": "yes"}))
        assert len(result.output) == 10
        assert result.output.endswith("END")

    def test_inspection_warning_collected(self, tmp_path: Path):
        def broken(cond, base_dir):
            raise StateInspectionError("pacman not available")

        executor, mock = _setup(tmp_path, overrides={"packages_installed": broken})
        step = Step(
            id="install-packages",
            checks=(Condition(kind="packages_installed", target="standard"),),
            params={"command": "pacman -S"},
        )
        run = executor.run_pipeline([step], Variant.ARCH)

        assert run.results[0].outcome == Outcome.SUCCEEDED
        assert mock.executed_ids == ["install-packages"]
        assert any("pacman not available" in w for w in run.warnings)

    def test_warnings_belong_to_their_own_run(self, tmp_path: Path):
        def broken(cond, base_dir):
            raise StateInspectionError("denied")

        executor, _ = _setup(tmp_path, overrides={"file_exists": broken})
        first = executor.run_pipeline([_file_step("a")], Variant.NIXOS)
        second = executor.run_pipeline([], Variant.ARCH)

        assert len(first.warnings) == 1
        assert second.warnings == []


class TestManifestPackages:
    def test_install_step_skipped_once_packages_present(self, tmp_path: Path):
        installed = {"all": False}
        executor, mock = _setup(
            tmp_path,
            overrides={"packages_installed": lambda cond, base_dir: installed["all"]},
        )
        config = default_variant_config(Variant.ARCH)
        step = install_packages_step(config, ["base", "git", "docker"])

        first = executor.run_pipeline([step], Variant.ARCH, stage="guest")
        assert _outcomes(first) == {"install-packages": Outcome.SUCCEEDED}
        assert mock.executed_ids == ["install-packages"]

        installed["all"] = True
        second = executor.run_pipeline([step], Variant.ARCH, stage="guest")
        assert _outcomes(second) == {"install-packages": Outcome.SKIPPED}
        assert mock.call_count == 1


class TestCancellation:
    def test_cancelled_before_start(self, tmp_path: Path):
        token = CancelToken()
        token.cancel()
        executor, mock = _setup(tmp_path, cancel=token)

        run = executor.run_pipeline([_file_step("a"), _file_step("b")], Variant.ARCH)

        assert all(r.outcome == Outcome.CANCELLED for r in run.results)
        assert run.cancelled
        assert run.status == "cancelled"
        assert mock.call_count == 0

    def test_cancel_stops_before_next_step(self, tmp_path: Path):
        token = CancelToken()

        def cancel_after(ctx: ExecutionContext) -> None:
            _touch(ctx)
            token.cancel()

        mock = MockAdapter(adapter_name="shell", on_execute=cancel_after)
        executor, _ = _setup(tmp_path, mock, cancel=token)

        run = executor.run_pipeline([_file_step("a"), _file_step("b"), _file_step("c")], Variant.ARCH)

        assert _outcomes(run) == {
            "a": Outcome.SUCCEEDED,
            "b": Outcome.CANCELLED,
            "c": Outcome.CANCELLED,
        }
        assert (tmp_path / "a.done").exists()

    def test_keyboard_interrupt_cancels_current_and_rest(self, tmp_path: Path):
        def interrupt(ctx: ExecutionContext) -> None:
            if ctx.action.id == "b":
                raise KeyboardInterrupt
            _touch(ctx)

        mock = MockAdapter(adapter_name="shell", on_execute=interrupt)
        executor, _ = _setup(tmp_path, mock)

        run = executor.run_pipeline([_file_step("a"), _file_step("b"), _file_step("c")], Variant.ARCH)

        assert _outcomes(run) == {
            "a": Outcome.SUCCEEDED,
            "b": Outcome.CANCELLED,
            "c": Outcome.CANCELLED,
        }
        assert run.cancelled


class TestRetry:
    def test_build_action_wraps_retry_policy(self):
        step = Step(id="dl", params={"command": "wget"}, retry=RetryPolicy(attempts=4))
        action = build_action(step)
        assert action.adapter == "retry"
        assert action.params["adapter"] == "shell"
        assert action.params["params"] == {"command": "wget"}
        assert action.params["policy"]["attempts"] == 4

    def test_build_action_plain(self):
        action = build_action(Step(id="x", adapter="filesystem", params={"operation": "mkdir"}))
        assert action.adapter == "filesystem"
        assert action.id == "x"

    def test_succeeds_on_third_attempt(self, tmp_path: Path):
        executor, mock = _setup(tmp_path)
        failure = Receipt.failure(adapter="shell", action_id="dl", error="mirror timeout")
        success = Receipt.success(adapter="shell", action_id="dl", output="saved")
        mock.set_response("dl", failure, failure, success)
        step = Step(id="dl", params={"command": "wget"}, retry=RetryPolicy(attempts=3, base_delay=0))

        result = executor.run(step)

        assert result.outcome == Outcome.SUCCEEDED
        assert result.attempts == 3
        assert mock.call_count == 3

    def test_exhausted_attempts_fail_with_count(self, tmp_path: Path):
        executor, mock = _setup(tmp_path)
        mock.set_failure("dl", error="mirror timeout")
        step = Step(id="dl", params={"command": "wget"}, retry=RetryPolicy(attempts=3, base_delay=0))

        result = executor.run(step)

        assert result.outcome == Outcome.FAILED_FATAL
        assert result.attempts == 3
        assert "after 3 attempts" in result.error

    def test_no_retry_without_policy(self, tmp_path: Path):
        executor, mock = _setup(tmp_path)
        mock.set_failure("once")
        result = executor.run(Step(id="once", params={"command": "false"}))
        assert result.attempts == 1
        assert mock.call_count == 1


class TestDryRun:
    def test_dry_run_executes_nothing(self, tmp_path: Path):
        executor, mock = _setup(tmp_path, dry_run=True)
        steps = [_file_step("a"), _file_step("b", "a", retry=RetryPolicy(attempts=2))]

        run = executor.run_pipeline(steps, Variant.ARCH)

        assert all(r.outcome == Outcome.SKIPPED for r in run.results)
        assert all(r.attempts == 0 for r in run.results)
        assert mock.call_count == 0


class TestAudit:
    def test_operation_id_format(self):
        op_id = generate_operation_id()
        assert op_id.startswith("op-")
        assert len(op_id.split("-")) == 4

    def test_write_audit_entry(self, tmp_path: Path, tmp_state_dir: Path):
        executor, mock = _setup(tmp_path)
        mock.set_failure("b", error="boom")
        run = executor.run_pipeline([_file_step("a"), _file_step("b")], Variant.ARCH, operation_id="op-1")

        writer = AuditWriter(tmp_state_dir)
        write_audit_entry(run, writer)

        [entry] = writer.read_all()
        assert entry.operation_id == "op-1"
        assert entry.operation_type == "provision:host"
        assert entry.variant == "arch"
        assert entry.status == "failed"
        assert entry.steps_succeeded == 1
        assert entry.steps_failed == 1
        assert entry.errors == ["b: boom"]
