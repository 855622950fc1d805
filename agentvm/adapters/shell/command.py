"""
Shell command adapter — run external tools and capture their output.

Combined stdout/stderr is spooled to a temporary file and only the
tail (``output_limit`` bytes) is read back, so a chatty pacman or nix
build never grows memory without bound.

Children run in their own session: a Ctrl-C at the terminal reaches
agentvm only, which lets the running action finish before the executor
stops. A second interrupt terminates the child with SIGTERM (then
SIGKILL after a grace period) instead of abandoning it mid-transaction.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tempfile
import time
from pathlib import Path
from typing import IO

from agentvm.adapters.base import Adapter, ExecutionContext
from agentvm.core.models.action import Receipt

logger = logging.getLogger(__name__)

_TERMINATE_GRACE = 10.0


def read_tail(sink: IO[bytes], limit: int) -> tuple[str, bool]:
    """Read at most ``limit`` trailing bytes from a spooled output file.

    Returns:
        (decoded text, whether output was truncated)
    """
    sink.seek(0, os.SEEK_END)
    size = sink.tell()
    sink.seek(max(0, size - limit))
    data = sink.read()
    return data.decode("utf-8", errors="replace").strip(), size > limit


def terminate(proc: subprocess.Popen, grace: float = _TERMINATE_GRACE) -> None:
    """Stop a child cleanly: SIGTERM, wait, then SIGKILL."""
    if proc.poll() is not None:
        return
    proc.terminate()
    try:
        proc.wait(timeout=grace)
    except subprocess.TimeoutExpired:
        logger.warning("Process %d ignored SIGTERM, killing", proc.pid)
        proc.kill()
        proc.wait()


class ShellCommandAdapter(Adapter):
    """Execute shell commands and capture bounded output.

    Action params:
        command (str | list[str]): The command to execute.
        shell (bool): Run a string command through ``sh -c`` (default: True).
        cwd (str): Working directory override (default: context.working_dir).
        env (dict): Extra environment variables.
        background (bool): Start detached and return once it survived
            ``grace`` seconds (used to boot VMs).
        log_file (str): Output file for background commands.
        pid_file (str): Where to record a background command's PID.
        grace (float): Seconds a background command must survive (default: 1).
    """

    @property
    def name(self) -> str:
        return "shell"

    def is_available(self) -> bool:
        return shutil.which("sh") is not None

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        command = context.action.params.get("command")
        if not command:
            return False, "Missing required param: 'command'"

        # A dry run never creates the directories earlier steps would
        cwd = context.action.params.get("cwd", context.working_dir)
        if cwd and not context.dry_run and not Path(cwd).is_dir():
            return False, f"Working directory does not exist: {cwd}"

        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        params = context.action.params
        command = params["command"]
        use_shell = params.get("shell", isinstance(command, str))
        cwd = params.get("cwd", context.working_dir)

        env = os.environ.copy()
        for key, value in (params.get("env") or {}).items():
            env[key] = os.path.expandvars(str(value))

        if params.get("background"):
            return self._start_background(context, command, use_shell, cwd, env)

        timeout = context.action.timeout
        logger.debug("Executing: %s (cwd=%s)", command, cwd)
        start = time.monotonic()

        with tempfile.TemporaryFile() as sink:
            try:
                proc = subprocess.Popen(
                    command,
                    shell=use_shell,
                    cwd=cwd,
                    env=env,
                    stdin=subprocess.DEVNULL,
                    stdout=sink,
                    stderr=subprocess.STDOUT,
                    start_new_session=True,
                )
            except OSError as e:
                return Receipt.failure(
                    adapter=self.name,
                    action_id=context.action.id,
                    error=f"Command execution error: {e}",
                    metadata={"command": command},
                )

            try:
                return_code = proc.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                terminate(proc)
                output, truncated = read_tail(sink, context.output_limit)
                return Receipt.failure(
                    adapter=self.name,
                    action_id=context.action.id,
                    error=f"Command timed out after {timeout}s",
                    output=output,
                    metadata={"command": command, "timeout": timeout, "truncated": truncated},
                )
            except KeyboardInterrupt:
                logger.warning("Interrupted — terminating %s", command)
                terminate(proc)
                raise

            output, truncated = read_tail(sink, context.output_limit)

        elapsed_ms = int((time.monotonic() - start) * 1000)
        metadata = {"command": command, "truncated": truncated}

        if return_code == 0:
            return Receipt.success(
                adapter=self.name,
                action_id=context.action.id,
                output=output,
                return_code=return_code,
                duration_ms=elapsed_ms,
                metadata=metadata,
            )
        return Receipt.failure(
            adapter=self.name,
            action_id=context.action.id,
            error=f"Command exited with code {return_code}",
            output=output,
            return_code=return_code,
            duration_ms=elapsed_ms,
            metadata=metadata,
        )

    def _start_background(
        self,
        context: ExecutionContext,
        command: str | list[str],
        use_shell: bool,
        cwd: str,
        env: dict[str, str],
    ) -> Receipt:
        params = context.action.params
        log_path = context.resolve(params.get("log_file", f"{context.action.id}.log"))
        grace = float(params.get("grace", 1.0))
        log_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            with open(log_path, "ab") as log:
                proc = subprocess.Popen(
                    command,
                    shell=use_shell,
                    cwd=cwd,
                    env=env,
                    stdin=subprocess.DEVNULL,
                    stdout=log,
                    stderr=subprocess.STDOUT,
                    start_new_session=True,
                )
        except OSError as e:
            return Receipt.failure(
                adapter=self.name,
                action_id=context.action.id,
                error=f"Command execution error: {e}",
                metadata={"command": command},
            )

        try:
            return_code = proc.wait(timeout=grace)
        except subprocess.TimeoutExpired:
            return_code = None

        if return_code is not None and return_code != 0:
            with open(log_path, "rb") as log:
                output, _ = read_tail(log, context.output_limit)
            return Receipt.failure(
                adapter=self.name,
                action_id=context.action.id,
                error=f"Background command exited early with code {return_code}",
                output=output,
                return_code=return_code,
                metadata={"command": command, "log_file": str(log_path)},
            )

        if params.get("pid_file"):
            pid_path = context.resolve(params["pid_file"])
            pid_path.parent.mkdir(parents=True, exist_ok=True)
            pid_path.write_text(f"{proc.pid}\n", encoding="utf-8")

        logger.info("Started %s in background (pid %d, log %s)", context.action.id, proc.pid, log_path)
        return Receipt.success(
            adapter=self.name,
            action_id=context.action.id,
            output=f"Started in background (pid {proc.pid}), logging to {log_path}",
            return_code=0,
            metadata={"command": command, "pid": proc.pid, "log_file": str(log_path)},
        )
