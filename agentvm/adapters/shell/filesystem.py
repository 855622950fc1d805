"""
Filesystem adapter — directories and rendered files.

Covers work directories, cloud-init seeds, launch scripts, systemd
units and config files: everything provisioning writes to disk.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path

from agentvm.adapters.base import Adapter, ExecutionContext
from agentvm.core.models.action import Receipt

logger = logging.getLogger(__name__)

_VALID_OPS = {"write", "mkdir", "append"}


class FilesystemAdapter(Adapter):
    """File and directory operations with receipts.

    Action params:
        operation (str): One of 'write', 'append', 'mkdir'.
        path (str): Target path (relative to working_dir or absolute).
        paths (list[str]): Several targets (for 'mkdir').
        content (str): Content for 'write' / 'append'.
        files (list[dict]): Several files for 'write', each with its own
            path, content, mode and owner.
        mode (int | str): Optional permission bits, e.g. ``0o755`` or ``"0755"``.
        owner (str): Optional ``user`` or ``user:group`` to chown to.
    """

    @property
    def name(self) -> str:
        return "filesystem"

    def is_available(self) -> bool:
        return True

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        params = context.action.params
        operation = params.get("operation", "")
        if not operation:
            return False, "Missing required param: 'operation'"

        if operation not in _VALID_OPS:
            return False, f"Unknown operation '{operation}'. Valid: {', '.join(sorted(_VALID_OPS))}"

        if operation == "write" and params.get("files"):
            for entry in params["files"]:
                if not entry.get("path") or "content" not in entry:
                    return False, "Every entry of 'files' needs 'path' and 'content'"
            return True, ""

        if not params.get("path") and not params.get("paths"):
            return False, "Missing required param: 'path'"

        if operation in ("write", "append") and "content" not in params:
            return False, f"Missing required param: 'content' for {operation} operation"

        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        params = context.action.params
        operation = params["operation"]

        if operation == "write" and params.get("files"):
            entries = list(params["files"])
        elif operation == "mkdir":
            entries = [{**params, "path": p} for p in params.get("paths") or [params["path"]]]
        else:
            entries = [params]

        written: list[str] = []
        try:
            for entry in entries:
                target = context.resolve(entry["path"])
                if operation == "mkdir":
                    target.mkdir(parents=True, exist_ok=True)
                else:
                    self._write(target, entry["content"], append=operation == "append")
                _apply_attributes(target, entry.get("mode"), entry.get("owner"))
                written.append(str(target))
        except OSError as e:
            return Receipt.failure(
                adapter=self.name,
                action_id=context.action.id,
                error=f"Filesystem error: {e}",
                metadata={"operation": operation, "done": written},
            )

        verb = {"mkdir": "Directories ready", "append": "Appended to", "write": "Written"}[operation]
        return Receipt.success(
            adapter=self.name,
            action_id=context.action.id,
            output=f"{verb}: " + ", ".join(written),
            return_code=0,
            metadata={"operation": operation, "paths": written},
        )

    def _write(self, target: Path, content: str, append: bool) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)

        if append:
            with open(target, "a", encoding="utf-8") as fh:
                fh.write(content)
            return

        # Atomic replace: temp file in same directory, then rename
        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
        tmp = Path(tmp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(content)
            tmp.replace(target)
        except OSError:
            tmp.unlink(missing_ok=True)
            raise


def _apply_attributes(target: Path, mode: int | str | None, owner: str | None) -> None:
    if mode is not None:
        target.chmod(int(mode, 8) if isinstance(mode, str) else mode)
    if owner:
        user, _, group = owner.partition(":")
        shutil.chown(target, user=user, group=group or None)
