"""
Run lock — one pipeline per variant at a time.

Two processes provisioning the same variant would write the same disk
image. The lock is an advisory ``flock`` on ``<state_dir>/<variant>.lock``;
the kernel drops it when the process exits, so a crashed run never
leaves a stale lock behind. The PID is written for humans only.
"""

from __future__ import annotations

import fcntl
import logging
import os
from pathlib import Path
from typing import IO

from agentvm.core.errors import RunLockError
from agentvm.core.models.variant import Variant

logger = logging.getLogger(__name__)


class RunLock:
    """Context manager holding the per-variant lock."""

    def __init__(self, state_dir: Path, variant: Variant):
        self.path = state_dir / f"{variant.value}.lock"
        self.variant = variant
        self._fh: IO[str] | None = None

    def acquire(self) -> None:
        """Take the lock without blocking.

        Raises:
            RunLockError: If another process holds it.
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fh = open(self.path, "a+", encoding="utf-8")
        try:
            fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as e:
            fh.seek(0)
            holder = fh.read().strip() or "unknown process"
            fh.close()
            raise RunLockError(
                f"Another {self.variant.display_name} pipeline is running ({holder}); "
                f"lock: {self.path}"
            ) from e

        fh.seek(0)
        fh.truncate()
        fh.write(f"pid={os.getpid()}\n")
        fh.flush()
        self._fh = fh
        logger.debug("Acquired run lock %s", self.path)

    def release(self) -> None:
        if self._fh is None:
            return
        fcntl.flock(self._fh.fileno(), fcntl.LOCK_UN)
        self._fh.close()
        self._fh = None
        logger.debug("Released run lock %s", self.path)

    def __enter__(self) -> RunLock:
        self.acquire()
        return self

    def __exit__(self, *exc: object) -> None:
        self.release()
