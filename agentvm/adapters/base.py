"""
Adapter base — the protocol contract between executor and tools.

The executor only talks to external tools (shell, filesystem, HTTP
probes) through this interface, never directly.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path

from pydantic import BaseModel

from agentvm.core.models.action import Action, Receipt


class ExecutionContext(BaseModel):
    """Everything an adapter needs to execute an action."""

    action: Action
    root: str = "."
    work_dir: str = "."
    dry_run: bool = False
    output_limit: int = 64 * 1024

    @property
    def working_dir(self) -> str:
        """Resolved working directory for the action."""
        return str(Path(self.root) / self.work_dir)

    def resolve(self, raw_path: str) -> Path:
        """Resolve a path param relative to the working directory."""
        path = Path(raw_path).expanduser()
        if path.is_absolute():
            return path
        return Path(self.working_dir) / path


class Adapter(ABC):
    """Abstract base class for all adapters.

    Adapters perform external side effects and return receipts.
    They NEVER raise exceptions — failures are captured in the Receipt.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """The adapter identifier (e.g., 'shell', 'filesystem', 'probe')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Check if this adapter's underlying tool is available. Never raises."""

    @abstractmethod
    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        """Validate that the action can be executed.

        Returns:
            (is_valid, error_message). error_message is empty if valid.
        """

    @abstractmethod
    def execute(self, context: ExecutionContext) -> Receipt:
        """Execute the action and return a receipt. MUST never raise."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
