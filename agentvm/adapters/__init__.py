"""Adapters — the only code that touches the host.

Shell commands, filesystem writes, read-only probes and retries, all
behind the Action → Receipt contract of ``base``.
"""

from agentvm.adapters.base import Adapter, ExecutionContext
from agentvm.adapters.mock import MockAdapter
from agentvm.adapters.probe import ProbeAdapter
from agentvm.adapters.registry import AdapterRegistry
from agentvm.adapters.retry import RetryAdapter
from agentvm.adapters.shell.command import ShellCommandAdapter
from agentvm.adapters.shell.filesystem import FilesystemAdapter

__all__ = [
    "Adapter",
    "AdapterRegistry",
    "ExecutionContext",
    "FilesystemAdapter",
    "MockAdapter",
    "ProbeAdapter",
    "RetryAdapter",
    "ShellCommandAdapter",
]
