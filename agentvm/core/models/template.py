"""
Generated file model — used by all generators.
"""

from __future__ import annotations

from pydantic import BaseModel


class GeneratedFile(BaseModel):
    """A file rendered from a package template.

    Attributes:
        path:    Absolute guest path, or relative to the variant work dir.
        content: Full file content.
        mode:    Octal permission string, e.g. ``"0755"``.
        owner:   ``user`` or ``user:group`` to chown to.
        reason:  Why this file exists (shown by ``agentvm render``).
    """

    path: str
    content: str
    mode: str | None = None
    owner: str | None = None
    reason: str = ""

    def write_params(self) -> dict:
        """Filesystem adapter params that write this file."""
        params: dict = {"operation": "write", "path": self.path, "content": self.content}
        if self.mode:
            params["mode"] = self.mode
        if self.owner:
            params["owner"] = self.owner
        return params
