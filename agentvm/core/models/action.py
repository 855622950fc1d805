"""
Action and Receipt models — the adapter contract.

The executor turns a Step into an Action and hands it to the adapter
registry; the adapter answers with a Receipt. Adapters never raise:
a non-zero exit, a timeout or a missing file all come back as a
failed Receipt carrying the captured diagnostics.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class Action(BaseModel):
    """A requested side effect, built from a Step."""

    id: str                         # the step id
    adapter: str                    # which adapter handles this
    description: str = ""
    params: dict[str, Any] = Field(default_factory=dict)
    timeout: int = 3600             # seconds


class Receipt(BaseModel):
    """What an adapter reports back for one action.

    ``output`` holds the tail of combined stdout/stderr, ``attempts``
    is stamped by the retry adapter.
    """

    adapter: str
    action_id: str
    status: Literal["ok", "skipped", "failed"] = "ok"

    started_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    output: str = ""
    error: str | None = None
    return_code: int | None = None
    attempts: int = 1

    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    @classmethod
    def success(cls, adapter: str, action_id: str, output: str = "", **kwargs: Any) -> Receipt:
        return cls(adapter=adapter, action_id=action_id, output=output, **kwargs)

    @classmethod
    def failure(cls, adapter: str, action_id: str, error: str, **kwargs: Any) -> Receipt:
        return cls(adapter=adapter, action_id=action_id, status="failed", error=error, **kwargs)

    @classmethod
    def skip(cls, adapter: str, action_id: str, reason: str = "", **kwargs: Any) -> Receipt:
        """Validated but not executed (dry run); ``reason`` lands in output."""
        return cls(adapter=adapter, action_id=action_id, status="skipped", output=reason, **kwargs)
