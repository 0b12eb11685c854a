"""
StepResult — the outcome of running one Step.

The executor never lets an exception from a step escape as-is: every
outcome is captured here, the way adapters capture theirs in receipts.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

StepStatus = Literal["skipped", "applied", "failed"]


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class StepResult(BaseModel):
    """Result of one step in a provisioning pass."""

    step: str
    status: StepStatus
    detail: str = ""
    critical: bool = False

    started_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        """Whether the step left the host in its desired state."""
        return self.status != "failed"

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    @classmethod
    def skipped(cls, step: str, detail: str = "already satisfied", **kwargs: Any) -> StepResult:
        """Create a result for a step whose detection found nothing to do."""
        return cls(step=step, status="skipped", detail=detail, **kwargs)

    @classmethod
    def applied(cls, step: str, detail: str = "", **kwargs: Any) -> StepResult:
        """Create a result for a step that changed host state."""
        return cls(step=step, status="applied", detail=detail, **kwargs)

    @classmethod
    def failure(cls, step: str, detail: str, **kwargs: Any) -> StepResult:
        """Create a result for a step whose apply raised."""
        return cls(step=step, status="failed", detail=detail, **kwargs)
