"""
ProvisionState — what the last provisioning pass left behind.

Serialized to ``<state_dir>/current.json`` after every run. It is a
convenience record for ``provision status`` only: detection always
probes the live host, never this file.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class StepState(BaseModel):
    """Last observed outcome of one step."""

    name: str
    last_status: str | None = None  # skipped, applied, failed
    last_run_at: str | None = None
    last_applied_at: str | None = None
    last_detail: str = ""


class RunRecord(BaseModel):
    """Summary of the last run."""

    run_id: str = ""
    github_user: str = ""
    started_at: str = ""
    ended_at: str = ""
    status: str = ""  # ok, partial, aborted
    aborted: bool = False
    steps_total: int = 0
    steps_applied: int = 0
    steps_skipped: int = 0
    steps_failed: int = 0


class ProvisionState(BaseModel):
    """Root state model — serialized to current.json."""

    schema_version: int = 1

    hostname: str = ""

    created_at: str = Field(default_factory=_now_iso)
    updated_at: str = Field(default_factory=_now_iso)

    steps: dict[str, StepState] = Field(default_factory=dict)
    last_run: RunRecord = Field(default_factory=RunRecord)

    metadata: dict[str, Any] = Field(default_factory=dict)

    def touch(self) -> None:
        """Update the updated_at timestamp."""
        self.updated_at = _now_iso()

    def set_step_state(self, name: str, **kwargs: Any) -> None:
        """Update or create a step state entry."""
        if name in self.steps:
            for key, value in kwargs.items():
                setattr(self.steps[name], key, value)
        else:
            self.steps[name] = StepState(name=name, **kwargs)
