"""
Status use case — what the last runs left behind.

Reads the state file and the audit ledger. The host is not probed; use
``provision plan`` for live detection.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from provisioner.core.config.loader import ConfigError, load_config
from provisioner.core.models.state import ProvisionState
from provisioner.core.persistence.audit import AuditEntry, AuditWriter
from provisioner.core.persistence.state_file import default_state_path, load_state


@dataclass
class StatusResult:
    """Last recorded run plus per-step history."""

    state: ProvisionState | None = None
    state_path: Path | None = None
    run_count: int = 0
    error: str | None = None

    @property
    def has_run(self) -> bool:
        return bool(self.state and self.state.last_run.run_id)

    def to_dict(self) -> dict:
        result: dict = {}
        if self.error:
            result["error"] = self.error
            return result

        result["state_path"] = str(self.state_path) if self.state_path else None
        result["run_count"] = self.run_count
        if self.state:
            result["hostname"] = self.state.hostname
            result["last_run"] = self.state.last_run.model_dump(mode="json")
            result["steps"] = {
                name: s.model_dump(mode="json") for name, s in self.state.steps.items()
            }
        return result


@dataclass
class HistoryResult:
    """Recent audit ledger entries, oldest first."""

    entries: list[AuditEntry] = field(default_factory=list)
    ledger_path: Path | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error}
        return {
            "ledger_path": str(self.ledger_path) if self.ledger_path else None,
            "entries": [e.model_dump(mode="json") for e in self.entries],
        }


def _state_dir(config_path: Path | None, state_dir: Path | None) -> Path:
    if state_dir is not None:
        return state_dir
    return load_config(config_path).state_path


def get_status(
    config_path: Path | None = None,
    state_dir: Path | None = None,
) -> StatusResult:
    """Load the state file for the configured state directory."""
    result = StatusResult()

    try:
        root = _state_dir(config_path, state_dir)
    except ConfigError as e:
        result.error = str(e)
        return result

    result.state_path = default_state_path(root)
    result.state = load_state(result.state_path)
    result.run_count = AuditWriter(state_dir=root).entry_count()
    return result


def get_history(
    config_path: Path | None = None,
    state_dir: Path | None = None,
    limit: int = 20,
) -> HistoryResult:
    """Read the most recent audit entries."""
    result = HistoryResult()

    try:
        root = _state_dir(config_path, state_dir)
    except ConfigError as e:
        result.error = str(e)
        return result

    writer = AuditWriter(state_dir=root)
    result.ledger_path = writer.path
    result.entries = writer.read_recent(limit)
    return result
