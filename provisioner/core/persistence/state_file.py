"""
State file persistence — atomic read/write for ProvisionState.

State is stored as JSON in ``<state_dir>/current.json``. Writes are
atomic (write to temp file, then rename) so an interrupted run never
leaves a half-written file behind.
"""

from __future__ import annotations

import json
import logging
import os
import socket
import tempfile
from pathlib import Path

from pydantic import ValidationError

from provisioner.core.engine.report import RunReport
from provisioner.core.models.state import ProvisionState, RunRecord

logger = logging.getLogger(__name__)

DEFAULT_STATE_FILE = "current.json"


def default_state_path(state_dir: Path) -> Path:
    """Get the state file path inside a state directory."""
    return state_dir / DEFAULT_STATE_FILE


def load_state(path: Path) -> ProvisionState:
    """Load provisioning state from a JSON file.

    Returns:
        ProvisionState. A missing or unreadable file yields a fresh state.
    """
    if not path.is_file():
        logger.info("No state file at %s, starting fresh", path)
        return ProvisionState()

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        state = ProvisionState.model_validate(data)
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        logger.warning("Cannot load state from %s: %s, starting fresh", path, e)
        return ProvisionState()

    logger.debug("Loaded state from %s (updated_at=%s)", path, state.updated_at)
    return state


def save_state(state: ProvisionState, path: Path) -> None:
    """Save provisioning state to a JSON file (atomic write)."""
    state.touch()
    path.parent.mkdir(parents=True, exist_ok=True)

    content = json.dumps(state.model_dump(mode="json"), indent=2, ensure_ascii=False) + "\n"

    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".state_", suffix=".tmp")
    tmp = Path(tmp_path)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        tmp.replace(path)
    except OSError as e:
        tmp.unlink(missing_ok=True)
        logger.error("Failed to save state to %s: %s", path, e)
        raise
    logger.debug("State saved to %s", path)


def record_run(
    state: ProvisionState,
    report: RunReport,
    github_user: str = "",
    started_at: str = "",
    ended_at: str = "",
) -> ProvisionState:
    """Fold a finished run into the state document."""
    state.hostname = state.hostname or socket.gethostname()
    state.last_run = RunRecord(
        run_id=report.run_id,
        github_user=github_user,
        started_at=started_at,
        ended_at=ended_at,
        status=report.status,
        aborted=report.aborted,
        steps_total=report.total,
        steps_applied=report.applied,
        steps_skipped=report.skipped,
        steps_failed=report.failed,
    )

    for result in report.results:
        updates: dict = {
            "last_status": result.status,
            "last_run_at": result.started_at,
            "last_detail": result.detail,
        }
        if result.status == "applied":
            updates["last_applied_at"] = result.started_at
        state.set_step_state(result.step, **updates)

    return state
