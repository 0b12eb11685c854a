"""
Audit ledger — append-only run history.

Every provisioning pass writes one entry to an NDJSON (newline-delimited
JSON) file, aborted passes included. Entries are never modified or
deleted; ``provision history`` reads them back.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from provisioner.core.engine.report import RunReport

logger = logging.getLogger(__name__)

DEFAULT_AUDIT_FILE = "audit.ndjson"


class AuditEntry(BaseModel):
    """A single audit log entry."""

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    run_id: str = ""
    hostname: str = ""
    github_user: str = ""
    mock: bool = False

    # Results
    status: str = ""  # ok, partial, aborted
    aborted: bool = False
    steps_total: int = 0
    steps_applied: int = 0
    steps_skipped: int = 0
    steps_failed: int = 0
    duration_ms: int = 0

    applied: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    @classmethod
    def from_report(cls, report: RunReport, **kwargs: Any) -> AuditEntry:
        """Summarize a finalized report."""
        return cls(
            run_id=report.run_id,
            status=report.status,
            aborted=report.aborted,
            steps_total=report.total,
            steps_applied=report.applied,
            steps_skipped=report.skipped,
            steps_failed=report.failed,
            applied=[r.step for r in report.results if r.status == "applied"],
            failed=report.failed_steps,
            errors=[f"{r.step}: {r.detail}" for r in report.results if r.failed],
            **kwargs,
        )


class AuditWriter:
    """The ledger file for one state directory.

    Writes append one JSON line; the file and its directory are created on
    first write. Reads skip blank and unparseable lines.
    """

    def __init__(self, path: Path | None = None, state_dir: Path | None = None):
        self.path = path or (state_dir or Path()) / DEFAULT_AUDIT_FILE

    def write(self, entry: AuditEntry) -> None:
        """Append an entry. Failures are logged, never raised."""
        line = json.dumps(entry.model_dump(mode="json"), ensure_ascii=False)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError as e:
            logger.error("Failed to write audit entry %s: %s", entry.run_id, e)
            return
        logger.debug("Audit entry written: %s", entry.run_id)

    def _lines(self) -> Iterator[tuple[int, str]]:
        if not self.path.is_file():
            return
        try:
            with self.path.open(encoding="utf-8") as f:
                for number, raw in enumerate(f, start=1):
                    if raw.strip():
                        yield number, raw
        except OSError as e:
            logger.error("Failed to read audit ledger %s: %s", self.path, e)

    def read_all(self) -> list[AuditEntry]:
        """All entries, oldest first."""
        entries = []
        for number, raw in self._lines():
            try:
                entries.append(AuditEntry.model_validate_json(raw))
            except ValidationError as e:
                logger.warning("Skipping corrupt audit entry at line %d: %s", number, e)
        return entries

    def read_recent(self, n: int = 20) -> list[AuditEntry]:
        """The last ``n`` entries, oldest first."""
        return self.read_all()[-n:] if n > 0 else []

    def entry_count(self) -> int:
        """Number of non-blank lines; entries are not parsed."""
        return sum(1 for _ in self._lines())
