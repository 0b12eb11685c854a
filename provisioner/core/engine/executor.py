"""
Engine executor — the provisioning loop.

Takes an ordered list of steps and a host, and converges the host one
step at a time:

    detect → (satisfied? skip) → apply → record → (critical failure? abort)

Strictly sequential. No step starts before the previous one has been
recorded, and results are recorded in input order.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime

from provisioner.adapters.base import Host
from provisioner.core.engine.errors import AbortError, ApplyError
from provisioner.core.engine.keepalive import KeepAlive
from provisioner.core.engine.report import RunReport
from provisioner.core.models.result import StepResult
from provisioner.core.models.step import Detection, Step, validate_steps

logger = logging.getLogger(__name__)

ResultCallback = Callable[[Step, StepResult], None]


@dataclass
class PlannedStep:
    """Detection-only view of a step."""

    name: str
    detection: Detection
    critical: bool = False
    probe_error: str | None = None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "detection": self.detection.value,
            "critical": self.critical,
            "probe_error": self.probe_error,
        }


def detect_state(step: Step, host: Host) -> tuple[Detection, str | None]:
    """Run a step's detection probe with the optimistic fallback.

    A probe that raises counts as NEEDS_APPLY: the run tries the action
    rather than blocking on an unreadable host state.

    Returns:
        (detection, probe error message or None)
    """
    try:
        detection = step.detect(host)
    except Exception as e:
        logger.debug("Detection for '%s' failed, will apply: %s", step.name, e)
        return Detection.NEEDS_APPLY, str(e)

    if not isinstance(detection, Detection):
        logger.debug("Detection for '%s' returned %r, will apply", step.name, detection)
        return Detection.NEEDS_APPLY, f"unexpected detection result {detection!r}"
    return detection, None


def run_step(step: Step, host: Host) -> StepResult:
    """Detect, and if needed apply, a single step. Never raises."""
    started_at = datetime.now(UTC).isoformat()
    start = time.monotonic()
    detection, _ = detect_state(step, host)

    if detection is Detection.SATISFIED:
        return StepResult.skipped(step.name, critical=step.critical, started_at=started_at)

    try:
        detail = step.apply(host) or ""
        result = StepResult.applied(
            step.name, detail=detail, critical=step.critical, started_at=started_at
        )
    except ApplyError as e:
        result = StepResult.failure(
            step.name, detail=e.detail, critical=step.critical, started_at=started_at
        )
    except Exception as e:
        logger.debug("Step '%s' raised unexpectedly", step.name, exc_info=True)
        result = StepResult.failure(
            step.name,
            detail=f"{type(e).__name__}: {e}",
            critical=step.critical,
            started_at=started_at,
        )

    result.duration_ms = int((time.monotonic() - start) * 1000)
    return result


def execute_steps(
    steps: Sequence[Step],
    host: Host,
    *,
    keepalive: KeepAlive | None = None,
    on_result: ResultCallback | None = None,
    run_id: str | None = None,
) -> RunReport:
    """Run every step in order against one host.

    Args:
        steps: Ordered step list. Names must be unique.
        host: Target host handle.
        keepalive: Privilege grant held for the duration of the run.
        on_result: Called with each result as soon as it is recorded.
        run_id: Identifier for the report (generated if omitted).

    Returns:
        The finalized RunReport (never aborted).

    Raises:
        AbortError: A critical step failed, or the keep-alive could not
            be acquired. ``exc.report`` holds the results up to that point.
        ValueError: Duplicate step names.
    """
    validate_steps(steps)
    report = RunReport(run_id=run_id or generate_run_id())

    if keepalive is not None:
        try:
            keepalive.acquire()
        except ApplyError as e:
            logger.info("✗ could not acquire privileges: %s", e.detail)
            report.finalize(aborted=True)
            raise AbortError("acquire-privileges", e.detail, report) from e

    try:
        for step in steps:
            result = run_step(step, host)
            report.record(result)
            _log_result(step, result)
            if on_result is not None:
                on_result(step, result)

            if result.failed and step.critical:
                report.finalize(aborted=True)
                raise AbortError(step.name, result.detail, report)

        return report.finalize(aborted=False)
    finally:
        if keepalive is not None:
            keepalive.release()


def plan_steps(steps: Sequence[Step], host: Host) -> list[PlannedStep]:
    """Probe every step without applying anything."""
    validate_steps(steps)
    planned = []
    for step in steps:
        detection, error = detect_state(step, host)
        planned.append(
            PlannedStep(
                name=step.name,
                detection=detection,
                critical=step.critical,
                probe_error=error,
            )
        )
    return planned


def _log_result(step: Step, result: StepResult) -> None:
    # Outcomes are rendered by the caller; the log only keeps a trail
    if result.status == "applied":
        logger.info("✓ %s → applied", step.name)
    elif result.status == "skipped":
        logger.info("⊘ %s → already satisfied", step.name)
    else:
        critical = " (critical)" if step.critical else ""
        logger.info("✗ %s → failed%s: %s", step.name, critical, result.detail)


def generate_run_id() -> str:
    """Generate a unique run ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"run-{now}-{short}"
