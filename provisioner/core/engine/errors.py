"""
Provisioning error taxonomy.

    DetectionError  state probe failed — absorbed by the executor (treated
                    as "needs apply"), never surfaces past detection.
    ApplyError      the action failed — absorbed into the StepResult for
                    non-critical steps, escalated to AbortError otherwise.
    AbortError      run-level failure raised by the executor when a
                    critical step fails. Carries the finalized report.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from provisioner.core.engine.report import RunReport


class ProvisionError(Exception):
    """Base class for provisioning errors."""


class DetectionError(ProvisionError):
    """Raised when host state cannot be probed."""


class ApplyError(ProvisionError):
    """Raised when a step's action fails.

    ``detail`` holds the underlying diagnostic verbatim (command stderr,
    network error, permission denial) for operator visibility.
    """

    def __init__(self, detail: str, command: str | None = None, exit_code: int | None = None):
        super().__init__(detail)
        self.detail = detail
        self.command = command
        self.exit_code = exit_code


class AbortError(ProvisionError):
    """Raised when a critical step fails and the run halts."""

    def __init__(self, step: str, detail: str, report: RunReport):
        super().__init__(f"Critical step '{step}' failed: {detail}")
        self.step = step
        self.detail = detail
        self.report = report
