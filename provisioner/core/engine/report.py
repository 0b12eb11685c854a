"""
RunReport — aggregate outcome of one provisioning pass.

Created at the start of a pass, written only by the executor, and
finalized (read-only) when the sequence completes or aborts.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from provisioner.core.models.result import StepResult


@dataclass
class RunReport:
    """Ordered step results plus the abort flag."""

    run_id: str = ""
    _results: list[StepResult] = field(default_factory=list, repr=False)
    aborted: bool = False
    finalized: bool = False

    def record(self, result: StepResult) -> None:
        """Append a result. Refused once the report is finalized."""
        if self.finalized:
            raise RuntimeError(f"RunReport {self.run_id or '?'} is finalized")
        self._results.append(result)

    def finalize(self, aborted: bool = False) -> RunReport:
        """Freeze the report. Idempotent; the first abort flag wins."""
        if not self.finalized:
            self.aborted = aborted
            self.finalized = True
        return self

    @property
    def results(self) -> tuple[StepResult, ...]:
        return tuple(self._results)

    @property
    def step_names(self) -> list[str]:
        return [r.step for r in self._results]

    def get(self, step: str) -> StepResult | None:
        """Look up the result for a step name."""
        for result in self._results:
            if result.step == step:
                return result
        return None

    @property
    def total(self) -> int:
        return len(self._results)

    @property
    def applied(self) -> int:
        return sum(1 for r in self._results if r.status == "applied")

    @property
    def skipped(self) -> int:
        return sum(1 for r in self._results if r.status == "skipped")

    @property
    def failed(self) -> int:
        return sum(1 for r in self._results if r.failed)

    @property
    def failed_steps(self) -> list[str]:
        return [r.step for r in self._results if r.failed]

    @property
    def status(self) -> str:
        if self.aborted:
            return "aborted"
        if self.failed:
            return "partial"
        return "ok"

    @property
    def exit_code(self) -> int:
        """Process exit code: non-zero only when the run was aborted."""
        return 1 if self.aborted else 0

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "status": self.status,
            "aborted": self.aborted,
            "total": self.total,
            "applied": self.applied,
            "skipped": self.skipped,
            "failed": self.failed,
            "results": [r.model_dump(mode="json") for r in self._results],
        }
