"""
Tests for the engine — executor loop, run report, and abort handling.
"""

import logging
import time
from datetime import UTC, datetime, timedelta

import pytest

from provisioner.core.engine.errors import AbortError, ApplyError, DetectionError
from provisioner.core.engine.executor import (
    detect_state,
    execute_steps,
    generate_run_id,
    plan_steps,
    run_step,
)
from provisioner.core.engine.keepalive import NullKeepAlive
from provisioner.core.engine.report import RunReport
from provisioner.core.models.result import StepResult
from provisioner.core.models.step import Detection, Step

# ── Helpers ──────────────────────────────────────────────────────────


def _satisfied(host):
    return Detection.SATISFIED


def _needs_apply(host):
    return Detection.NEEDS_APPLY


def _apply_ok(host):
    return "done"


def _apply_fails(host):
    raise ApplyError("E: Unable to locate package nope", command="apt-get install nope", exit_code=100)


def _marker_step(name: str, critical: bool = False) -> Step:
    """A step that writes /etc/<name> and is satisfied once the file exists."""
    path = f"/etc/{name}"

    def _detect(host):
        return Detection.SATISFIED if host.exists(path) else Detection.NEEDS_APPLY

    def _apply(host):
        host.write_file(path, "configured\n")
        return f"wrote {path}"

    return Step(name=name, detect=_detect, apply=_apply, critical=critical)


class _CountingKeepAlive(NullKeepAlive):
    def __init__(self, fail: bool = False):
        super().__init__()
        self.fail = fail
        self.acquire_count = 0

    def acquire(self):
        self.acquire_count += 1
        if self.fail:
            raise ApplyError("sudo: a password is required")
        super().acquire()


# ── Scenarios ────────────────────────────────────────────────────────


class TestScenarios:
    def test_satisfied_then_applied(self, fake_host):
        steps = [
            Step(name="a", detect=_satisfied, apply=_apply_ok),
            Step(name="b", detect=_needs_apply, apply=_apply_ok),
        ]
        report = execute_steps(steps, fake_host)
        assert [(r.step, r.status) for r in report.results] == [
            ("a", "skipped"),
            ("b", "applied"),
        ]
        assert report.aborted is False
        assert report.exit_code == 0

    def test_non_critical_failure_continues(self, fake_host):
        steps = [
            Step(name="a", detect=_needs_apply, apply=_apply_fails),
            Step(name="b", detect=_needs_apply, apply=_apply_ok),
        ]
        report = execute_steps(steps, fake_host)
        assert [(r.step, r.status) for r in report.results] == [
            ("a", "failed"),
            ("b", "applied"),
        ]
        assert report.aborted is False
        assert report.status == "partial"
        assert report.exit_code == 0

    def test_critical_failure_aborts(self, fake_host):
        called = []

        def _apply_b(host):
            called.append("b")
            return "done"

        steps = [
            Step(name="a", detect=_needs_apply, apply=_apply_fails, critical=True),
            Step(name="b", detect=_needs_apply, apply=_apply_b),
        ]
        with pytest.raises(AbortError) as exc_info:
            execute_steps(steps, fake_host)

        err = exc_info.value
        assert err.step == "a"
        assert "Unable to locate package" in err.detail
        assert err.report.step_names == ["a"]
        assert err.report.get("a").status == "failed"
        assert err.report.aborted is True
        assert err.report.exit_code != 0
        assert called == []

    def test_second_run_is_all_skipped(self, fake_host):
        steps = [
            Step(name="a", detect=_satisfied, apply=_apply_ok),
            _marker_step("b"),
        ]
        first = execute_steps(steps, fake_host)
        assert first.applied == 1

        second = execute_steps(steps, fake_host)
        assert [(r.step, r.status) for r in second.results] == [
            ("a", "skipped"),
            ("b", "skipped"),
        ]
        assert second.applied == 0


# ── Properties ───────────────────────────────────────────────────────


class TestExecutorProperties:
    def test_results_follow_input_order(self, fake_host):
        names = ["zeta", "alpha", "mid", "beta", "omega"]
        steps = [Step(name=n, detect=_needs_apply, apply=_apply_ok) for n in names]
        report = execute_steps(steps, fake_host)
        assert report.step_names == names

    def test_order_preserved_up_to_abort(self, fake_host):
        steps = [
            Step(name="one", detect=_satisfied, apply=_apply_ok),
            Step(name="two", detect=_needs_apply, apply=_apply_fails),
            Step(name="three", detect=_needs_apply, apply=_apply_fails, critical=True),
            Step(name="four", detect=_needs_apply, apply=_apply_ok),
        ]
        with pytest.raises(AbortError) as exc_info:
            execute_steps(steps, fake_host)
        assert exc_info.value.report.step_names == ["one", "two", "three"]

    def test_skipped_step_never_applies(self, fake_host):
        calls = []

        def _apply(host):
            calls.append("applied")
            return ""

        execute_steps([Step(name="a", detect=_satisfied, apply=_apply)], fake_host)
        assert calls == []

    def test_critical_success_does_not_abort(self, fake_host):
        steps = [
            Step(name="a", detect=_needs_apply, apply=_apply_ok, critical=True),
            Step(name="b", detect=_needs_apply, apply=_apply_ok),
        ]
        report = execute_steps(steps, fake_host)
        assert report.applied == 2
        assert report.aborted is False

    def test_duplicate_names_rejected(self, fake_host):
        steps = [
            Step(name="a", detect=_satisfied, apply=_apply_ok),
            Step(name="a", detect=_satisfied, apply=_apply_ok),
        ]
        with pytest.raises(ValueError, match="Duplicate step names: a"):
            execute_steps(steps, fake_host)

    def test_empty_step_list(self, fake_host):
        report = execute_steps([], fake_host)
        assert report.total == 0
        assert report.finalized is True
        assert report.status == "ok"

    def test_on_result_called_in_order(self, fake_host):
        seen = []
        steps = [
            Step(name="a", detect=_satisfied, apply=_apply_ok),
            Step(name="b", detect=_needs_apply, apply=_apply_fails),
            Step(name="c", detect=_needs_apply, apply=_apply_ok),
        ]
        execute_steps(steps, fake_host, on_result=lambda step, result: seen.append((step.name, result.status)))
        assert seen == [("a", "skipped"), ("b", "failed"), ("c", "applied")]

    def test_on_result_sees_critical_failure_before_abort(self, fake_host):
        seen = []
        steps = [Step(name="a", detect=_needs_apply, apply=_apply_fails, critical=True)]
        with pytest.raises(AbortError):
            execute_steps(steps, fake_host, on_result=lambda step, result: seen.append(result.status))
        assert seen == ["failed"]

    def test_run_id_passed_through(self, fake_host):
        report = execute_steps([], fake_host, run_id="run-test")
        assert report.run_id == "run-test"


class TestDetection:
    def test_detection_error_means_apply(self, fake_host):
        def _detect(host):
            raise DetectionError("cannot stat /var/lib/apt/lists")

        report = execute_steps([Step(name="a", detect=_detect, apply=_apply_ok)], fake_host)
        assert report.get("a").status == "applied"

    def test_unexpected_detection_exception_means_apply(self, fake_host):
        def _detect(host):
            raise KeyError("boom")

        detection, error = detect_state(Step(name="a", detect=_detect, apply=_apply_ok), fake_host)
        assert detection is Detection.NEEDS_APPLY
        assert "boom" in error

    def test_non_detection_return_means_apply(self, fake_host):
        step = Step(name="a", detect=lambda host: True, apply=_apply_ok)
        detection, error = detect_state(step, fake_host)
        assert detection is Detection.NEEDS_APPLY
        assert error is not None


class TestRunStep:
    def test_apply_error_detail_kept_verbatim(self, fake_host):
        result = run_step(Step(name="a", detect=_needs_apply, apply=_apply_fails), fake_host)
        assert result.failed
        assert result.detail == "E: Unable to locate package nope"

    def test_unexpected_exception_is_captured(self, fake_host):
        def _apply(host):
            raise RuntimeError("disk full")

        result = run_step(Step(name="a", detect=_needs_apply, apply=_apply), fake_host)
        assert result.failed
        assert result.detail == "RuntimeError: disk full"

    def test_none_detail_becomes_empty(self, fake_host):
        result = run_step(Step(name="a", detect=_needs_apply, apply=lambda host: None), fake_host)
        assert result.status == "applied"
        assert result.detail == ""

    def test_critical_flag_copied(self, fake_host):
        result = run_step(Step(name="a", detect=_satisfied, apply=_apply_ok, critical=True), fake_host)
        assert result.critical is True
        assert result.status == "skipped"

    def test_started_at_is_before_apply(self, fake_host):
        def _slow(host):
            time.sleep(0.3)
            return "done"

        before = datetime.now(UTC)
        result = run_step(Step(name="a", detect=_needs_apply, apply=_slow), fake_host)
        started = datetime.fromisoformat(result.started_at)
        assert started - before < timedelta(seconds=0.2)
        assert result.duration_ms >= 300

    def test_failure_not_logged_above_info(self, fake_host, caplog):
        steps = [
            Step(name="a", detect=_needs_apply, apply=_apply_fails),
            Step(name="b", detect=_needs_apply, apply=_apply_fails, critical=True),
        ]
        with caplog.at_level(logging.DEBUG, logger="provisioner"), pytest.raises(AbortError):
            execute_steps(steps, fake_host)
        engine = [r for r in caplog.records if r.name.startswith("provisioner.core.engine")]
        assert engine
        assert all(r.levelno <= logging.INFO for r in engine)


# ── Keep-alive envelope ──────────────────────────────────────────────


class TestKeepAliveEnvelope:
    def test_released_once_on_completion(self, fake_host):
        keepalive = _CountingKeepAlive()
        execute_steps([Step(name="a", detect=_needs_apply, apply=_apply_ok)], fake_host, keepalive=keepalive)
        assert keepalive.acquire_count == 1
        assert keepalive.release_count == 1

    def test_released_once_on_abort(self, fake_host):
        keepalive = _CountingKeepAlive()
        steps = [Step(name="a", detect=_needs_apply, apply=_apply_fails, critical=True)]
        with pytest.raises(AbortError):
            execute_steps(steps, fake_host, keepalive=keepalive)
        assert keepalive.release_count == 1

    def test_released_on_unexpected_exit(self, fake_host):
        keepalive = _CountingKeepAlive()

        def _on_result(step, result):
            raise SystemExit(143)

        with pytest.raises(SystemExit):
            execute_steps(
                [Step(name="a", detect=_needs_apply, apply=_apply_ok)],
                fake_host,
                keepalive=keepalive,
                on_result=_on_result,
            )
        assert keepalive.release_count == 1

    def test_acquire_failure_aborts_before_any_step(self, fake_host):
        keepalive = _CountingKeepAlive(fail=True)
        called = []
        steps = [Step(name="a", detect=_needs_apply, apply=lambda host: called.append(1) or "")]

        with pytest.raises(AbortError) as exc_info:
            execute_steps(steps, fake_host, keepalive=keepalive)

        assert exc_info.value.step == "acquire-privileges"
        assert exc_info.value.report.total == 0
        assert exc_info.value.report.aborted is True
        assert called == []


# ── Planning ─────────────────────────────────────────────────────────


class TestPlanSteps:
    def test_plan_never_applies(self, fake_host):
        calls = []
        steps = [
            Step(name="a", detect=_satisfied, apply=lambda host: calls.append("a") or ""),
            Step(name="b", detect=_needs_apply, apply=lambda host: calls.append("b") or "", critical=True),
        ]
        planned = plan_steps(steps, fake_host)
        assert [(p.name, p.detection) for p in planned] == [
            ("a", Detection.SATISFIED),
            ("b", Detection.NEEDS_APPLY),
        ]
        assert planned[1].critical is True
        assert calls == []

    def test_plan_to_dict(self, fake_host):
        planned = plan_steps([Step(name="a", detect=_satisfied, apply=_apply_ok)], fake_host)
        assert planned[0].to_dict() == {
            "name": "a",
            "detection": "already_satisfied",
            "critical": False,
            "probe_error": None,
        }


# ── Report ───────────────────────────────────────────────────────────


class TestRunReport:
    def test_counts(self):
        report = RunReport(run_id="r1")
        report.record(StepResult.skipped("a"))
        report.record(StepResult.applied("b"))
        report.record(StepResult.failure("c", "nope"))
        report.finalize()
        assert (report.total, report.applied, report.skipped, report.failed) == (3, 1, 1, 1)
        assert report.failed_steps == ["c"]

    def test_record_after_finalize_refused(self):
        report = RunReport(run_id="r1").finalize()
        with pytest.raises(RuntimeError):
            report.record(StepResult.applied("a"))

    def test_finalize_is_idempotent(self):
        report = RunReport()
        report.finalize(aborted=True)
        report.finalize(aborted=False)
        assert report.aborted is True

    def test_results_is_a_snapshot(self):
        report = RunReport()
        report.record(StepResult.applied("a"))
        results = report.results
        assert isinstance(results, tuple)
        assert len(results) == 1

    def test_status_values(self):
        ok = RunReport().finalize()
        assert ok.status == "ok"

        partial = RunReport()
        partial.record(StepResult.failure("a", "x"))
        assert partial.finalize().status == "partial"

        aborted = RunReport().finalize(aborted=True)
        assert aborted.status == "aborted"
        assert aborted.exit_code == 1

    def test_to_dict(self):
        report = RunReport(run_id="r1")
        report.record(StepResult.applied("a", detail="ok"))
        data = report.finalize().to_dict()
        assert data["run_id"] == "r1"
        assert data["status"] == "ok"
        assert data["results"][0]["step"] == "a"
        assert data["results"][0]["status"] == "applied"


class TestRunId:
    def test_format(self):
        run_id = generate_run_id()
        assert run_id.startswith("run-")
        assert len(run_id.split("-")) == 4

    def test_unique(self):
        assert generate_run_id() != generate_run_id()
