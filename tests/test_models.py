"""Tests for the verdict model."""

import pytest

from reaper_harness.models import (
    EXIT_CRASH,
    EXIT_PASSED,
    EXIT_SETUP,
    EXIT_STEP_FAILURE,
    EXIT_TIMEOUT,
    FailureKind,
    HarnessVerdict,
    StepResult,
)


class TestHarnessVerdict:

    @pytest.mark.parametrize("kind,code", [
        (None, EXIT_PASSED),
        (FailureKind.STEP_FAILURE, EXIT_STEP_FAILURE),
        (FailureKind.CRASH, EXIT_CRASH),
        (FailureKind.TIMEOUT, EXIT_TIMEOUT),
        (FailureKind.SETUP, EXIT_SETUP),
    ])
    def test_exit_codes(self, kind, code):
        assert HarnessVerdict(passed=kind is None, failure_kind=kind).exit_code == code

    def test_step_failure_summary_lists_results(self):
        verdict = HarnessVerdict(
            passed=False,
            failure_kind=FailureKind.STEP_FAILURE,
            results=[StepResult.pass_(0, "a"), StepResult.fail(1, "b", "boom")],
            run_id="r1",
            total_steps=2,
        )
        summary = verdict.summary()
        assert summary.startswith("FAILED: 1 of 2 step(s) did not pass")
        assert "run id: r1" in summary
        assert "boom" in summary
        assert "not executed" not in summary

    def test_crash_summary_counts_unexecuted_steps(self):
        verdict = HarnessVerdict(
            passed=False,
            failure_kind=FailureKind.CRASH,
            results=[StepResult.pass_(0, "before-crash")],
            total_steps=3,
        )
        summary = verdict.summary()
        assert summary.startswith("CRASHED:")
        assert "2 step(s) not executed" in summary

    def test_setup_summary(self):
        verdict = HarnessVerdict(passed=False, failure_kind=FailureKind.SETUP, message="no such version")
        assert verdict.summary().splitlines() == ["SETUP FAILURE: no step was run", "  no such version"]
