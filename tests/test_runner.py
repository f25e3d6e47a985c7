"""Tests for the tick-driven step runner (in-process, fake host)."""

from unittest.mock import MagicMock

import pytest

from reaper_harness.errors import SetupClosed, StepFailure
from reaper_harness.models import HOST_EXIT_FAILED, OutcomeTag
from reaper_harness.plugin.runner import RunnerState, StepRunner
from reaper_harness.plugin.steps import StepQueue, TestStep
from reaper_harness.sink import ResultSink, read_sink


def make_queue(*steps):
    queue = StepQueue()
    for name, action in steps:
        queue.push(TestStep(name, action))
    return queue


def passes(ctx):
    pass


def fails(ctx):
    raise StepFailure("boom")


def asserts(ctx):
    raise AssertionError("one is not two")


def bare_assert(ctx):
    raise AssertionError()


def explodes(ctx):
    raise RuntimeError("kaput")


@pytest.fixture
def host():
    return MagicMock()


@pytest.fixture
def open_sink(sink_dir):
    def make(total):
        return ResultSink.open(sink_dir, "unit", total)
    return make


class TestStepRunner:

    def test_runs_one_step_per_tick(self, host, open_sink):
        calls = []
        queue = make_queue(
            ("a", lambda ctx: calls.append("a")),
            ("b", lambda ctx: calls.append("b")),
        )
        runner = StepRunner(queue, host, sink=open_sink(2))

        assert runner.tick() is True
        assert calls == ["a"]
        assert runner.state is RunnerState.IDLE
        assert runner.tick() is True
        assert calls == ["a", "b"]
        assert not runner.finished
        assert runner.tick() is False
        assert runner.finished
        assert runner.tick() is False
        assert calls == ["a", "b"]

    def test_all_steps_recorded_in_push_order(self, host, open_sink):
        names = ["init", "write-value", "read-value"]
        sink = open_sink(3)
        runner = StepRunner(make_queue(*[(n, passes) for n in names]), host, sink=sink)

        runner.run_all()

        manifest, results = read_sink(sink.path)
        assert [r.step_name for r in results] == names
        assert [r.sequence_index for r in results] == [0, 1, 2]
        assert all(r.tag is OutcomeTag.PASS for r in results)
        assert manifest.completion_marker
        host.request_exit.assert_called_once_with(0)

    def test_failure_does_not_stop_later_steps(self, host, open_sink):
        sink = open_sink(3)
        runner = StepRunner(make_queue(("a", passes), ("b", fails), ("c", passes)), host, sink=sink)

        runner.run_all()

        _, results = read_sink(sink.path)
        assert [(r.tag, r.message) for r in results] == [
            (OutcomeTag.PASS, ""),
            (OutcomeTag.FAIL, "boom"),
            (OutcomeTag.PASS, ""),
        ]
        host.request_exit.assert_called_once_with(HOST_EXIT_FAILED)
        assert not runner.passed

    def test_assertion_error_is_a_failure(self, host):
        runner = StepRunner(make_queue(("eq", asserts), ("bare", bare_assert)), host)
        results = runner.run_all()

        assert results[0].tag is OutcomeTag.FAIL
        assert results[0].message == "one is not two"
        assert results[1].tag is OutcomeTag.FAIL
        assert results[1].message.startswith("AssertionError at ")

    def test_return_value_decides_outcome(self, host):
        runner = StepRunner(
            make_queue(
                ("none", lambda ctx: None),
                ("true", lambda ctx: True),
                ("message", lambda ctx: "boom"),
                ("false", lambda ctx: False),
                ("empty", lambda ctx: ""),
                ("number", lambda ctx: 0),
            ),
            host,
        )
        results = runner.run_all()

        assert [(r.tag, r.message) for r in results] == [
            (OutcomeTag.PASS, ""),
            (OutcomeTag.PASS, ""),
            (OutcomeTag.FAIL, "boom"),
            (OutcomeTag.FAIL, "step returned False"),
            (OutcomeTag.FAIL, "step returned an empty message"),
            (OutcomeTag.FAIL, "step returned 0"),
        ]
        assert not runner.passed

    def test_unexpected_exception_is_aborted_not_failed(self, host, open_sink):
        sink = open_sink(3)
        runner = StepRunner(make_queue(("a", passes), ("b", explodes), ("c", passes)), host, sink=sink)

        runner.run_all()

        _, results = read_sink(sink.path)
        assert [r.tag for r in results] == [OutcomeTag.PASS, OutcomeTag.ABORTED, OutcomeTag.PASS]
        assert results[1].message == "RuntimeError: kaput"

    def test_zero_steps_complete_on_first_tick(self, host, open_sink):
        sink = open_sink(0)
        runner = StepRunner(StepQueue(), host, sink=sink)

        assert runner.tick() is False

        manifest, results = read_sink(sink.path)
        assert results == []
        assert manifest.completion_marker
        assert manifest.total_steps == 0
        host.request_exit.assert_called_once_with(0)

    def test_result_is_durable_before_tick_returns(self, host, open_sink):
        sink = open_sink(2)
        runner = StepRunner(make_queue(("a", passes), ("b", passes)), host, sink=sink)

        runner.tick()

        manifest, results = read_sink(sink.path)
        assert [r.step_name for r in results] == ["a"]
        assert not manifest.completion_marker

    def test_queue_frozen_once_ticking(self, host):
        queue = make_queue(("a", passes))
        runner = StepRunner(queue, host)
        runner.tick()

        with pytest.raises(SetupClosed):
            queue.push(TestStep("late", passes))

    def test_stop_on_failure_still_writes_marker(self, host, open_sink):
        sink = open_sink(3)
        runner = StepRunner(
            make_queue(("a", passes), ("b", fails), ("c", passes)),
            host,
            sink=sink,
            stop_on_failure=True,
        )

        runner.run_all()

        manifest, results = read_sink(sink.path)
        assert [r.step_name for r in results] == ["a", "b"]
        assert manifest.completion_marker
        assert manifest.total_steps == 3
        host.request_exit.assert_called_once_with(HOST_EXIT_FAILED)

    def test_system_exit_propagates(self, host):
        def quits(ctx):
            raise SystemExit(3)

        runner = StepRunner(make_queue(("quit", quits)), host)
        with pytest.raises(SystemExit):
            runner.tick()

    def test_manual_mode_does_not_exit_host(self, host):
        runner = StepRunner(make_queue(("a", passes)), host, exit_on_finish=False)
        runner.run_all()

        assert runner.passed
        host.request_exit.assert_not_called()

    def test_step_context_carries_host_api(self, host):
        seen = []
        runner = StepRunner(make_queue(("ctx", lambda ctx: seen.append(ctx))), host)
        runner.tick()

        ctx = seen[0]
        assert ctx.api is host.api
        assert ctx.step_name == "ctx"
        assert ctx.index == 0
