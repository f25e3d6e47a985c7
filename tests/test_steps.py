"""Tests for step records and the setup-phase queue."""

import threading

import pytest

from reaper_harness.errors import SetupClosed, ThreadConfinementError
from reaper_harness.plugin.steps import StepContext, StepQueue, TestStep, step


def noop(ctx):
    pass


class TestStepRecord:

    def test_step_is_immutable(self):
        s = TestStep("init", noop)
        with pytest.raises(Exception):
            s.name = "other"

    def test_action_must_be_callable(self):
        with pytest.raises(TypeError):
            TestStep("broken", "not a function")

    def test_step_helper_builds_and_decorates(self):
        direct = step("direct", noop)

        @step("decorated")
        def decorated(ctx):
            pass

        assert direct == TestStep("direct", noop)
        assert isinstance(decorated, TestStep)
        assert decorated.name == "decorated"


class TestStepQueue:

    def test_push_keeps_order_and_duplicate_names(self):
        queue = StepQueue()
        for name in ["a", "b", "a"]:
            queue.push(TestStep(name, noop))

        assert len(queue) == 3
        assert queue.names() == ["a", "b", "a"]
        assert queue[1].name == "b"

    def test_push_after_freeze_raises_setup_closed(self):
        queue = StepQueue()
        queue.push(TestStep("a", noop))
        queue.freeze()

        with pytest.raises(SetupClosed):
            queue.push(TestStep("late", noop))
        assert queue.names() == ["a"]

    def test_push_from_other_thread_rejected(self):
        queue = StepQueue()
        errors = []

        def worker():
            try:
                queue.push(TestStep("from-thread", noop))
            except ThreadConfinementError as e:
                errors.append(e)

        t = threading.Thread(target=worker)
        t.start()
        t.join()

        assert len(errors) == 1
        assert len(queue) == 0


class TestStepContext:

    def test_ext_state_reads_through_api(self):
        class Api:
            def GetExtState(self, section, key):
                return f"{section}/{key}"

        ctx = StepContext(api=Api(), step_name="s", index=0, logger=None)
        assert ctx.ext_state("sec", "key") == "sec/key"
