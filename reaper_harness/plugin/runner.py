"""
Step Runner — tick-driven scheduler inside the host main loop

The host calls tick() from its periodic main-loop hook. Each tick runs at
most one step, so the host keeps servicing its UI and audio between steps
and a process that dies mid-tick can be pinned to a single step.

States: IDLE -> RUNNING(i) -> IDLE ... -> FINISHED
"""

import logging
import traceback
from enum import Enum
from typing import List, Optional

from ..errors import StepFailure
from ..models import HOST_EXIT_FAILED, StepResult
from ..sink import ResultSink
from .steps import StepContext, StepQueue, TestStep

logger = logging.getLogger(__name__)
step_logger = logging.getLogger("reaper_harness.step")


class RunnerState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    FINISHED = "finished"


def _failure_message(exc: BaseException) -> str:
    """Message for a failed step; bare asserts get their source location."""
    text = str(exc)
    if text:
        return text
    frames = traceback.extract_tb(exc.__traceback__)
    if frames:
        last = frames[-1]
        return f"{type(exc).__name__} at {last.filename}:{last.lineno}"
    return type(exc).__name__


def _returned_failure(value) -> Optional[str]:
    """Failure message for a step's return value, None when it passed.

    None and True pass. A string is the failure message; any other value
    fails the step.
    """
    if value is None or value is True:
        return None
    if isinstance(value, str):
        return value or "step returned an empty message"
    return f"step returned {value!r}"


class StepRunner:
    """Drains a StepQueue one step per tick and records every outcome.

    Args:
        queue: Steps to run; frozen on the first tick
        host: Host adapter providing .api and .request_exit(code)
        sink: Result sink; None in manual mode where results stay in memory
        stop_on_failure: Stop after the first step that does not pass
        exit_on_finish: Ask the host to terminate once the run is complete
    """

    def __init__(
        self,
        queue: StepQueue,
        host,
        sink: Optional[ResultSink] = None,
        stop_on_failure: bool = False,
        exit_on_finish: bool = True,
    ):
        self.queue = queue
        self.host = host
        self.sink = sink
        self.stop_on_failure = stop_on_failure
        self.exit_on_finish = exit_on_finish
        self.state = RunnerState.IDLE
        self.index = 0
        self.results: List[StepResult] = []
        self._stopped_early = False

    @property
    def finished(self) -> bool:
        return self.state is RunnerState.FINISHED

    @property
    def passed(self) -> bool:
        return (
            self.finished
            and not self._stopped_early
            and all(r.passed for r in self.results)
        )

    def tick(self) -> bool:
        """Run the next step. Returns True while the runner wants more ticks."""
        if self.state is RunnerState.FINISHED:
            return False
        if not self.queue.frozen:
            self.queue.freeze()
            logger.info(f"Running {len(self.queue)} test step(s)")

        if self.index >= len(self.queue) or self._stopped_early:
            self._finish()
            return False

        self.state = RunnerState.RUNNING
        result = self._execute(self.index, self.queue[self.index])
        # Durable before control goes back to the host.
        if self.sink is not None:
            self.sink.record(result)
        self.results.append(result)
        self.index += 1
        if self.stop_on_failure and not result.passed:
            logger.info(f"Stopping after '{result.step_name}' (stop on failure)")
            self._stopped_early = True
        self.state = RunnerState.IDLE
        return True

    def run_all(self) -> List[StepResult]:
        """Run every remaining step synchronously (manual mode)."""
        while self.tick():
            pass
        return self.results

    def _execute(self, index: int, step: TestStep) -> StepResult:
        logger.info(f"Testing step: {step.name}")
        context = StepContext(
            api=self.host.api,
            step_name=step.name,
            index=index,
            logger=step_logger,
        )
        try:
            returned = step.action(context)
        except (AssertionError, StepFailure) as e:
            message = _failure_message(e)
            logger.error(f"Step '{step.name}' failed: {message}")
            return StepResult.fail(index, step.name, message)
        except Exception as e:
            logger.exception(f"Step '{step.name}' aborted")
            return StepResult.aborted(index, step.name, f"{type(e).__name__}: {e}")

        message = _returned_failure(returned)
        if message is not None:
            logger.error(f"Step '{step.name}' failed: {message}")
            return StepResult.fail(index, step.name, message)
        return StepResult.pass_(index, step.name)

    def _finish(self) -> None:
        if self.sink is not None:
            self.sink.mark_complete()
        self.state = RunnerState.FINISHED

        bad = [r for r in self.results if not r.passed]
        if bad:
            logger.error(
                f"Integration test failed: {len(bad)} of {len(self.results)} step(s) did not pass"
            )
        else:
            logger.info(f"Integration test executed successfully ({len(self.results)} step(s))")

        if self.exit_on_finish:
            self.host.request_exit(0 if self.passed else HOST_EXIT_FAILED)
