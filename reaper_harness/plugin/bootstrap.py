"""
Plugin Bootstrap — process-wide test instance and the host entry point

REAPER runs Scripts/__startup.py when it starts; the installed startup
script calls main(), which loads the test module named in the run
environment, lets it register its steps and starts the runner.

A test module looks like:

    from reaper_harness.plugin import TestStep

    def hello_world(ctx):
        ctx.api.ShowConsoleMsg("Hello world!")

    def register(test):
        test.push_test_step(TestStep("Hello World!", hello_world))
"""

import atexit
import importlib
import logging
from typing import List, Optional

from ..errors import HarnessError
from ..harness_config import RunEnvironment
from ..models import HOST_EXIT_FAILED, StepResult
from ..sink import ResultSink
from .host import Host, configure_logging
from .runner import StepRunner
from .steps import StepQueue, TestStep

logger = logging.getLogger(__name__)


class ReaperTest:
    """The single test instance of a host process.

    Created by setup() at plugin load, open for steps until start(), dropped
    at process exit.
    """

    _instance: Optional["ReaperTest"] = None

    def __init__(self, host: Host, env: RunEnvironment):
        self.host = host
        self.env = env
        self.queue = StepQueue()
        self.runner: Optional[StepRunner] = None
        self.sink: Optional[ResultSink] = None

    @classmethod
    def setup(cls, host: Host, env: Optional[RunEnvironment] = None) -> "ReaperTest":
        """Create the process-wide instance; later calls return the same one."""
        if cls._instance is None:
            cls._instance = cls(host, env if env is not None else RunEnvironment.from_env())
            atexit.register(cls.teardown)
        return cls._instance

    @classmethod
    def get(cls) -> "ReaperTest":
        if cls._instance is None:
            raise HarnessError("call ReaperTest.setup(host) before ReaperTest.get()")
        return cls._instance

    @classmethod
    def teardown(cls) -> None:
        instance = cls._instance
        cls._instance = None
        if instance is not None and instance.sink is not None:
            instance.sink.close()

    @property
    def is_integration_test(self) -> bool:
        return self.env.integration

    def push_test_step(self, step: TestStep) -> None:
        self.queue.push(step)

    def step(self, name: str):
        """Decorator registering a function as the next step."""
        def decorator(func):
            self.push_test_step(TestStep(name, func))
            return func
        return decorator

    def start(self) -> None:
        """Freeze the steps and hand them to the runner.

        Integration runs tick one step per main-loop iteration and terminate
        the host at the end; otherwise all steps run right away.
        """
        if self.is_integration_test:
            self._start_integration()
        else:
            self.run_all()

    def _start_integration(self) -> None:
        if not self.env.run_id or self.env.sink_dir is None:
            raise HarnessError("Integration run needs a run id and a sink directory")
        self.queue.freeze()
        self.sink = ResultSink.open(self.env.sink_dir, self.env.run_id, len(self.queue))
        self.runner = StepRunner(
            self.queue,
            self.host,
            sink=self.sink,
            stop_on_failure=self.env.stop_on_failure,
            exit_on_finish=True,
        )
        if self.env.timeout is not None:
            logger.info(f"Run {self.env.run_id} must finish within {self.env.timeout:g}s")
        self.host.schedule(self.runner.tick)

    def run_all(self) -> List[StepResult]:
        """Run every step synchronously and report the outcome to the user."""
        self.runner = StepRunner(
            self.queue,
            self.host,
            stop_on_failure=self.env.stop_on_failure,
            exit_on_finish=False,
        )
        results = self.runner.run_all()
        failed = [r for r in results if not r.passed]
        if failed:
            lines = [f"{r.step_name}: {r.tag.value} {r.message}" for r in failed]
            self.host.show_message(
                "Integration test failed",
                f"{len(failed)} of {len(results)} step(s) did not pass\n" + "\n".join(lines),
            )
        else:
            self.host.show_message(
                "Integration test passed", f"{len(results)} step(s) executed successfully"
            )
        return results


def load_test_module(name: str):
    """Import the test module and return its register() function."""
    module = importlib.import_module(name)
    register = getattr(module, "register", None)
    if not callable(register):
        raise HarnessError(f"Test module '{name}' has no register(test) function")
    return register


def main(host: Optional[Host] = None, env: Optional[RunEnvironment] = None) -> ReaperTest:
    """Entry point called by the installed startup script."""
    if env is None:
        env = RunEnvironment.from_env()
    if host is None:
        from .host import ReaperHost
        host = ReaperHost()
    configure_logging(host, env.log_level)

    test = ReaperTest.setup(host, env)
    if env.test_module:
        try:
            register = load_test_module(env.test_module)
            register(test)
        except Exception:
            logger.exception(f"Could not load test module '{env.test_module}'")
            if test.is_integration_test:
                # No sentinel gets written: the launcher sees a crash.
                host.request_exit(HOST_EXIT_FAILED)
            raise
    else:
        logger.warning("No test module configured; running zero steps")

    test.start()
    return test
