"""
Test Steps — step records, step context and the setup-phase queue

Everything here lives inside the host process and is only ever touched
from the host's main thread.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Iterator, List, Optional

from ..errors import SetupClosed, ThreadConfinementError


@dataclass
class StepContext:
    """What a step action gets to work with.

    Args:
        api: The host scripting API (the ReaScript function namespace inside
            REAPER, a stand-in object in the headless host)
        step_name: Name of the step being executed
        index: Position of the step in the queue
        logger: Logger to report progress from within the step
    """

    api: Any
    step_name: str
    index: int
    logger: logging.Logger

    def ext_state(self, section: str, key: str) -> str:
        """Read a persistent extension-state value through the host API."""
        return self.api.GetExtState(section, key)


StepAction = Callable[[StepContext], Any]


@dataclass(frozen=True)
class TestStep:
    """A named unit of test logic.

    The action passes by returning None (or True). It fails by raising
    AssertionError or StepFailure, or by returning a failure message
    string; any other return value, False included, fails the step too.
    """

    # Not a pytest test class.
    __test__ = False

    name: str
    action: StepAction

    def __post_init__(self):
        if not callable(self.action):
            raise TypeError(f"Step '{self.name}' action must be callable")


class StepQueue:
    """Ordered, append-only list of steps.

    Open for push() during setup, frozen once the runner starts ticking.
    The queue belongs to the thread that created it; no locking is done.
    """

    def __init__(self):
        self._steps: List[TestStep] = []
        self._frozen = False
        self._owner = threading.get_ident()

    def _check_thread(self) -> None:
        if threading.get_ident() != self._owner:
            raise ThreadConfinementError(
                "Step queue may only be used from the host main thread"
            )

    @property
    def frozen(self) -> bool:
        return self._frozen

    def push(self, step: TestStep) -> None:
        self._check_thread()
        if self._frozen:
            raise SetupClosed(
                f"Cannot push step '{step.name}': the runner has already started"
            )
        self._steps.append(step)

    def freeze(self) -> None:
        self._check_thread()
        self._frozen = True

    def __len__(self) -> int:
        return len(self._steps)

    def __getitem__(self, index: int) -> TestStep:
        return self._steps[index]

    def __iter__(self) -> Iterator[TestStep]:
        return iter(list(self._steps))

    def names(self) -> List[str]:
        return [s.name for s in self._steps]


def step(name: str, action: Optional[StepAction] = None):
    """Build a TestStep, or decorate a function into one.

        init = step("init", lambda ctx: None)

        @step("write-value")
        def write_value(ctx): ...
    """
    if action is not None:
        return TestStep(name, action)

    def decorator(func: StepAction) -> TestStep:
        return TestStep(name, func)
    return decorator
