"""In-host side: step registration and the tick-driven runner."""

from .bootstrap import ReaperTest, main
from .runner import RunnerState, StepRunner
from .steps import StepContext, StepQueue, TestStep, step

__all__ = [
    "ReaperTest",
    "RunnerState",
    "StepContext",
    "StepQueue",
    "StepRunner",
    "TestStep",
    "main",
    "step",
]
