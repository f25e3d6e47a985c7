"""
reaper-harness — run integration test steps inside REAPER's main loop and
judge them from the process that launched it.
"""

from .errors import (
    HarnessError,
    IntegrityMismatch,
    LaunchError,
    SetupClosed,
    SetupFailure,
    SinkFormatError,
    StepFailure,
    ThreadConfinementError,
    UnresolvedVersion,
)
from .harness_config import HarnessConfig, RunEnvironment
from .models import FailureKind, HarnessVerdict, OutcomeTag, RunManifest, StepResult

__version__ = "0.1.0"
