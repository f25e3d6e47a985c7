"""
Harness Errors

Exception hierarchy shared by the in-host step runner and the external
launcher. Step-level problems are recorded into the result sink; the
process-level ones (setup, crash, timeout) end up as verdicts.
"""


class HarnessError(Exception):
    """Base class for every error raised by reaper_harness."""


# ============================================================================
# In-host errors
# ============================================================================

class SetupClosed(HarnessError):
    """A step was pushed after the runner started ticking."""


class ThreadConfinementError(HarnessError):
    """Step queue touched from a thread other than the host main thread."""


class StepFailure(HarnessError):
    """Raised by step code to fail the current step with a message.

    Behaves like a failed assertion: the step is recorded as FAIL and the
    remaining steps keep running.
    """


# ============================================================================
# Sink errors
# ============================================================================

class SinkFormatError(HarnessError):
    """Sink storage holds a line that cannot be parsed or is out of order."""


# ============================================================================
# Setup errors (exit code 4)
# ============================================================================

class SetupFailure(HarnessError):
    """The host could not be resolved, verified, installed or launched."""


class UnresolvedVersion(SetupFailure):
    """No host binary is known for the requested version on this platform."""


class IntegrityMismatch(SetupFailure):
    """A downloaded host archive failed checksum verification."""

    def __init__(self, version: str, expected: str, actual: str):
        super().__init__(
            f"Checksum mismatch for REAPER {version}: expected {expected}, got {actual}"
        )
        self.version = version
        self.expected = expected
        self.actual = actual


class LaunchError(SetupFailure):
    """The host process could not be started."""
