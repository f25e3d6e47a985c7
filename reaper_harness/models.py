"""
Harness Data Model

Records exchanged between the in-host step runner and the external
launcher: step outcomes, the run manifest and the launcher's verdict.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


# ============================================================================
# Exit codes
# ============================================================================

EXIT_PASSED = 0
EXIT_STEP_FAILURE = 1
EXIT_CRASH = 2
EXIT_TIMEOUT = 3
EXIT_SETUP = 4

# Host-side exit code when at least one step did not pass.
HOST_EXIT_FAILED = 172


# ============================================================================
# Step outcomes
# ============================================================================

class OutcomeTag(Enum):
    PASS = "PASS"
    FAIL = "FAIL"
    ABORTED = "ABORTED"


@dataclass(frozen=True)
class StepResult:
    """Outcome of one executed step. Written to the sink exactly once."""

    sequence_index: int
    step_name: str
    tag: OutcomeTag
    message: str = ""

    @property
    def passed(self) -> bool:
        return self.tag is OutcomeTag.PASS

    @classmethod
    def pass_(cls, index: int, name: str) -> "StepResult":
        return cls(index, name, OutcomeTag.PASS, "")

    @classmethod
    def fail(cls, index: int, name: str, message: str) -> "StepResult":
        return cls(index, name, OutcomeTag.FAIL, message)

    @classmethod
    def aborted(cls, index: int, name: str, message: str) -> "StepResult":
        return cls(index, name, OutcomeTag.ABORTED, message)


@dataclass
class RunManifest:
    run_id: str
    total_steps: int
    completion_marker: bool = False


# ============================================================================
# Verdict
# ============================================================================

class FailureKind(Enum):
    STEP_FAILURE = "step_failure"
    CRASH = "crash"
    TIMEOUT = "timeout"
    SETUP = "setup"


_EXIT_CODES = {
    None: EXIT_PASSED,
    FailureKind.STEP_FAILURE: EXIT_STEP_FAILURE,
    FailureKind.CRASH: EXIT_CRASH,
    FailureKind.TIMEOUT: EXIT_TIMEOUT,
    FailureKind.SETUP: EXIT_SETUP,
}


@dataclass
class HarnessVerdict:
    """Final classification of a run as seen from the launching process."""

    passed: bool
    results: List[StepResult] = field(default_factory=list)
    failure_kind: Optional[FailureKind] = None
    run_id: str = ""
    total_steps: Optional[int] = None
    host_exit_code: Optional[int] = None
    message: str = ""

    @property
    def exit_code(self) -> int:
        return _EXIT_CODES[self.failure_kind]

    def summary(self) -> str:
        """Multi-line, human readable report of the run."""
        if self.passed:
            head = f"PASSED: {len(self.results)} step(s) passed"
        elif self.failure_kind is FailureKind.STEP_FAILURE:
            bad = sum(1 for r in self.results if not r.passed)
            head = f"FAILED: {bad} of {len(self.results)} step(s) did not pass"
        elif self.failure_kind is FailureKind.CRASH:
            head = f"CRASHED: host exited before completing the run ({len(self.results)} step(s) recorded)"
        elif self.failure_kind is FailureKind.TIMEOUT:
            head = f"TIMEOUT: run did not complete in time ({len(self.results)} step(s) recorded)"
        else:
            head = "SETUP FAILURE: no step was run"

        lines = [head]
        if self.run_id:
            lines.append(f"  run id: {self.run_id}")
        if self.message:
            lines.append(f"  {self.message}")
        for r in self.results:
            line = f"  [{r.sequence_index}] {r.tag.value:<7} {r.step_name}"
            if r.message:
                line += f" — {r.message}"
            lines.append(line)
        if self.total_steps is not None and len(self.results) < self.total_steps:
            missing = self.total_steps - len(self.results)
            lines.append(f"  {missing} step(s) not executed (outcome unknown)")
        return "\n".join(lines)
