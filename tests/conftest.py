"""Shared fixtures: headless host configuration and a clean test instance."""

import logging
import sys
from pathlib import Path

import pytest

from reaper_harness import HarnessConfig
from reaper_harness.plugin.bootstrap import ReaperTest

FIXTURES_DIR = Path(__file__).parent / "fixtures"

HEADLESS_HOST = [sys.executable, "-m", "reaper_harness.plugin.headless"]


@pytest.fixture
def sink_dir(tmp_path):
    path = tmp_path / "sinks"
    path.mkdir()
    return path


@pytest.fixture
def headless_config(sink_dir):
    """Factory for configs that run a fixture module in the headless host."""
    def make(test_module: str, **overrides) -> HarnessConfig:
        values = dict(
            test_module=test_module,
            host_command=list(HEADLESS_HOST),
            sink_dir=sink_dir,
            python_path=[str(FIXTURES_DIR)],
            timeout=30.0,
            poll_interval=0.05,
            shutdown_grace=5.0,
        )
        values.update(overrides)
        return HarnessConfig(**values)
    return make


@pytest.fixture
def fixtures_on_path(monkeypatch):
    monkeypatch.syspath_prepend(str(FIXTURES_DIR))
    return FIXTURES_DIR


@pytest.fixture(autouse=True)
def fresh_reaper_test():
    """Every test starts without a process-wide ReaperTest instance."""
    ReaperTest.teardown()
    yield
    ReaperTest.teardown()
    # Host console handlers are bound to one test's host.
    root = logging.getLogger("reaper_harness")
    for handler in list(root.handlers):
        if getattr(handler, "_reaper_harness", False):
            root.removeHandler(handler)
