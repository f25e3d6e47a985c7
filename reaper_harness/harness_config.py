"""
Harness Configuration — static defaults plus environment overrides

STATIC_CONFIG holds every default the launcher and the in-host runner need:
timeouts, storage locations, the REAPER download catalog and the names of
the environment variables that carry the run configuration into the host.
"""

import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional


STATIC_CONFIG = {
    "timeouts": {
        "run": 120.0,
        "progress": None,
        "shutdown_grace": 10.0,
        "poll_interval": 0.25,
    },
    "paths": {
        "cache_dir": os.path.join("~", ".cache", "reaper-harness", "hosts"),
        "sink_dir": os.path.join(tempfile.gettempdir(), "reaper-harness", "sinks"),
    },
    "host_args": ["-newinst", "-new"],
    "hosts": {
        "latest": "6.73",
        "versions": {
            "6.71": {
                "linux-x86_64": {
                    "url": "https://www.reaper.fm/files/6.x/reaper671_linux_x86_64.tar.xz",
                    "sha256": None,
                    "home": "reaper_linux_x86_64/REAPER",
                    "executable": "reaper",
                },
                "macos-x86_64": {
                    "url": "https://www.reaper.fm/files/6.x/reaper671_x86_64.dmg",
                    "sha256": None,
                    "home": "reaper_macos_x86_64",
                    "executable": "REAPER.app/Contents/MacOS/REAPER",
                    "mount": "/Volumes/REAPER_INSTALL_INTEL64/REAPER.app",
                },
            },
            "6.73": {
                "linux-x86_64": {
                    "url": "https://www.reaper.fm/files/6.x/reaper673_linux_x86_64.tar.xz",
                    "sha256": None,
                    "home": "reaper_linux_x86_64/REAPER",
                    "executable": "reaper",
                },
                "macos-x86_64": {
                    "url": "https://www.reaper.fm/files/6.x/reaper673_x86_64.dmg",
                    "sha256": None,
                    "home": "reaper_macos_x86_64",
                    "executable": "REAPER.app/Contents/MacOS/REAPER",
                    "mount": "/Volumes/REAPER_INSTALL_INTEL64/REAPER.app",
                },
            },
        },
    },
    "env": {
        "integration": "RUN_REAPER_INTEGRATION_TEST",
        "run_id": "REAPER_HARNESS_RUN_ID",
        "sink_dir": "REAPER_HARNESS_SINK_DIR",
        "test_module": "REAPER_HARNESS_TEST_MODULE",
        "timeout": "REAPER_HARNESS_TIMEOUT",
        "progress_timeout": "REAPER_HARNESS_PROGRESS_TIMEOUT",
        "stop_on_failure": "REAPER_HARNESS_STOP_ON_FAILURE",
        "log_level": "REAPER_HARNESS_LOG_LEVEL",
        "cache_dir": "REAPER_HARNESS_CACHE_DIR",
        "host_version": "REAPER_HARNESS_HOST_VERSION",
    },
}

ENV = STATIC_CONFIG["env"]

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _flag(value: Optional[str]) -> bool:
    return value is not None and value.strip().lower() in _TRUE_VALUES


def _seconds(value: Optional[str], name: str) -> Optional[float]:
    if value is None or value.strip() == "":
        return None
    try:
        seconds = float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number of seconds, got {value!r}")
    if seconds <= 0:
        raise ValueError(f"{name} must be positive, got {value!r}")
    return seconds


# ============================================================================
# Launcher configuration
# ============================================================================

@dataclass
class HarnessConfig:
    """Everything HarnessLauncher.run needs for one run.

    Either host_command is given (an already runnable host, e.g. the
    headless host used in tests) or host_version is resolved through
    HostAcquisition into a REAPER executable.
    """

    test_module: str = ""
    host_version: str = "latest"
    host_command: Optional[List[str]] = None
    timeout: float = STATIC_CONFIG["timeouts"]["run"]
    progress_timeout: Optional[float] = STATIC_CONFIG["timeouts"]["progress"]
    poll_interval: float = STATIC_CONFIG["timeouts"]["poll_interval"]
    shutdown_grace: float = STATIC_CONFIG["timeouts"]["shutdown_grace"]
    sink_dir: Path = field(
        default_factory=lambda: Path(STATIC_CONFIG["paths"]["sink_dir"])
    )
    cache_dir: Path = field(
        default_factory=lambda: Path(STATIC_CONFIG["paths"]["cache_dir"]).expanduser()
    )
    stop_on_failure: bool = False
    log_level: str = "INFO"
    python_path: List[str] = field(default_factory=list)
    extra_env: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if self.timeout is None or self.timeout <= 0:
            raise ValueError("timeout is mandatory and must be positive")
        if self.progress_timeout is not None and self.progress_timeout <= 0:
            raise ValueError("progress_timeout must be positive when set")
        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        self.sink_dir = Path(self.sink_dir)
        self.cache_dir = Path(self.cache_dir)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "HarnessConfig":
        """Build a config from defaults, REAPER_HARNESS_* variables and overrides.

        Explicit keyword overrides win over the environment, which wins over
        STATIC_CONFIG. Overrides set to None are ignored.
        """
        environ = os.environ if environ is None else environ
        values = {}

        if environ.get(ENV["test_module"]):
            values["test_module"] = environ[ENV["test_module"]]
        if environ.get(ENV["host_version"]):
            values["host_version"] = environ[ENV["host_version"]]
        if environ.get(ENV["sink_dir"]):
            values["sink_dir"] = Path(environ[ENV["sink_dir"]])
        if environ.get(ENV["cache_dir"]):
            values["cache_dir"] = Path(environ[ENV["cache_dir"]]).expanduser()
        if environ.get(ENV["log_level"]):
            values["log_level"] = environ[ENV["log_level"]].upper()
        timeout = _seconds(environ.get(ENV["timeout"]), ENV["timeout"])
        if timeout is not None:
            values["timeout"] = timeout
        progress = _seconds(environ.get(ENV["progress_timeout"]), ENV["progress_timeout"])
        if progress is not None:
            values["progress_timeout"] = progress
        if ENV["stop_on_failure"] in environ:
            values["stop_on_failure"] = _flag(environ[ENV["stop_on_failure"]])

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


# ============================================================================
# Run environment (launcher -> host)
# ============================================================================

@dataclass
class RunEnvironment:
    """Run configuration handed to the host process through its environment."""

    run_id: str = ""
    sink_dir: Optional[Path] = None
    test_module: str = ""
    timeout: Optional[float] = None
    stop_on_failure: bool = False
    log_level: str = "INFO"
    integration: bool = False

    def to_env(self) -> Dict[str, str]:
        env = {
            ENV["run_id"]: self.run_id,
            ENV["test_module"]: self.test_module,
            ENV["stop_on_failure"]: "1" if self.stop_on_failure else "0",
            ENV["log_level"]: self.log_level,
        }
        if self.sink_dir is not None:
            env[ENV["sink_dir"]] = str(self.sink_dir)
        if self.timeout is not None:
            env[ENV["timeout"]] = str(self.timeout)
        if self.integration:
            env[ENV["integration"]] = "true"
        return env

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "RunEnvironment":
        environ = os.environ if environ is None else environ
        sink_dir = environ.get(ENV["sink_dir"])
        return cls(
            run_id=environ.get(ENV["run_id"], ""),
            sink_dir=Path(sink_dir) if sink_dir else None,
            test_module=environ.get(ENV["test_module"], ""),
            timeout=_seconds(environ.get(ENV["timeout"]), ENV["timeout"]),
            stop_on_failure=_flag(environ.get(ENV["stop_on_failure"])),
            log_level=environ.get(ENV["log_level"], "INFO").upper(),
            # Presence alone switches integration mode on.
            integration=ENV["integration"] in environ,
        )
