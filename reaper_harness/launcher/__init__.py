"""External side: host acquisition, host preparation and the launcher."""

from .acquisition import HostAcquisition, ResolvedHost, current_platform
from .install import install_plugin, prepare_host, write_reaper_config
from .launcher import HarnessLauncher, assert_integration_test, run_integration_test

__all__ = [
    "HarnessLauncher",
    "HostAcquisition",
    "ResolvedHost",
    "assert_integration_test",
    "current_platform",
    "install_plugin",
    "prepare_host",
    "run_integration_test",
    "write_reaper_config",
]
