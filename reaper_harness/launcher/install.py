"""
Host Install — prepare a cached REAPER home for headless test runs

Writes a portable reaper.ini (dummy audio, Python ReaScript pointed at the
current interpreter) and the __startup.py entry that hands control to the
in-host runner. Every write is atomic and idempotent, so concurrent runs can
share one cached REAPER home.
"""

import logging
import os
import shutil
import sys
import sysconfig
from pathlib import Path

from ..harness_config import ENV

logger = logging.getLogger(__name__)

STARTUP_SCRIPT = "__startup.py"
REWIRE_BUNDLE = "REAPER.app/Contents/Plugins/ReWire.bundle"

STARTUP_SOURCE = f'''\
# Installed by reaper-harness. Starts the integration test when REAPER is
# launched with a test module in its environment; does nothing otherwise.
import os

if os.environ.get("{ENV["test_module"]}") or "{ENV["integration"]}" in os.environ:
    from reaper_harness.plugin.bootstrap import main
    main()
'''

REAPER_INI_TEMPLATE = """\
[audioconfig]
; For dummy audio on Windows
mode=4

[REAPER]
; For dummy audio on Linux
linux_audio_mode=2
; For <none> audio on macOS
coreaudiobs=512
coreaudioindevnew=<none>
coreaudiooutdevnew=<none>
; Python ReaScript
reascript=1
pythonlibpath64={python_lib_dir}
pythonlibdll64={python_lib_name}
"""


def _write_atomic(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.{os.getpid()}.tmp")
    tmp.write_text(text)
    os.replace(tmp, path)


def python_library() -> tuple[str, str]:
    """(directory, file name) of the shared libpython REAPER should load."""
    lib_dir = sysconfig.get_config_var("LIBDIR") or os.path.join(sys.base_prefix, "lib")
    lib_name = sysconfig.get_config_var("LDLIBRARY") or ""
    return lib_dir, lib_name


def write_reaper_config(reaper_home: Path) -> Path:
    """Write reaper.ini with no real audio device and Python ReaScript enabled."""
    lib_dir, lib_name = python_library()
    path = Path(reaper_home) / "reaper.ini"
    _write_atomic(path, REAPER_INI_TEMPLATE.format(
        python_lib_dir=lib_dir,
        python_lib_name=lib_name,
    ))
    logger.debug(f"Wrote REAPER configuration to {path}")
    return path


def install_plugin(reaper_home: Path) -> Path:
    """Install the startup script that boots the in-host runner."""
    path = Path(reaper_home) / "Scripts" / STARTUP_SCRIPT
    if path.exists() and path.read_text() == STARTUP_SOURCE:
        return path
    _write_atomic(path, STARTUP_SOURCE)
    logger.info(f"Installed test plugin at {path}")
    return path


def remove_rewire_bundle(reaper_home: Path) -> None:
    """Remove the ReWire plug-in, which makes headless REAPER hang on macOS."""
    bundle = Path(reaper_home) / REWIRE_BUNDLE
    if bundle.exists():
        logger.info("Removing ReWire plug-in bundle")
        shutil.rmtree(bundle, ignore_errors=True)


def prepare_host(reaper_home: Path) -> None:
    write_reaper_config(reaper_home)
    install_plugin(reaper_home)
    if sys.platform == "darwin":
        remove_rewire_bundle(reaper_home)
