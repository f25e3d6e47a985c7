"""
Host Adapters — the narrow surface the runner needs from its host

A host provides:
    api             the scripting API handed to steps via StepContext
    defer(cb)       run cb once on the next main-loop iteration
    request_exit()  terminate the host process with an exit code
    show_message()  tell a human something (manual runs)

ReaperHost talks to REAPER through the Python ReaScript module
(reaper_python), which only exists inside a running REAPER.
"""

import logging
import os
import sys
from typing import Callable

from ..models import HOST_EXIT_FAILED

logger = logging.getLogger(__name__)

# REAPER's defer() takes a code string evaluated in the script's __main__.
_DEFER_NAME = "_reaper_harness_deferred"


class Host:
    """Base host: defer-driven tick loop shared by the concrete hosts."""

    api = None

    def defer(self, callback: Callable[[], None]) -> None:
        raise NotImplementedError

    def request_exit(self, code: int) -> None:
        raise NotImplementedError

    def show_message(self, title: str, text: str) -> None:
        logger.info(f"{title}: {text}")

    def schedule(self, tick: Callable[[], bool]) -> None:
        """Call tick once per main-loop iteration until it returns False.

        An exception out of tick ends the run: the host exits with
        HOST_EXIT_FAILED and the launcher sees a run without its sentinel.
        """
        def loop():
            try:
                more = tick()
            except Exception:
                logger.exception("Test runner failed; terminating host")
                self.request_exit(HOST_EXIT_FAILED)
                return
            if more:
                self.defer(loop)
        self.defer(loop)

    def log_handler(self) -> logging.Handler:
        return logging.StreamHandler(sys.stdout)


# ============================================================================
# REAPER
# ============================================================================

class ReaScriptApi:
    """Exposes RPR_* ReaScript functions without the prefix.

    api.ShowConsoleMsg("hi") calls RPR_ShowConsoleMsg("hi").
    """

    def __init__(self, module):
        self._module = module

    def __getattr__(self, name):
        try:
            return getattr(self._module, f"RPR_{name}")
        except AttributeError:
            raise AttributeError(f"ReaScript has no function '{name}'") from None


class ReaperConsoleHandler(logging.Handler):
    """Logging handler that writes to the REAPER console window."""

    def __init__(self, api, level=logging.NOTSET):
        super().__init__(level)
        self.api = api
        self.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))

    def emit(self, record):
        try:
            self.api.ShowConsoleMsg(self.format(record) + "\n")
        except Exception:
            self.handleError(record)


class ReaperHost(Host):
    """Host adapter for a running REAPER instance."""

    def __init__(self, module=None):
        if module is None:
            import reaper_python as module  # only importable inside REAPER
        self._module = module
        self.api = ReaScriptApi(module)

    def defer(self, callback):
        sys.modules["__main__"].__dict__[_DEFER_NAME] = callback
        self.api.defer(f"{_DEFER_NAME}()")

    def request_exit(self, code):
        logger.info(f"Terminating REAPER with exit code {code}")
        logging.shutdown()
        # Skips REAPER's save-project prompts.
        os._exit(code)

    def show_message(self, title, text):
        self.api.ShowMessageBox(text, title, 0)

    def log_handler(self):
        return ReaperConsoleHandler(self.api)


def configure_logging(host: Host, level: str = "INFO") -> logging.Logger:
    """Route reaper_harness log records to the host's console."""
    root = logging.getLogger("reaper_harness")
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    if not any(getattr(h, "_reaper_harness", False) for h in root.handlers):
        handler = host.log_handler()
        handler._reaper_harness = True
        root.addHandler(handler)
    return root
