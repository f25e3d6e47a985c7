"""
Headless Host — a stand-in main loop for running steps without REAPER

    python -m reaper_harness.plugin.headless

Reads the same run environment as the REAPER startup script, so the
launcher can drive it exactly like a real host. Its api object covers the
console and the persistent ext-state calls steps commonly use.
"""

import logging
import sys
import time
from collections import deque
from typing import Dict, Optional, Tuple

from .bootstrap import main as bootstrap_main
from .host import Host

logger = logging.getLogger(__name__)


class HeadlessApi:
    """Console output and in-memory ext state with ReaScript-like names."""

    def __init__(self, stream=None):
        self.stream = stream or sys.stdout
        self.ext_state: Dict[Tuple[str, str], str] = {}

    def ShowConsoleMsg(self, msg: str) -> None:
        self.stream.write(msg)
        self.stream.flush()

    def ClearConsole(self) -> None:
        pass

    def SetExtState(self, section: str, key: str, value: str, persist: bool = False) -> None:
        self.ext_state[(section, key)] = value

    def GetExtState(self, section: str, key: str) -> str:
        return self.ext_state.get((section, key), "")

    def HasExtState(self, section: str, key: str) -> bool:
        return (section, key) in self.ext_state

    def DeleteExtState(self, section: str, key: str, persist: bool = False) -> None:
        self.ext_state.pop((section, key), None)


class HeadlessHost(Host):
    """Single-threaded defer loop with a fixed tick interval."""

    def __init__(self, interval: float = 0.01, api=None):
        self.interval = interval
        self.api = api if api is not None else HeadlessApi()
        self.exit_code: Optional[int] = None
        self._deferred = deque()

    def defer(self, callback):
        self._deferred.append(callback)

    def request_exit(self, code):
        logger.info(f"Host exit requested with code {code}")
        self.exit_code = code

    def run_loop(self) -> int:
        """Run deferred callbacks until none are left or exit is requested."""
        while self._deferred and self.exit_code is None:
            callback = self._deferred.popleft()
            callback()
            if self._deferred:
                time.sleep(self.interval)
        return self.exit_code if self.exit_code is not None else 0


def main() -> int:
    host = HeadlessHost()
    bootstrap_main(host=host)
    return host.run_loop()


if __name__ == "__main__":
    sys.exit(main())
