"""
Command line interface

    reaper-harness run --module my_steps [--version latest] [--timeout 120]
    reaper-harness fetch [--version latest]
    reaper-harness show /tmp/reaper-harness/sinks/<run_id>.results

`run` exits with 0 (passed), 1 (step failed), 2 (host crashed),
3 (timeout) or 4 (setup failure).
"""

import argparse
import logging
import os
import shlex
import sys
from pathlib import Path
from typing import List, Optional

from .errors import SetupFailure, SinkFormatError
from .harness_config import ENV, HarnessConfig
from .models import EXIT_CRASH, EXIT_PASSED, EXIT_SETUP, EXIT_STEP_FAILURE, HarnessVerdict
from .sink import read_sink

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="reaper-harness",
        description="Run integration test steps inside REAPER and report the verdict.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Launch a host and run the test module's steps")
    run.add_argument("--module", "-m", dest="test_module",
                     help=f"Module exposing register(test) (default: ${ENV['test_module']})")
    host = run.add_mutually_exclusive_group()
    host.add_argument("--version", dest="host_version", help="REAPER version or 'latest'")
    host.add_argument("--host-command", help="Run this command as the host instead of REAPER")
    run.add_argument("--timeout", type=float, help="Seconds until the run counts as hung")
    run.add_argument("--progress-timeout", type=float,
                     help="Seconds without a new step result until the run counts as hung")
    run.add_argument("--poll-interval", type=float, help="Seconds between sink polls")
    run.add_argument("--sink-dir", type=Path, help="Where result sinks and host logs go")
    run.add_argument("--cache-dir", type=Path, help="REAPER binary cache")
    run.add_argument("--path", dest="python_path", action="append", default=None,
                     help="Extra import path for the host (repeatable)")
    run.add_argument("--stop-on-failure", action="store_true", default=None,
                     help="Stop after the first step that does not pass")

    fetch = sub.add_parser("fetch", help="Download and cache a REAPER version")
    fetch.add_argument("--version", dest="host_version", default=None)
    fetch.add_argument("--cache-dir", type=Path)

    show = sub.add_parser("show", help="Print a result sink file")
    show.add_argument("path", type=Path)
    return parser


def _configure_logging(verbose: bool, level: str) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def cmd_run(args) -> int:
    from .launcher import run_integration_test

    try:
        config = HarnessConfig.from_env(
            test_module=args.test_module,
            host_version=args.host_version,
            host_command=shlex.split(args.host_command) if args.host_command else None,
            timeout=args.timeout,
            progress_timeout=args.progress_timeout,
            poll_interval=args.poll_interval,
            sink_dir=args.sink_dir,
            cache_dir=args.cache_dir,
            python_path=args.python_path,
            stop_on_failure=args.stop_on_failure,
        )
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return EXIT_SETUP

    verdict: HarnessVerdict = run_integration_test(config)
    print(verdict.summary())
    return verdict.exit_code


def cmd_fetch(args) -> int:
    from .launcher import HostAcquisition

    try:
        config = HarnessConfig.from_env(host_version=args.host_version, cache_dir=args.cache_dir)
        path = HostAcquisition(config.cache_dir).resolve(config.host_version)
    except (SetupFailure, ValueError) as e:
        logger.error(str(e))
        return EXIT_SETUP
    print(path)
    return EXIT_PASSED


def cmd_show(args) -> int:
    try:
        manifest, results = read_sink(args.path)
    except (OSError, SinkFormatError) as e:
        logger.error(f"Cannot read {args.path}: {e}")
        return EXIT_SETUP

    state = "complete" if manifest.completion_marker else "incomplete"
    print(f"run {manifest.run_id}: {len(results)} of {manifest.total_steps} step(s), {state}")
    for r in results:
        line = f"  [{r.sequence_index}] {r.tag.value:<7} {r.step_name}"
        if r.message:
            line += f" — {r.message}"
        print(line)
    if not manifest.completion_marker:
        return EXIT_CRASH
    if len(results) == manifest.total_steps and all(r.passed for r in results):
        return EXIT_PASSED
    return EXIT_STEP_FAILURE


COMMANDS = {
    "run": cmd_run,
    "fetch": cmd_fetch,
    "show": cmd_show,
}


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    level = os.environ.get(ENV["log_level"], "INFO").upper()
    _configure_logging(args.verbose, level)
    return COMMANDS[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
