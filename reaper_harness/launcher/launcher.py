"""
Harness Launcher — start the host, watch the sink, decide the verdict

The launcher runs in its own process and shares nothing with the host but
the sink file. It polls that file until the COMPLETE sentinel shows up, the
host exits without it (crash) or the timeout runs out (hang). Only an
observed sentinel can produce a passing verdict.
"""

import asyncio
import logging
import os
import signal
import subprocess
from pathlib import Path
from typing import Dict, List, Optional

from ..errors import LaunchError, SetupFailure, SinkFormatError
from ..harness_config import STATIC_CONFIG, HarnessConfig, RunEnvironment
from ..models import HOST_EXIT_FAILED, FailureKind, HarnessVerdict
from ..sink import SinkReader, new_run_id, sink_path
from .acquisition import HostAcquisition
from .install import prepare_host

logger = logging.getLogger(__name__)

PACKAGE_ROOT = Path(__file__).resolve().parents[2]


def describe_exit(code: Optional[int]) -> str:
    if code is None:
        return "still running"
    if code < 0:
        try:
            return f"killed by {signal.Signals(-code).name}"
        except ValueError:
            return f"killed by signal {-code}"
    return f"exit code {code}"


class HarnessLauncher:
    """Run one integration test in a separate host process.

    Args:
        config: Run configuration
        acquisition: HostAcquisition used when config.host_command is not
            set; one over config.cache_dir is created on demand
    """

    def __init__(self, config: HarnessConfig, acquisition: Optional[HostAcquisition] = None):
        self.config = config
        self.acquisition = acquisition

    async def run(self) -> HarnessVerdict:
        """Launch the host and return the verdict. Never raises for a failed run."""
        cfg = self.config
        run_id = new_run_id()

        try:
            command = await self._host_command()
            cfg.sink_dir.mkdir(parents=True, exist_ok=True)
            log_path = cfg.sink_dir / f"{run_id}.log"
            proc = await self._launch(command, self._host_env(run_id), log_path)
        except (SetupFailure, OSError) as e:
            logger.error(f"Setup failed: {e}")
            return HarnessVerdict(
                passed=False,
                failure_kind=FailureKind.SETUP,
                run_id=run_id,
                message=str(e),
            )

        logger.info(f"Started host (pid {proc.pid}) for run {run_id}; output in {log_path}")
        reader = SinkReader(sink_path(cfg.sink_dir, run_id))
        try:
            return await self._observe(proc, reader, run_id, log_path)
        finally:
            await self._kill(proc)

    # ------------------------------------------------------------------------
    # Launch
    # ------------------------------------------------------------------------

    async def _host_command(self) -> List[str]:
        cfg = self.config
        if cfg.host_command:
            return list(cfg.host_command)

        acquisition = self.acquisition or HostAcquisition(cfg.cache_dir)
        resolved = await asyncio.to_thread(acquisition.resolve_host, cfg.host_version)
        try:
            await asyncio.to_thread(prepare_host, resolved.home)
        except OSError as e:
            raise SetupFailure(f"Could not prepare REAPER home {resolved.home}: {e}") from e
        return [str(resolved.executable), *STATIC_CONFIG["host_args"]]

    def _host_env(self, run_id: str) -> Dict[str, str]:
        cfg = self.config
        run_env = RunEnvironment(
            run_id=run_id,
            sink_dir=cfg.sink_dir.resolve(),
            test_module=cfg.test_module,
            timeout=cfg.timeout,
            stop_on_failure=cfg.stop_on_failure,
            log_level=cfg.log_level,
            integration=True,
        )
        env = dict(os.environ)
        env.update(run_env.to_env())

        paths = [*cfg.python_path, os.getcwd(), str(PACKAGE_ROOT)]
        if env.get("PYTHONPATH"):
            paths.append(env["PYTHONPATH"])
        env["PYTHONPATH"] = os.pathsep.join(paths)
        env.update(cfg.extra_env)
        return env

    async def _launch(self, command: List[str], env: Dict[str, str], log_path: Path):
        logger.info(f"Starting host: {' '.join(command)}")
        with open(log_path, "wb") as log:
            try:
                return await asyncio.create_subprocess_exec(
                    *command,
                    stdin=subprocess.DEVNULL,
                    stdout=log,
                    stderr=subprocess.STDOUT,
                    env=env,
                    start_new_session=True,
                )
            except OSError as e:
                raise LaunchError(f"Could not start host {command[0]}: {e}") from e

    # ------------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------------

    async def _observe(self, proc, reader: SinkReader, run_id: str, log_path: Path) -> HarnessVerdict:
        cfg = self.config
        loop = asyncio.get_running_loop()
        started = loop.time()
        last_progress = started

        while True:
            # Sample exit status before reading so records flushed right
            # before the host died are still picked up.
            exited = proc.returncode is not None
            try:
                new_results = reader.poll()
            except SinkFormatError as e:
                logger.error(f"Corrupt sink for run {run_id}: {e}")
                return self._verdict(FailureKind.CRASH, reader, run_id, proc, f"Corrupt result sink: {e}")

            now = loop.time()
            if new_results:
                last_progress = now
                for r in new_results:
                    logger.info(f"[{r.sequence_index}] {r.tag.value} {r.step_name}"
                                + (f": {r.message}" if r.message else ""))

            if reader.completed:
                return await self._complete(proc, reader, run_id)

            if exited:
                message = f"Host exited without completing the run ({describe_exit(proc.returncode)}); see {log_path}"
                logger.error(message)
                return self._verdict(FailureKind.CRASH, reader, run_id, proc, message)

            if now - started >= cfg.timeout:
                message = f"Run did not complete within {cfg.timeout:g}s"
                logger.error(message + "; terminating host")
                await self._kill(proc)
                return self._verdict(FailureKind.TIMEOUT, reader, run_id, proc, message)

            if cfg.progress_timeout is not None and now - last_progress >= cfg.progress_timeout:
                message = f"No step result for {cfg.progress_timeout:g}s"
                logger.error(message + "; terminating host")
                await self._kill(proc)
                return self._verdict(FailureKind.TIMEOUT, reader, run_id, proc, message)

            wait = min(cfg.poll_interval, max(cfg.timeout - (now - started), 0.0))
            try:
                await asyncio.wait_for(proc.wait(), timeout=wait)
            except asyncio.TimeoutError:
                pass

    async def _complete(self, proc, reader: SinkReader, run_id: str) -> HarnessVerdict:
        try:
            await asyncio.wait_for(proc.wait(), timeout=self.config.shutdown_grace)
        except asyncio.TimeoutError:
            logger.warning(f"Host still running {self.config.shutdown_grace:g}s after completing; killing it")
            await self._kill(proc)

        results = list(reader.results)
        total = reader.total_steps
        passed = all(r.passed for r in results) and len(results) == total
        if passed and proc.returncode == HOST_EXIT_FAILED:
            logger.warning("Host reported a failed test but every recorded step passed")

        message = ""
        if len(results) < total:
            message = f"Run stopped after {len(results)} of {total} step(s)"
        return HarnessVerdict(
            passed=passed,
            results=results,
            failure_kind=None if passed else FailureKind.STEP_FAILURE,
            run_id=run_id,
            total_steps=total,
            host_exit_code=proc.returncode,
            message=message,
        )

    def _verdict(self, kind: FailureKind, reader: SinkReader, run_id: str, proc, message: str) -> HarnessVerdict:
        return HarnessVerdict(
            passed=False,
            results=list(reader.results),
            failure_kind=kind,
            run_id=run_id,
            total_steps=reader.total_steps,
            host_exit_code=proc.returncode,
            message=message,
        )

    async def _kill(self, proc) -> None:
        if proc.returncode is not None:
            return
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        await proc.wait()


# ============================================================================
# Synchronous entry points
# ============================================================================

def run_integration_test(config: Optional[HarnessConfig] = None, **overrides) -> HarnessVerdict:
    """Run one integration test and return its verdict.

    Args:
        config: Full configuration; built with HarnessConfig.from_env() from
            the keyword overrides when omitted
    """
    if config is None:
        config = HarnessConfig.from_env(**overrides)
    return asyncio.run(HarnessLauncher(config).run())


def assert_integration_test(config: Optional[HarnessConfig] = None, **overrides) -> HarnessVerdict:
    """Like run_integration_test, but raises AssertionError unless it passed.

        def test_extension():
            assert_integration_test(test_module="my_extension_steps")
    """
    verdict = run_integration_test(config, **overrides)
    if not verdict.passed:
        raise AssertionError(verdict.summary())
    return verdict
