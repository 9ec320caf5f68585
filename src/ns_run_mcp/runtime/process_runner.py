"""Process runner with subprocess isolation and reliable termination.

ns-run-mcp runtime module

This module provides:
- Cross-platform subprocess isolation (new session/process group)
- A RunHandle per spawned process: pid, stdout/stderr streams and a
  single terminal result
- Reliable termination with graceful shutdown (SIGTERM -> timeout -> SIGKILL)
  aimed at the whole process group, so children spawned by the build tool
  (adb, xcodebuild, gradle daemons...) are not orphaned

Key design points:
- POSIX: start_new_session=True to create new process group
- Windows: CREATE_NEW_PROCESS_GROUP for signal isolation
- request_termination() is synchronous: it sends the first signal right away
  and leaves SIGKILL escalation to a background task tracked by the runner
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import subprocess
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import anyio

from ..errors import SpawnError

__all__ = [
    "ProcessRunner",
    "ProcessSpec",
    "RunHandle",
    "TerminalReason",
    "TerminalResult",
]

logger = logging.getLogger(__name__)

# Platform detection
IS_WINDOWS = sys.platform == "win32"

# Default timeouts
DEFAULT_TERM_TIMEOUT = 2.0  # seconds to wait after SIGTERM
DEFAULT_KILL_TIMEOUT = 1.0  # seconds to wait after SIGKILL


@dataclass(frozen=True)
class ProcessSpec:
    """Specification for a subprocess to run.

    Attributes:
        argv: Command line arguments (first element is the executable)
        cwd: Working directory for the process
        env: Environment variables (None = inherit parent)
    """

    argv: list[str]
    cwd: Path
    env: Mapping[str, str] | None = None


class TerminalReason(Enum):
    """Why a run ended."""

    EXIT = "exit"
    SIGNAL = "signal"
    ERROR = "error"


@dataclass(frozen=True)
class TerminalResult:
    """The single terminal event of a RunHandle.

    Attributes:
        reason: exit / signal / error
        exit_code: Process exit code (EXIT only)
        signal_number: Terminating signal (SIGNAL only)
        error: Exception raised while waiting for the process (ERROR only)
    """

    reason: TerminalReason
    exit_code: int | None = None
    signal_number: int | None = None
    error: BaseException | None = None

    @classmethod
    def from_returncode(cls, returncode: int) -> "TerminalResult":
        # asyncio reports "killed by signal N" as returncode -N on POSIX
        if returncode < 0 and not IS_WINDOWS:
            return cls(TerminalReason.SIGNAL, signal_number=-returncode)
        return cls(TerminalReason.EXIT, exit_code=returncode)

    @property
    def is_success(self) -> bool:
        return self.reason is TerminalReason.EXIT and self.exit_code == 0

    def describe(self) -> str:
        if self.reason is TerminalReason.EXIT:
            return f"exit code {self.exit_code}"
        if self.reason is TerminalReason.SIGNAL:
            try:
                name = signal.Signals(self.signal_number).name
            except ValueError:
                name = str(self.signal_number)
            return f"signal {name}"
        return f"error {self.error!r}"


class RunHandle:
    """One in-flight external process.

    The handle exposes the two output streams and a terminal result that
    resolves exactly once. It is owned by the supervisor that created it.
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        spec: ProcessSpec,
        runner: "ProcessRunner",
    ) -> None:
        self._process = process
        self._spec = spec
        self._runner = runner
        self._result: TerminalResult | None = None
        self._wait_lock = asyncio.Lock()

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def argv(self) -> list[str]:
        return list(self._spec.argv)

    @property
    def stdout(self) -> asyncio.StreamReader | None:
        return self._process.stdout

    @property
    def stderr(self) -> asyncio.StreamReader | None:
        return self._process.stderr

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    @property
    def is_running(self) -> bool:
        return self._process.returncode is None

    @property
    def result(self) -> TerminalResult | None:
        """Terminal result, None until wait() has completed."""
        return self._result

    async def wait(self) -> TerminalResult:
        """Wait for the process to finish and return its terminal result.

        Every caller observes the same result object.
        """
        async with self._wait_lock:
            if self._result is None:
                try:
                    returncode = await self._process.wait()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.warning(f"Error waiting for subprocess pid={self.pid}: {e}")
                    self._result = TerminalResult(TerminalReason.ERROR, error=e)
                else:
                    self._result = TerminalResult.from_returncode(returncode)
                    logger.debug(
                        f"Subprocess completed pid={self.pid} "
                        f"returncode={returncode}"
                    )
            return self._result

    def request_termination(self) -> bool:
        """Synchronously ask the process group to stop.

        Returns:
            True if a signal was sent, False if the process had already exited
        """
        return self._runner.request_termination(self)


@dataclass
class ProcessRunner:
    """Cross-platform process runner with isolation and reliable termination.

    This class manages subprocess execution with:
    - Process group/session isolation to prevent SIGINT propagation
    - Graceful termination (SIGTERM -> timeout -> SIGKILL)
    - Background escalation tasks that can be awaited on shutdown

    Example:
        runner = ProcessRunner()
        handle = await runner.spawn(ProcessSpec(
            argv=["tns", "run", "android", "--path", "/workspace/app"],
            cwd=Path("/workspace/app"),
        ))
        result = await handle.wait()
    """

    term_timeout: float = DEFAULT_TERM_TIMEOUT
    kill_timeout: float = DEFAULT_KILL_TIMEOUT
    _reapers: set[asyncio.Task[None]] = field(default_factory=set, init=False, repr=False)
    _spawn_count: int = field(default=0, init=False, repr=False)

    @property
    def spawn_count(self) -> int:
        """Number of processes successfully created by this runner."""
        return self._spawn_count

    async def spawn(self, spec: ProcessSpec) -> RunHandle:
        """Start a subprocess in an isolated process group/session.

        Args:
            spec: Process specification

        Returns:
            RunHandle for the new process

        Raises:
            SpawnError: If the process could not be created
        """
        kwargs = self._build_subprocess_kwargs(spec)

        try:
            # stdin=DEVNULL: the parent's stdin is the MCP JSON-RPC channel
            process = await asyncio.create_subprocess_exec(
                *spec.argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=spec.cwd,
                **kwargs,
            )
        except OSError as e:
            logger.warning(f"Failed to start subprocess argv={spec.argv[0]}: {e}")
            raise SpawnError(
                f"Could not start '{spec.argv[0]}': {e}",
                argv=spec.argv,
                cause=e,
            ) from e

        self._spawn_count += 1
        logger.debug(
            f"Started subprocess pid={process.pid} "
            f"argv={spec.argv[0]} cwd={spec.cwd}"
        )
        return RunHandle(process, spec, self)

    def _build_subprocess_kwargs(self, spec: ProcessSpec) -> dict[str, Any]:
        """Build platform-specific subprocess kwargs.

        Args:
            spec: Process specification

        Returns:
            Dict of kwargs for asyncio.create_subprocess_exec
        """
        kwargs: dict[str, Any] = {}

        if spec.env is not None:
            kwargs["env"] = dict(spec.env)

        if IS_WINDOWS:
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            # POSIX: start_new_session (equivalent to setsid)
            kwargs["start_new_session"] = True

        return kwargs

    def request_termination(self, handle: RunHandle) -> bool:
        """Send the graceful stop signal now and escalate in the background.

        Safe to call repeatedly; only the first call on a live process
        schedules an escalation task.

        Args:
            handle: The run to stop

        Returns:
            True if a signal was sent
        """
        if not handle.is_running:
            return False

        pid = handle.pid
        try:
            if IS_WINDOWS:
                self._windows_terminate(handle._process)
            else:
                self._posix_terminate(handle._process)
        except ProcessLookupError:
            logger.debug(f"Subprocess already exited pid={pid}")
            return False

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop (interpreter shutdown): the signal has been sent, nothing to escalate
            return True

        reaper = loop.create_task(self._escalate(handle), name=f"reaper-{pid}")
        self._reapers.add(reaper)
        reaper.add_done_callback(self._reapers.discard)
        return True

    async def _escalate(self, handle: RunHandle) -> None:
        """Wait for graceful exit, SIGKILL the group when it does not come."""
        process = handle._process
        pid = process.pid

        try:
            with anyio.move_on_after(self.term_timeout):
                await process.wait()
            if process.returncode is not None:
                logger.debug(
                    f"Subprocess terminated gracefully pid={pid} "
                    f"returncode={process.returncode}"
                )
                return

            logger.debug(f"Force killing subprocess pid={pid}")
            if IS_WINDOWS:
                self._windows_kill(process)
            else:
                self._posix_kill(process)

            with anyio.move_on_after(self.kill_timeout):
                await process.wait()
            if process.returncode is None:
                logger.warning(f"Subprocess did not exit after kill pid={pid}")
            else:
                logger.debug(
                    f"Subprocess killed pid={pid} "
                    f"returncode={process.returncode}"
                )

        except ProcessLookupError:
            logger.debug(f"Subprocess already exited pid={pid}")
        except Exception as e:
            logger.warning(f"Error terminating subprocess pid={pid}: {e}")

    async def aclose(self, timeout: float | None = None) -> None:
        """Wait for pending escalation tasks (used on shutdown).

        Args:
            timeout: Upper bound for the wait; defaults to term + kill timeouts
        """
        if not self._reapers:
            return
        limit = timeout if timeout is not None else self.term_timeout + self.kill_timeout + 0.5
        pending = list(self._reapers)
        logger.debug(f"Waiting for {len(pending)} subprocess termination(s)")
        with anyio.move_on_after(limit) as scope:
            await asyncio.gather(*pending, return_exceptions=True)
        if scope.cancelled_caught:
            logger.warning("Timed out waiting for subprocesses to terminate")

    def _posix_terminate(self, process: asyncio.subprocess.Process) -> None:
        """Send SIGTERM to process group on POSIX systems."""
        try:
            # Process group ID equals pid because of start_new_session
            pgid = os.getpgid(process.pid)
            os.killpg(pgid, signal.SIGTERM)
            logger.debug(f"Sent SIGTERM to process group pgid={pgid}")
        except ProcessLookupError:
            raise
        except OSError as e:
            logger.debug(f"killpg failed, falling back to terminate: {e}")
            process.terminate()

    def _posix_kill(self, process: asyncio.subprocess.Process) -> None:
        """Send SIGKILL to process group on POSIX systems."""
        try:
            pgid = os.getpgid(process.pid)
            os.killpg(pgid, signal.SIGKILL)
            logger.debug(f"Sent SIGKILL to process group pgid={pgid}")
        except ProcessLookupError:
            pass
        except OSError as e:
            logger.debug(f"killpg failed, falling back to kill: {e}")
            process.kill()

    def _windows_terminate(self, process: asyncio.subprocess.Process) -> None:
        """Send CTRL_BREAK_EVENT on Windows."""
        try:
            # Works because of CREATE_NEW_PROCESS_GROUP
            os.kill(process.pid, signal.CTRL_BREAK_EVENT)
            logger.debug(f"Sent CTRL_BREAK_EVENT to pid={process.pid}")
        except OSError as e:
            logger.debug(f"CTRL_BREAK_EVENT failed, falling back: {e}")
            process.terminate()

    def _windows_kill(self, process: asyncio.subprocess.Process) -> None:
        """Force kill on Windows."""
        try:
            process.kill()
            logger.debug(f"Called kill() on pid={process.pid}")
        except ProcessLookupError:
            pass
