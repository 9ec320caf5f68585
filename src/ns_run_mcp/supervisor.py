"""Lifecycle supervisor for one NativeScript run.

State machine::

    STARTING --spawn ok--> RUNNING --terminal event--> EXITING --> DISPOSED
        |                     |
        +--spawn error--------+------host dispose--------------> DISPOSED

Guarantees:
- the output relay is detached before the terminal event is acted upon, so
  the sink never sees a chunk after the run is considered closed;
- the DisposalToken can be released any number of times, from the host
  (server shutdown) or from the run itself, and the process group receives
  at most one termination request from it;
- a spawn error produces exactly one error notification and the output
  channel is never shown.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import TYPE_CHECKING, Callable

from .errors import PreconditionError, SpawnError
from .runtime import OutputRelay, RunHandle, TerminalReason, TerminalResult
from .subscriptions import DisposalToken
from .window import OutputChannel, ViewColumn, Window

if TYPE_CHECKING:
    from .projects import Project

__all__ = ["RunState", "RunSupervisor", "RUN_ERROR_MESSAGE"]

logger = logging.getLogger(__name__)

RUN_ERROR_MESSAGE = "Unexpected error executing NativeScript Run command."


class RunState(Enum):
    STARTING = "starting"
    RUNNING = "running"
    EXITING = "exiting"
    DISPOSED = "disposed"


class RunSupervisor:
    """Owns one run: its handle, its relay, its channel and its token.

    Example:
        supervisor = RunSupervisor(IosProject(root, cli, runner), channel, window)
        subscriptions.push(supervisor.token)
        await supervisor.start()
        ...
        result = await supervisor.wait_closed()
    """

    def __init__(
        self,
        target: "Project",
        channel: OutputChannel,
        window: Window,
        on_disposed: Callable[["RunSupervisor"], None] | None = None,
    ) -> None:
        self._target = target
        self._channel = channel
        self._window = window
        self._on_disposed = on_disposed

        self._state = RunState.STARTING
        self.history: list[RunState] = [RunState.STARTING]
        self._handle: RunHandle | None = None
        self._relay: OutputRelay | None = None
        self._monitor: asyncio.Task[None] | None = None
        self._result: TerminalResult | None = None
        self._spawn_error: SpawnError | None = None
        self._closed = asyncio.Event()

        self.token = DisposalToken(self._dispose_from_host, label=f"run-{target.platform_name()}")

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def platform(self) -> str:
        return self._target.platform_name()

    @property
    def handle(self) -> RunHandle | None:
        return self._handle

    @property
    def pid(self) -> int | None:
        return self._handle.pid if self._handle is not None else None

    @property
    def result(self) -> TerminalResult | None:
        return self._result

    @property
    def spawn_error(self) -> SpawnError | None:
        return self._spawn_error

    @property
    def relay_attached(self) -> bool:
        return self._relay is not None and self._relay.is_attached

    def _transition(self, new_state: RunState) -> None:
        logger.debug(f"Run {self.platform} pid={self.pid}: {self._state.value} -> {new_state.value}")
        self._state = new_state
        self.history.append(new_state)

    async def start(self) -> RunHandle | None:
        """Spawn the run and begin supervising it.

        Returns:
            The RunHandle, or None if the process could not be started

        Raises:
            RuntimeError: If called more than once
        """
        if self._state is not RunState.STARTING or self._handle is not None:
            raise RuntimeError(f"Run supervisor already started (state={self._state.value})")

        try:
            handle = await self._target.run()
        except SpawnError as e:
            self._fail_spawn(e)
            return None

        self._handle = handle
        self._relay = OutputRelay(handle, self._channel.append)
        self._relay.attach()

        if self._state is RunState.DISPOSED:
            # Host teardown arrived while the spawn was in flight
            logger.info(f"Run on {self.platform} disposed during spawn, terminating pid={handle.pid}")
            self._relay.detach()
            handle.request_termination()
        else:
            self._channel.show(ViewColumn.TWO)
            self._transition(RunState.RUNNING)

        self._monitor = asyncio.create_task(self._supervise(handle), name=f"supervise-{handle.pid}")
        return handle

    async def _supervise(self, handle: RunHandle) -> None:
        try:
            result = await handle.wait()
            self._on_terminal(result)
        except asyncio.CancelledError:
            self._dispose_from_host()
            raise
        except Exception as e:
            logger.error(f"Run on {self.platform} pid={handle.pid} failed: {e}")
            self._on_terminal(TerminalResult(TerminalReason.ERROR, error=e))
        finally:
            if self._relay is not None:
                await self._relay.aclose()
            self._closed.set()

    def _on_terminal(self, result: TerminalResult) -> None:
        self._result = result
        if self._state is RunState.DISPOSED:
            logger.debug(f"Run on {self.platform} ended after disposal: {result.describe()}")
            return

        self._transition(RunState.EXITING)
        # Listeners go first: nothing may reach the channel once the run is closed
        if self._relay is not None:
            self._relay.detach()

        if result.reason is TerminalReason.ERROR:
            self._window.show_error_message(RUN_ERROR_MESSAGE)
        else:
            logger.info(f"Run on {self.platform} pid={self.pid} finished: {result.describe()}")

        self._channel.hide()
        self._finish()

    def _fail_spawn(self, error: SpawnError) -> None:
        self._spawn_error = error
        self._transition(RunState.DISPOSED)
        if isinstance(error, PreconditionError):
            self._window.show_error_message(str(error))
        else:
            logger.error(f"Run on {self.platform} could not start: {error}")
            self._window.show_error_message(RUN_ERROR_MESSAGE)
        self._finish()
        self._closed.set()

    def _finish(self) -> None:
        if self._state is not RunState.DISPOSED:
            self._transition(RunState.DISPOSED)
        # Releases the token without side effects: state is already DISPOSED
        self.token.dispose()
        if self._on_disposed:
            try:
                self._on_disposed(self)
            except Exception as e:
                logger.warning(f"Error in on_disposed callback: {e}")

    def _dispose_from_host(self) -> None:
        if self._state is RunState.DISPOSED:
            return
        self._transition(RunState.DISPOSED)

        if self._relay is not None:
            self._relay.detach()
        if self._handle is not None and self._handle.is_running:
            logger.info(f"Terminating run on {self.platform} pid={self._handle.pid}")
            self._handle.request_termination()
        self._channel.hide()
        self._finish()

    def dispose(self) -> None:
        """Host-initiated teardown (same as releasing the token)."""
        self.token.dispose()

    async def wait_closed(self) -> TerminalResult | None:
        """Wait until the process has ended and the relay is closed.

        Returns:
            The terminal result, or None if the run never started
        """
        await self._closed.wait()
        return self._result

    def __repr__(self) -> str:
        return f"RunSupervisor({self.platform}, state={self._state.value}, pid={self.pid})"
