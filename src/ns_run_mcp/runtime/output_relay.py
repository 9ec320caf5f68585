"""Output relay: forwards a run's stdout/stderr chunks to a sink.

Each stream gets its own reader task, so ordering is preserved within a
stream while stdout and stderr interleave freely, the same way the OS pipes
do. Chunks are forwarded as-is (decoded text, no line splitting).

After detach() no sink call happens any more, even for data that is
already buffered. The readers keep draining the pipes (discarding the data)
so a chatty child cannot block on a full pipe while it is being terminated.
"""

from __future__ import annotations

import asyncio
import codecs
import contextlib
import logging
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from .process_runner import RunHandle

__all__ = ["OutputRelay", "OutputSink", "READ_CHUNK_SIZE"]

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 4096

OutputSink = Callable[[str], None]


class OutputRelay:
    """Relay between one RunHandle and one output sink."""

    def __init__(self, handle: "RunHandle", sink: OutputSink) -> None:
        self._handle = handle
        self._sink = sink
        self._tasks: list[asyncio.Task[None]] = []
        self._attached = False
        self._detached = False

    @property
    def is_attached(self) -> bool:
        """True between attach() and detach()."""
        return self._attached and not self._detached

    def attach(self) -> None:
        """Start one reader task per available stream."""
        if self._attached:
            return
        self._attached = True
        pid = self._handle.pid
        for name, stream in (("stdout", self._handle.stdout), ("stderr", self._handle.stderr)):
            if stream is None:
                continue
            task = asyncio.create_task(self._pump(name, stream), name=f"relay-{name}-{pid}")
            self._tasks.append(task)
        logger.debug(f"Output relay attached pid={pid} streams={len(self._tasks)}")

    def detach(self) -> None:
        """Stop forwarding. Idempotent."""
        if self._detached:
            return
        self._detached = True
        logger.debug(f"Output relay detached pid={self._handle.pid}")

    async def aclose(self) -> None:
        """Detach and stop the reader tasks."""
        self.detach()
        for task in self._tasks:
            if not task.done():
                task.cancel()
        for task in self._tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _pump(self, name: str, stream: asyncio.StreamReader) -> None:
        # Incremental decoder: a multi-byte character may straddle two reads
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            if self._detached:
                continue
            self._forward(name, decoder.decode(chunk))
        if not self._detached:
            self._forward(name, decoder.decode(b"", final=True))

    def _forward(self, name: str, text: str) -> None:
        if not text:
            return
        try:
            self._sink(text)
        except Exception as e:
            # A broken sink must not stop the drain
            logger.warning(f"Output sink failed on {name} pid={self._handle.pid}: {e}")
