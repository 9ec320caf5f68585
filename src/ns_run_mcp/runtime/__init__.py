"""Runtime module for subprocess management and output streaming.

This module provides isolated process execution with reliable termination
and per-stream output relaying for NativeScript run processes.
"""

from __future__ import annotations

from .output_relay import OutputRelay, OutputSink
from .process_runner import (
    ProcessRunner,
    ProcessSpec,
    RunHandle,
    TerminalReason,
    TerminalResult,
)

__all__ = [
    "OutputRelay",
    "OutputSink",
    "ProcessRunner",
    "ProcessSpec",
    "RunHandle",
    "TerminalReason",
    "TerminalResult",
]
