"""展示层：输出通道与用户通知。

- OutputChannel: 一个运行（或诊断信息）的输出面板，支持 show/hide/clear/append
- Window: 创建输出通道，记录用户通知（error/warning）

MCP 客户端看不到"面板"，所以通道内容保存在内存中，
通过 show_output_channel 工具查看；通知在下一次工具调用时一并返回。
"""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum

__all__ = [
    "Notification",
    "OutputChannel",
    "Severity",
    "ViewColumn",
    "Window",
]

logger = logging.getLogger(__name__)

# 单个通道保留的最大字符数（超出时丢弃最早的内容）
MAX_CHANNEL_CHARS = 1_000_000
# 保留的运行通道数量
MAX_RUN_CHANNELS = 32
# 保留的未读通知与历史通知数量
MAX_NOTIFICATIONS = 100


class ViewColumn(Enum):
    """面板显示位置。"""

    ACTIVE = 0
    ONE = 1
    TWO = 2


class Severity(Enum):
    """通知级别。"""

    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class Notification:
    """用户通知。"""

    severity: Severity
    message: str
    timestamp: float = field(default_factory=time.time)

    def format(self) -> str:
        return f"[{self.severity.value}] {self.message}"


class OutputChannel:
    """输出通道。

    Attributes:
        name: 通道名称（如 "Run on iOS"）
        visible: 当前是否显示
        view_column: 最近一次 show() 的位置
    """

    def __init__(self, name: str, max_chars: int = MAX_CHANNEL_CHARS) -> None:
        self.name = name
        self.visible = False
        self.view_column: ViewColumn | None = None
        self.show_count = 0
        self._max_chars = max_chars
        self._parts: deque[str] = deque()
        self._size = 0

    def show(self, column: ViewColumn = ViewColumn.ACTIVE) -> None:
        self.visible = True
        self.view_column = column
        self.show_count += 1
        logger.debug(f"Output channel shown: {self.name} (column={column.name})")

    def hide(self) -> None:
        self.visible = False
        logger.debug(f"Output channel hidden: {self.name}")

    def clear(self) -> None:
        self._parts.clear()
        self._size = 0

    def append(self, text: str) -> None:
        if not text:
            return
        self._parts.append(text)
        self._size += len(text)
        while self._size > self._max_chars and len(self._parts) > 1:
            self._size -= len(self._parts.popleft())

    def append_line(self, text: str) -> None:
        self.append(text + "\n")

    @property
    def text(self) -> str:
        return "".join(self._parts)

    def __repr__(self) -> str:
        return f"OutputChannel({self.name!r}, visible={self.visible}, chars={self._size})"


class Window:
    """输出通道工厂 + 通知记录。

    Example:
        ```python
        window = Window()
        channel = window.create_output_channel("Run on Android")
        channel.show(ViewColumn.TWO)
        window.show_error_message("No workspace opened.")

        for note in window.drain_notifications():
            print(note.format())
        ```
    """

    def __init__(self, max_channels: int = MAX_RUN_CHANNELS) -> None:
        self._channels: deque[OutputChannel] = deque(maxlen=max_channels)
        self._pending: deque[Notification] = deque(maxlen=MAX_NOTIFICATIONS)
        self._history: deque[Notification] = deque(maxlen=MAX_NOTIFICATIONS)

    def create_output_channel(self, name: str) -> OutputChannel:
        """创建新的输出通道（同名通道也会新建）。"""
        channel = OutputChannel(name)
        self._channels.append(channel)
        return channel

    @property
    def channels(self) -> list[OutputChannel]:
        """保留的输出通道（按创建顺序）。"""
        return list(self._channels)

    def show_error_message(self, message: str) -> Notification:
        logger.error(f"[notify] {message}")
        return self._notify(Severity.ERROR, message)

    def show_warning_message(self, message: str) -> Notification:
        logger.warning(f"[notify] {message}")
        return self._notify(Severity.WARNING, message)

    def _notify(self, severity: Severity, message: str) -> Notification:
        note = Notification(severity, message)
        self._pending.append(note)
        self._history.append(note)
        return note

    @property
    def notifications(self) -> list[Notification]:
        """最近的历史通知（最多 MAX_NOTIFICATIONS 条）。"""
        return list(self._history)

    def drain_notifications(self) -> list[Notification]:
        """取出并清空未读通知。"""
        pending = list(self._pending)
        self._pending.clear()
        return pending
