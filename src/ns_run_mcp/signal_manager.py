"""信号管理模块。

将 OS 信号转换为宿主级别的停用操作：
- SIGTERM: 优雅退出（停用扩展 -> 终止所有运行中的进程组 -> 退出）
- SIGINT: 同上；在双击窗口内再次收到 SIGINT 则强制退出

支持的配置：
- NSR_SIGINT_DOUBLE_TAP_WINDOW: 双击退出窗口时间

运行中的 tns 进程在独立的进程组中，不会直接收到终端的 SIGINT，
它们只通过停用流程被终止。
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
import time
from typing import Callable, Optional

from .config import get_config
from .subscriptions import Subscriptions

__all__ = ["SignalManager"]

logger = logging.getLogger(__name__)


class SignalManager:
    """信号管理器。

    Example:
        ```python
        signal_manager = SignalManager(context.subscriptions, on_shutdown=close_stdin)

        async def main():
            await signal_manager.start()
            try:
                await server_task
            finally:
                await signal_manager.stop()
        ```

    Attributes:
        subscriptions: 宿主订阅列表（用于日志中报告待释放对象数量）
        double_tap_window: 双击退出窗口时间（秒）
    """

    def __init__(
        self,
        subscriptions: Optional[Subscriptions] = None,
        double_tap_window: Optional[float] = None,
        on_shutdown: Optional[Callable[[], None]] = None,
    ) -> None:
        """初始化信号管理器。

        Args:
            subscriptions: 宿主订阅列表
            double_tap_window: 双击退出窗口时间（默认从配置读取）
            on_shutdown: 关闭时的回调函数
        """
        self.subscriptions = subscriptions
        self.double_tap_window = (
            double_tap_window
            if double_tap_window is not None
            else get_config().sigint_double_tap_window
        )
        self._on_shutdown = on_shutdown

        # 内部状态
        self._last_sigint_time: float = 0.0
        self._shutdown_requested: bool = False
        self._force_exit: bool = False
        self._shutdown_event: Optional[asyncio.Event] = None
        self._original_sigint_handler = None
        self._running: bool = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def is_shutdown_requested(self) -> bool:
        """是否已请求关闭。"""
        return self._shutdown_requested

    @property
    def is_force_exit(self) -> bool:
        """是否请求强制退出（双击 SIGINT）。"""
        return self._force_exit

    async def start(self) -> None:
        """启动信号监听。

        必须在 asyncio 事件循环中调用。
        """
        if self._running:
            logger.warning("SignalManager already running")
            return

        self._loop = asyncio.get_running_loop()
        self._shutdown_event = asyncio.Event()
        self._running = True

        if sys.platform != "win32":
            self._loop.add_signal_handler(signal.SIGINT, self._handle_sigint)
            self._loop.add_signal_handler(signal.SIGTERM, self._handle_sigterm)
            logger.debug(
                f"Signal handlers installed (double_tap_window={self.double_tap_window}s)"
            )
        else:
            # Windows: 使用 signal.signal() 设置处理器
            self._original_sigint_handler = signal.signal(
                signal.SIGINT,
                lambda sig, frame: self._handle_sigint(),
            )
            logger.debug("SIGINT handler installed on Windows")

    async def stop(self) -> None:
        """停止信号监听，恢复原始处理器。"""
        if not self._running:
            return

        self._running = False

        if sys.platform != "win32" and self._loop:
            try:
                self._loop.remove_signal_handler(signal.SIGINT)
                self._loop.remove_signal_handler(signal.SIGTERM)
            except Exception as e:
                logger.debug(f"Error removing signal handlers: {e}")
        elif sys.platform == "win32" and self._original_sigint_handler is not None:
            try:
                signal.signal(signal.SIGINT, self._original_sigint_handler)
            except Exception as e:
                logger.debug(f"Error restoring SIGINT handler: {e}")

        logger.debug("Signal handlers removed")

    async def wait_for_shutdown(self) -> None:
        """等待关闭信号。"""
        if self._shutdown_event:
            await self._shutdown_event.wait()

    def _pending_count(self) -> int:
        return len(self.subscriptions) if self.subscriptions is not None else 0

    def _handle_sigint(self) -> None:
        """处理 SIGINT 信号。

        - 第一次：请求优雅关闭
        - 双击窗口内再次收到：强制退出
        """
        current_time = time.time()
        time_since_last = current_time - self._last_sigint_time
        self._last_sigint_time = current_time

        if time_since_last < self.double_tap_window and self._shutdown_requested:
            logger.warning("Double SIGINT detected, forcing shutdown")
            self._force_shutdown()
            return

        logger.info(
            f"SIGINT received, requesting shutdown "
            f"({self._pending_count()} subscription(s) to dispose). "
            f"Press Ctrl+C again within {self.double_tap_window}s to force exit."
        )
        self._request_shutdown()

    def _handle_sigterm(self) -> None:
        """处理 SIGTERM 信号：始终进入优雅退出流程。"""
        logger.info(
            f"SIGTERM received, initiating graceful shutdown "
            f"({self._pending_count()} subscription(s) to dispose)"
        )
        self._request_shutdown()

    def _request_shutdown(self) -> None:
        """请求关闭。"""
        self._shutdown_requested = True
        self._notify_shutdown()

    def _force_shutdown(self) -> None:
        """强制退出。

        设置 force_exit 标志并触发 shutdown event。
        实际的进程退出由 run_server() 在清理完成后执行。
        """
        logger.warning("Forcing immediate shutdown")
        self._force_exit = True
        self._shutdown_requested = True
        self._notify_shutdown()

    def _notify_shutdown(self) -> None:
        if self._on_shutdown:
            try:
                self._on_shutdown()
            except Exception as e:
                logger.warning(f"Error in shutdown callback: {e}")

        if self._shutdown_event and self._loop:
            self._loop.call_soon_threadsafe(self._shutdown_event.set)

    def request_graceful_shutdown(self) -> None:
        """程序化请求优雅退出。"""
        logger.info("Programmatic shutdown requested")
        self._request_shutdown()
