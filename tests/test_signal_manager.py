"""SignalManager 模块测试。

测试信号管理器的基本功能：
- 配置支持
- SIGINT / SIGTERM 请求关闭
- 双击退出
"""

from __future__ import annotations

import asyncio
import os
import signal
import sys
from unittest import mock

import pytest

from ns_run_mcp.signal_manager import SignalManager
from ns_run_mcp.subscriptions import DisposalToken, Subscriptions


class TestSignalManagerInit:
    """SignalManager 初始化测试。"""

    def test_init_with_defaults(self):
        """使用默认配置初始化。"""
        subscriptions = Subscriptions()

        with mock.patch.dict(os.environ, {}, clear=False):
            os.environ.pop("NSR_SIGINT_DOUBLE_TAP_WINDOW", None)

            from ns_run_mcp.config import reload_config
            reload_config()

            manager = SignalManager(subscriptions)

            assert manager.subscriptions is subscriptions
            assert manager.double_tap_window == 1.0

    def test_init_with_custom_values(self):
        """使用自定义值初始化。"""
        manager = SignalManager(Subscriptions(), double_tap_window=2.0)

        assert manager.double_tap_window == 2.0
        assert manager.is_shutdown_requested is False
        assert manager.is_force_exit is False


class TestSignalManagerSigint:
    """SIGINT 处理测试。"""

    def test_sigint_requests_shutdown(self):
        """第一次 SIGINT 请求关闭。"""
        on_shutdown = mock.Mock()
        manager = SignalManager(Subscriptions(), double_tap_window=1.0, on_shutdown=on_shutdown)
        manager._shutdown_event = asyncio.Event()
        manager._loop = mock.MagicMock()

        manager._handle_sigint()

        assert manager.is_shutdown_requested is True
        assert manager.is_force_exit is False
        on_shutdown.assert_called_once()
        manager._loop.call_soon_threadsafe.assert_called_once_with(manager._shutdown_event.set)

    def test_sigint_does_not_dispose_subscriptions(self):
        """信号处理器本身不释放订阅，停用流程负责释放。"""
        release = mock.Mock()
        subscriptions = Subscriptions()
        subscriptions.push(DisposalToken(release))
        manager = SignalManager(subscriptions, double_tap_window=1.0)

        manager._handle_sigint()

        release.assert_not_called()
        assert len(subscriptions) == 1

    def test_double_tap_forces_exit(self):
        """双击窗口内第二次 SIGINT 强制退出。"""
        manager = SignalManager(Subscriptions(), double_tap_window=5.0)

        manager._handle_sigint()
        manager._handle_sigint()

        assert manager.is_force_exit is True
        assert manager.is_shutdown_requested is True

    def test_second_sigint_outside_window(self):
        """超过双击窗口的第二次 SIGINT 不强制退出。"""
        manager = SignalManager(Subscriptions(), double_tap_window=0.5)

        manager._handle_sigint()
        manager._last_sigint_time -= 10.0
        manager._handle_sigint()

        assert manager.is_force_exit is False
        assert manager.is_shutdown_requested is True


class TestSignalManagerSigterm:
    """SIGTERM 处理测试。"""

    def test_sigterm_requests_shutdown(self):
        on_shutdown = mock.Mock()
        manager = SignalManager(Subscriptions(), double_tap_window=1.0, on_shutdown=on_shutdown)

        manager._handle_sigterm()

        assert manager.is_shutdown_requested is True
        assert manager.is_force_exit is False
        on_shutdown.assert_called_once()

    def test_shutdown_callback_error_is_ignored(self):
        manager = SignalManager(
            Subscriptions(),
            double_tap_window=1.0,
            on_shutdown=mock.Mock(side_effect=RuntimeError("stdin already closed")),
        )

        manager._handle_sigterm()

        assert manager.is_shutdown_requested is True

    def test_programmatic_shutdown(self):
        manager = SignalManager(double_tap_window=1.0)
        manager.request_graceful_shutdown()
        assert manager.is_shutdown_requested is True


class TestSignalManagerLifecycle:
    """启动 / 停止测试。"""

    @pytest.mark.asyncio
    async def test_wait_for_shutdown(self):
        manager = SignalManager(Subscriptions(), double_tap_window=1.0)
        await manager.start()
        try:
            waiter = asyncio.create_task(manager.wait_for_shutdown())
            await asyncio.sleep(0)
            assert not waiter.done()

            manager.request_graceful_shutdown()
            await asyncio.wait_for(waiter, timeout=1.0)
        finally:
            await manager.stop()

    @pytest.mark.asyncio
    async def test_start_twice_is_harmless(self):
        manager = SignalManager(double_tap_window=1.0)
        await manager.start()
        await manager.start()
        await manager.stop()
        await manager.stop()

    @pytest.mark.asyncio
    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals")
    async def test_real_sigterm(self):
        """真实的 SIGTERM 经由事件循环触发关闭。"""
        manager = SignalManager(Subscriptions(), double_tap_window=1.0)
        await manager.start()
        try:
            os.kill(os.getpid(), signal.SIGTERM)
            await asyncio.wait_for(manager.wait_for_shutdown(), timeout=2.0)
            assert manager.is_shutdown_requested is True
        finally:
            await manager.stop()
