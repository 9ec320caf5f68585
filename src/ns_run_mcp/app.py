"""ns-run-mcp 应用入口。

包含服务器生命周期管理和主入口点。
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys

from mcp.server.stdio import stdio_server

from .config import get_config
from .context import create_services
from .extension import ExtensionContext, activate, deactivate
from .server import create_server
from .signal_manager import SignalManager

__all__ = ["run_server", "main"]

logger = logging.getLogger(__name__)


async def run_server() -> None:
    """运行 MCP Server。

    启动顺序：创建服务 -> 激活扩展 -> 启动信号管理器 -> stdio 服务。
    无论服务器如何结束（stdin 关闭、SIGTERM、SIGINT），finally 中都会停用扩展，
    保证所有仍在运行的 tns 进程组被终止。

    使用并发任务架构：
    - server_task: 运行 MCP server
    - shutdown_watcher: 监听 shutdown 事件并取消 server_task
    """
    config = get_config()
    logger.info(f"Starting ns-run-mcp server: {config}")

    services = create_services(config)
    context = ExtensionContext()
    server_task: asyncio.Task | None = None
    shutdown_watcher: asyncio.Task | None = None

    def on_shutdown():
        """信号管理器触发的关闭回调。"""
        logger.info("Shutdown callback triggered")
        # 关闭 stdin 以中断 stdio_server 的阻塞读取
        try:
            sys.stdin.close()
            logger.debug("stdin closed to unblock stdio_server")
        except Exception as e:
            logger.debug(f"Error closing stdin: {e}")

    signal_manager = SignalManager(
        subscriptions=context.subscriptions,
        double_tap_window=config.sigint_double_tap_window,
        on_shutdown=on_shutdown,
    )

    async def _run_server_impl():
        """运行 MCP server 的内部实现。"""
        server = create_server(context, services.window)
        logger.debug("Starting MCP server with stdio transport")
        async with stdio_server() as (read_stream, write_stream):
            await server.run(
                read_stream,
                write_stream,
                server.create_initialization_options(),
            )
        logger.debug("MCP server completed normally")

    async def _watch_shutdown():
        """监听 shutdown 事件并取消 server task。"""
        await signal_manager.wait_for_shutdown()
        logger.info("Shutdown signal received, cancelling server task...")
        if server_task and not server_task.done():
            server_task.cancel()

    try:
        activate(context, services)

        await signal_manager.start()
        logger.info(
            f"Signal manager started (double_tap_window={signal_manager.double_tap_window}s)"
        )

        server_task = asyncio.create_task(_run_server_impl(), name="mcp-server")
        shutdown_watcher = asyncio.create_task(_watch_shutdown(), name="shutdown-watcher")

        try:
            await server_task
        except asyncio.CancelledError:
            logger.info("Server task cancelled by shutdown signal")

    except asyncio.CancelledError:
        logger.info("run_server: asyncio.CancelledError caught")
        raise

    except BaseException as e:
        logger.error(
            f"run_server: BaseException caught: type={type(e).__name__}, "
            f"msg={e}"
        )
        raise

    finally:
        logger.info("run_server: entering finally block")

        if shutdown_watcher and not shutdown_watcher.done():
            shutdown_watcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await shutdown_watcher

        # 终止所有仍在运行的进程组
        await deactivate(context, services)

        await signal_manager.stop()

        logger.info("run_server: cleanup completed")

        if signal_manager.is_force_exit:
            logger.warning("Force exit requested, terminating with exit code 130")
            sys.exit(130)  # 128 + SIGINT(2) = 130


def configure_logging() -> None:
    """配置日志输出。

    - 默认：INFO 级别输出到 stderr（stdout 是 MCP 协议通道）
    - NSR_LOG_DEBUG：DEBUG 级别输出到临时目录下的日志文件
    """
    config = get_config()
    log_handlers: list[logging.Handler] = []
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    if config.log_debug and config.log_file:
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(formatter)
        log_handlers.append(stderr_handler)
        log_level = logging.INFO

    # 配置 root logger（第三方库）为 WARNING，减少噪音
    logging.basicConfig(
        level=logging.WARNING,
        handlers=log_handlers,
    )
    # 只对 ns_run_mcp 命名空间启用详细日志
    logging.getLogger("ns_run_mcp").setLevel(log_level)


def main() -> None:
    """主入口点。"""
    configure_logging()
    asyncio.run(run_server())


if __name__ == "__main__":
    main()
