"""扩展生命周期：activate / deactivate。

启动顺序：
1. 初始化统计服务
2. 后台检查新版本（结果为 false 时显示 warning）
3. 版本闸门：CLI 未安装或不兼容时显示 error，但不阻止注册命令
4. 创建诊断通道
5. 注册命令

停用时释放订阅列表中的全部对象（命令注册 + 运行中的进程），
然后等待后台任务收尾。
"""

from __future__ import annotations

import asyncio
import functools
import logging
from dataclasses import dataclass, field

from . import __version__
from .commands import CommandRegistry, CommandSurface
from .context import ServiceContext
from .subscriptions import Subscriptions
from .update_check import UpdateCheckResult
from .window import OutputChannel, Window

__all__ = ["ExtensionContext", "activate", "deactivate", "INFO_CHANNEL_NAME"]

logger = logging.getLogger(__name__)

INFO_CHANNEL_NAME = "NativeScript Extension"


@dataclass
class ExtensionContext:
    """宿主提供给扩展的上下文。

    Attributes:
        subscriptions: 停用时统一释放的对象
        commands: 命令面板
        info_channel: 诊断通道（activate 后设置）
    """

    subscriptions: Subscriptions = field(default_factory=Subscriptions)
    commands: CommandRegistry = field(default_factory=CommandRegistry)
    info_channel: OutputChannel | None = None


def create_info_channel(window: Window, services: ServiceContext, cli_version: str) -> OutputChannel:
    """创建诊断通道并写入版本信息。"""
    channel = window.create_output_channel(INFO_CHANNEL_NAME)
    channel.append_line(f"Version: {__version__}")
    channel.append_line(f"NativeScript CLI: {cli_version}")
    channel.append_line(f"NativeScript CLI path: {services.cli.path}")
    root = services.workspace_root
    channel.append_line(f"Workspace: {root if root is not None else '(none)'}")
    return channel


def _on_update_checked(window: Window, task: "asyncio.Task[UpdateCheckResult]") -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.debug(f"Update check task failed: {error}")
        return
    result = task.result()
    if not result.result:
        window.show_warning_message(result.error)


def activate(context: ExtensionContext, services: ServiceContext) -> CommandSurface:
    """激活扩展。

    必须在运行中的事件循环里调用（更新检查是后台任务）。
    """
    window = services.window

    if services.analytics is not None:
        services.analytics.initialize()

    if services.version_service is not None:
        task = services.version_service.start()
        task.add_done_callback(functools.partial(_on_update_checked, window))

    cli_version = services.cli.version
    error = cli_version.to_error()
    if error is not None:
        window.show_error_message(str(error))

    context.info_channel = create_info_channel(window, services, cli_version.display_version)

    surface = CommandSurface(services, context.subscriptions, context.info_channel)
    surface.register(context.commands)
    logger.info(f"Extension activated, commands: {context.commands.names}")
    return surface


async def deactivate(context: ExtensionContext, services: ServiceContext) -> None:
    """停用扩展。

    同步释放全部订阅（运行中的进程组立即收到 SIGTERM），
    然后等待 SIGKILL 升级任务、更新检查与统计发送收尾。
    """
    logger.info("Deactivating extension")
    context.subscriptions.dispose_all()

    if services.version_service is not None:
        await services.version_service.aclose()

    await services.runner.aclose()

    if services.analytics is not None:
        await services.analytics.aclose()

    logger.info("Extension deactivated")
