"""命令层。

注册宿主可调用的三个命令，并把调用分发给运行管理：
- nativescript.runIos
- nativescript.runAndroid
- nativescript.showOutputChannel

命令层本身不保存运行状态：每次 run 创建独立的 RunSupervisor，
其释放令牌登记在宿主的订阅列表中。
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from .projects import AndroidProject, IosProject, Project
from .supervisor import RunSupervisor
from .subscriptions import DisposalToken, Subscriptions

if TYPE_CHECKING:
    from .context import ServiceContext
    from .window import OutputChannel

__all__ = [
    "CommandRegistry",
    "CommandResult",
    "CommandSurface",
    "NO_WORKSPACE_MESSAGE",
    "RUN_IOS_COMMAND",
    "RUN_ANDROID_COMMAND",
    "SHOW_OUTPUT_CHANNEL_COMMAND",
]

logger = logging.getLogger(__name__)

RUN_IOS_COMMAND = "nativescript.runIos"
RUN_ANDROID_COMMAND = "nativescript.runAndroid"
SHOW_OUTPUT_CHANNEL_COMMAND = "nativescript.showOutputChannel"

NO_WORKSPACE_MESSAGE = "No workspace opened."

CommandCallback = Callable[[], "CommandResult | Awaitable[CommandResult]"]


@dataclass
class CommandResult:
    """命令执行结果。

    Attributes:
        ok: 是否成功分发
        message: 给用户的文本
        pid: 启动的进程 ID（仅 run 命令）
        supervisor: 本次运行的监管者（仅 run 命令）
    """

    ok: bool
    message: str
    pid: int | None = None
    supervisor: RunSupervisor | None = None


class CommandRegistry:
    """宿主的命令面板。"""

    def __init__(self) -> None:
        self._commands: dict[str, CommandCallback] = {}

    def register_command(self, name: str, callback: CommandCallback) -> DisposalToken:
        """注册命令。

        Returns:
            释放后命令被注销的令牌

        Raises:
            ValueError: 命令已存在
        """
        if name in self._commands:
            raise ValueError(f"Command {name} already registered")
        self._commands[name] = callback
        logger.debug(f"Registered command: {name}")
        return DisposalToken(lambda: self._unregister(name, callback), label=f"command-{name}")

    def _unregister(self, name: str, callback: CommandCallback) -> None:
        if self._commands.get(name) is callback:
            del self._commands[name]
            logger.debug(f"Unregistered command: {name}")

    def __contains__(self, name: str) -> bool:
        return name in self._commands

    @property
    def names(self) -> list[str]:
        return sorted(self._commands)

    async def execute(self, name: str) -> CommandResult:
        """执行命令。

        Raises:
            KeyError: 命令不存在
        """
        callback = self._commands.get(name)
        if callback is None:
            raise KeyError(f"Unknown command '{name}'")
        result: Any = callback()
        if inspect.isawaitable(result):
            result = await result
        return result


class CommandSurface:
    """命令实现，依赖显式传入的服务上下文。"""

    def __init__(
        self,
        services: "ServiceContext",
        subscriptions: Subscriptions,
        info_channel: "OutputChannel",
    ) -> None:
        self._services = services
        self._subscriptions = subscriptions
        self._info_channel = info_channel

    def register(self, commands: CommandRegistry) -> None:
        """注册全部命令，注册令牌登记到订阅列表。"""
        self._subscriptions.push(
            commands.register_command(RUN_IOS_COMMAND, lambda: self.run_command(IosProject)),
            commands.register_command(RUN_ANDROID_COMMAND, lambda: self.run_command(AndroidProject)),
            commands.register_command(SHOW_OUTPUT_CHANNEL_COMMAND, self.show_output_channel),
        )

    async def run_command(self, project_type: type[Project]) -> CommandResult:
        """启动一次平台运行。

        没有工作区时不会创建任何进程。CLI 版本不兼容不阻止运行，
        启动时已经通知过用户。
        """
        services = self._services
        window = services.window

        if services.workspace_root is None:
            window.show_error_message(NO_WORKSPACE_MESSAGE)
            return CommandResult(ok=False, message=NO_WORKSPACE_MESSAGE)

        if self._subscriptions.is_disposed:
            return CommandResult(ok=False, message="Extension is shutting down.")

        project = project_type(services.workspace_root, services.cli, services.runner)
        platform = project.platform_name()

        channel = window.create_output_channel(f"Run on {platform}")
        channel.clear()
        self._track_run(platform)

        supervisor = RunSupervisor(
            project,
            channel,
            window,
            on_disposed=lambda s: self._subscriptions.discard(s.token),
        )
        self._subscriptions.push(supervisor.token)

        handle = await supervisor.start()
        if handle is None:
            error = supervisor.spawn_error
            return CommandResult(
                ok=False,
                message=str(error) if error else f"Run on {platform} failed to start.",
                supervisor=supervisor,
            )

        return CommandResult(
            ok=True,
            message=f"Started run on {platform} (pid {handle.pid}). Output: '{channel.name}'.",
            pid=handle.pid,
            supervisor=supervisor,
        )

    def _track_run(self, platform: str) -> None:
        analytics = self._services.analytics
        if analytics is None:
            return
        try:
            analytics.run_run_command(platform)
        except Exception as e:
            logger.debug(f"Analytics failure ignored: {e}")

    def show_output_channel(self) -> CommandResult:
        """显示诊断通道，并附带保留的运行输出。"""
        self._info_channel.show()
        sections = [self._info_channel.text.rstrip("\n")]
        for channel in self._services.window.channels:
            if channel is self._info_channel:
                continue
            state = "visible" if channel.visible else "hidden"
            sections.append(f"--- {channel.name} ({state}) ---\n{channel.text.rstrip()}")
        return CommandResult(ok=True, message="\n\n".join(sections))
