"""服务上下文。

启动时创建一次，显式传给需要它的组件（命令、扩展生命周期、MCP 服务器），
测试可以替换其中任意服务。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from .analytics import AnalyticsService
from .cli import NativeScriptCli
from .config import Config
from .runtime import ProcessRunner
from .state import GlobalState
from .update_check import ExtensionVersionService
from .window import Window

__all__ = ["ServiceContext", "create_services"]


@dataclass
class ServiceContext:
    """进程级共享服务（启动后只读为主）。

    Attributes:
        config: 配置
        cli: NativeScript CLI 访问器
        runner: 进程运行器
        window: 输出通道与通知
        analytics: 统计服务
        global_state: 全局状态
        version_service: 新版本检查
    """

    config: Config
    cli: NativeScriptCli
    runner: ProcessRunner
    window: Window = field(default_factory=Window)
    analytics: AnalyticsService | None = None
    global_state: GlobalState | None = None
    version_service: ExtensionVersionService | None = None

    @property
    def workspace_root(self) -> Path | None:
        """工作区根目录（None 表示没有打开工作区）。"""
        return self.config.workspace_root


def create_services(config: Config) -> ServiceContext:
    """根据配置创建全部服务。"""
    global_state = GlobalState(config.state_dir)
    return ServiceContext(
        config=config,
        cli=NativeScriptCli(
            path=config.tns_path,
            min_version=config.cli_min_version,
            max_version=config.cli_max_version,
        ),
        runner=ProcessRunner(term_timeout=config.term_timeout),
        window=Window(),
        analytics=AnalyticsService(config, global_state),
        global_state=global_state,
        version_service=ExtensionVersionService(config, global_state),
    )
