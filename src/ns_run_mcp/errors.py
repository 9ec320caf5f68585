"""ns-run-mcp 异常类。

错误分类：
- PreconditionError: 没有打开工作区 / 项目目录不存在，运行不会开始
- SpawnError: 进程无法创建（可执行文件缺失等）
- IncompatibleToolError: NativeScript CLI 版本校验失败（仅启动时报告）

非零退出码或被信号终止不属于异常，见 TerminalResult.reason。
"""

from __future__ import annotations

__all__ = [
    "NsRunError",
    "SpawnError",
    "PreconditionError",
    "IncompatibleToolError",
]


class NsRunError(Exception):
    """ns-run-mcp 基础异常。"""
    pass


class SpawnError(NsRunError):
    """进程无法启动。

    Attributes:
        argv: 尝试执行的命令行（可能为空）
        cause: 原始 OSError（如有）
    """

    def __init__(
        self,
        message: str,
        argv: list[str] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        self.argv = list(argv or [])
        self.cause = cause
        super().__init__(message)


class PreconditionError(SpawnError):
    """运行前置条件不满足（没有工作区）。

    在创建进程之前检测，保证不会产生多余的进程。
    """
    pass


class IncompatibleToolError(NsRunError):
    """NativeScript CLI 未安装或版本不兼容。

    Attributes:
        not_installed: 是否为"未安装"类型
    """

    def __init__(self, message: str, not_installed: bool = False) -> None:
        self.not_installed = not_installed
        super().__init__(message)
