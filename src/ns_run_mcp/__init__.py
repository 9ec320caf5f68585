"""ns-run-mcp - NativeScript run 命令的 MCP 服务器。

环境变量:
    NSR_WORKSPACE: 工作区根目录（NativeScript 项目）
    NSR_TNS_PATH: NativeScript CLI 路径（默认 tns）
    NSR_LOG_DEBUG: 日志调试模式 (默认 false)

用法:
    uvx ns-run-mcp
"""

__version__ = "0.1.0"

from .app import main

__all__ = ["__version__", "main"]
