"""ns-run-mcp MCP Server。

将扩展命令暴露为无参数的 MCP 工具：
    run_ios              -> nativescript.runIos
    run_android          -> nativescript.runAndroid
    show_output_channel  -> nativescript.showOutputChannel

自上次调用以来产生的用户通知（启动时的版本 / 更新提示、运行错误）
会附加在每个工具结果的开头。
"""

from __future__ import annotations

import asyncio
import html
import logging
from typing import Any

from mcp.server import Server
from mcp.types import TextContent, Tool

from .commands import (
    RUN_ANDROID_COMMAND,
    RUN_IOS_COMMAND,
    SHOW_OUTPUT_CHANNEL_COMMAND,
    CommandResult,
)
from .extension import ExtensionContext
from .window import Notification, Window

__all__ = ["create_server", "TOOL_COMMANDS", "format_response", "format_error_response"]

logger = logging.getLogger(__name__)

TOOL_COMMANDS: dict[str, str] = {
    "run_ios": RUN_IOS_COMMAND,
    "run_android": RUN_ANDROID_COMMAND,
    "show_output_channel": SHOW_OUTPUT_CHANNEL_COMMAND,
}

TOOL_DESCRIPTIONS: dict[str, str] = {
    "run_ios": (
        "Build and run the NativeScript app in the workspace on iOS (tns run ios). "
        "Returns once the process has started; output is kept in the 'Run on iOS' channel."
    ),
    "run_android": (
        "Build and run the NativeScript app in the workspace on Android (tns run android). "
        "Returns once the process has started; output is kept in the 'Run on Android' channel."
    ),
    "show_output_channel": (
        "Show the NativeScript diagnostic channel (extension and CLI versions) "
        "together with the output of recent runs."
    ),
}

EMPTY_SCHEMA: dict[str, Any] = {"type": "object", "properties": {}, "required": []}


def _format_notifications(notifications: list[Notification]) -> str:
    if not notifications:
        return ""
    lines = [f"  <notification severity=\"{n.severity.value}\">{html.escape(n.message)}</notification>" for n in notifications]
    return "<notifications>\n" + "\n".join(lines) + "\n</notifications>\n"


def format_response(result: CommandResult, notifications: list[Notification]) -> list[TextContent]:
    """格式化命令结果。"""
    status = "ok" if result.ok else "error"
    pid_attr = f" pid=\"{result.pid}\"" if result.pid is not None else ""
    text = (
        _format_notifications(notifications)
        + f"<response status=\"{status}\"{pid_attr}>\n{html.escape(result.message)}\n</response>"
    )
    return [TextContent(type="text", text=text)]


def format_error_response(error: str, notifications: list[Notification] | None = None) -> list[TextContent]:
    """统一的错误响应格式化函数。"""
    return format_response(CommandResult(ok=False, message=error), notifications or [])


def create_server(context: ExtensionContext, window: Window) -> Server:
    """创建 MCP Server 实例。

    Args:
        context: 已激活的扩展上下文（命令面板）
        window: 通知来源
    """
    server = Server("ns-run-mcp")

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        """列出可用工具（只包含已注册的命令）。"""
        tools = [
            Tool(
                name=tool_name,
                description=TOOL_DESCRIPTIONS[tool_name],
                inputSchema=EMPTY_SCHEMA,
            )
            for tool_name, command in TOOL_COMMANDS.items()
            if command in context.commands
        ]
        logger.debug(f"[MCP] list_tools called, returning {len(tools)} tools")
        return tools

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any] | None) -> list[TextContent]:
        """调用工具。"""
        logger.debug(f"[MCP] call_tool request: {name}")
        return await dispatch_tool(context, window, name)

    return server


async def dispatch_tool(context: ExtensionContext, window: Window, name: str) -> list[TextContent]:
    """执行工具对应的命令。

    命令内部的失败已经转换为通知；这里只兜底意外异常，不让它们影响服务器。
    """
    command = TOOL_COMMANDS.get(name)
    if command is None or command not in context.commands:
        return format_error_response(f"Unknown tool '{name}'", window.drain_notifications())

    try:
        result = await context.commands.execute(command)
    except asyncio.CancelledError:
        logger.info(f"Tool '{name}' cancelled")
        raise
    except Exception as e:
        logger.error(f"Tool '{name}' failed: type={type(e).__name__}, msg={e}")
        return format_error_response(str(e), window.drain_notifications())

    return format_response(result, window.drain_notifications())
