"""Server 模块测试。

测试 MCP 工具到扩展命令的分发与响应格式。
"""

from __future__ import annotations

import asyncio

import pytest
from mcp.server import Server
from mcp.types import ListToolsRequest

from ns_run_mcp.commands import RUN_IOS_COMMAND, CommandResult
from ns_run_mcp.extension import ExtensionContext, activate
from ns_run_mcp.server import (
    TOOL_COMMANDS,
    create_server,
    dispatch_tool,
    format_error_response,
    format_response,
)
from ns_run_mcp.version_gate import NOT_INSTALLED_MESSAGE
from ns_run_mcp.window import Notification, Severity


class TestFormatResponse:
    """响应格式化。"""

    def test_ok_with_pid(self):
        [content] = format_response(CommandResult(ok=True, message="started", pid=123), [])
        assert content.type == "text"
        assert content.text == '<response status="ok" pid="123">\nstarted\n</response>'

    def test_error_escapes_message(self):
        [content] = format_error_response("bad <path> & more")
        assert 'status="error"' in content.text
        assert "bad &lt;path&gt; &amp; more" in content.text

    def test_notifications_prepended(self):
        notes = [Notification(Severity.WARNING, "update <available>")]
        [content] = format_response(CommandResult(ok=True, message="x"), notes)

        assert content.text.startswith("<notifications>\n")
        assert '<notification severity="warning">update &lt;available&gt;</notification>' in content.text
        assert content.text.index("</notifications>") < content.text.index("<response")


class TestDispatchTool:
    """工具分发。"""

    @pytest.mark.asyncio
    async def test_unknown_tool(self, make_services):
        services = make_services()
        context = ExtensionContext()

        [content] = await dispatch_tool(context, services.window, "run_windows_phone")

        assert 'status="error"' in content.text
        assert "Unknown tool" in content.text

    @pytest.mark.asyncio
    async def test_startup_notifications_delivered_once(self, make_services, tmp_path):
        services = make_services(tns_path=str(tmp_path / "missing-tns"))
        context = ExtensionContext()
        activate(context, services)

        [first] = await dispatch_tool(context, services.window, "show_output_channel")
        [second] = await dispatch_tool(context, services.window, "show_output_channel")

        assert NOT_INSTALLED_MESSAGE.split(",")[0] in first.text
        assert "<notifications>" in first.text
        assert "<notifications>" not in second.text
        assert 'status="ok"' in second.text
        assert "NativeScript CLI: not found" in second.text

    @pytest.mark.asyncio
    async def test_run_without_workspace(self, make_services, fake_tns):
        services = make_services(tns_path=fake_tns)
        context = ExtensionContext()
        activate(context, services)

        [content] = await dispatch_tool(context, services.window, "run_ios")

        assert 'status="error"' in content.text
        assert '<notification severity="error">No workspace opened.</notification>' in content.text
        assert services.runner.spawn_count == 0

    @pytest.mark.asyncio
    async def test_run_reports_pid(self, make_services, fake_tns, temp_workspace):
        services = make_services(tns_path=fake_tns, workspace_root=temp_workspace)
        context = ExtensionContext()
        activate(context, services)

        [content] = await dispatch_tool(context, services.window, "run_android")

        assert 'status="ok"' in content.text
        assert "pid=" in content.text
        assert "Run on Android" in content.text
        context.subscriptions.dispose_all()
        await services.runner.aclose()

    @pytest.mark.asyncio
    async def test_command_exception_becomes_error_response(self, make_services):
        services = make_services()
        context = ExtensionContext()

        def broken():
            raise RuntimeError("boom")

        context.commands.register_command(RUN_IOS_COMMAND, broken)

        [content] = await dispatch_tool(context, services.window, "run_ios")

        assert 'status="error"' in content.text
        assert "boom" in content.text

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, make_services):
        services = make_services()
        context = ExtensionContext()

        async def cancelled():
            raise asyncio.CancelledError()

        context.commands.register_command(RUN_IOS_COMMAND, cancelled)

        with pytest.raises(asyncio.CancelledError):
            await dispatch_tool(context, services.window, "run_ios")


class TestCreateServer:
    """MCP Server 构造。"""

    @pytest.mark.asyncio
    async def test_list_tools(self, make_services, fake_tns):
        services = make_services(tns_path=fake_tns)
        context = ExtensionContext()
        activate(context, services)

        server = create_server(context, services.window)
        assert isinstance(server, Server)

        handler = server.request_handlers[ListToolsRequest]
        result = await handler(ListToolsRequest(method="tools/list"))

        tools = result.root.tools
        assert sorted(t.name for t in tools) == sorted(TOOL_COMMANDS)
        for tool in tools:
            assert tool.inputSchema["properties"] == {}

    @pytest.mark.asyncio
    async def test_list_tools_before_activate(self, make_services):
        services = make_services()
        server = create_server(ExtensionContext(), services.window)

        handler = server.request_handlers[ListToolsRequest]
        result = await handler(ListToolsRequest(method="tools/list"))

        assert result.root.tools == []
