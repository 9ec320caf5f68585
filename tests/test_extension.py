"""扩展生命周期测试（activate / deactivate）。"""

from __future__ import annotations

import asyncio
import time
from unittest import mock

import pytest

from ns_run_mcp import __version__
from ns_run_mcp.analytics import CLIENT_ID_KEY, AnalyticsService
from ns_run_mcp.commands import RUN_ANDROID_COMMAND, RUN_IOS_COMMAND, SHOW_OUTPUT_CHANNEL_COMMAND
from ns_run_mcp.extension import INFO_CHANNEL_NAME, ExtensionContext, activate, deactivate
from ns_run_mcp.state import GlobalState
from ns_run_mcp.supervisor import RunState
from ns_run_mcp.update_check import ExtensionVersionService
from ns_run_mcp.version_gate import NOT_INSTALLED_MESSAGE
from ns_run_mcp.window import Severity

ALL_COMMANDS = sorted([RUN_IOS_COMMAND, RUN_ANDROID_COMMAND, SHOW_OUTPUT_CHANNEL_COMMAND])


async def wait_for_file(path, timeout: float = 5.0) -> None:
    deadline = time.monotonic() + timeout
    while not path.exists():
        if time.monotonic() > deadline:
            raise TimeoutError(f"{path} was not created")
        await asyncio.sleep(0.02)


class TestActivate:
    """激活流程。"""

    @pytest.mark.asyncio
    async def test_compatible_cli(self, make_services, fake_tns, temp_workspace):
        services = make_services(tns_path=fake_tns, workspace_root=temp_workspace)
        context = ExtensionContext()

        activate(context, services)

        assert services.window.notifications == []
        assert context.commands.names == ALL_COMMANDS
        assert len(context.subscriptions) == 3

        text = context.info_channel.text
        assert context.info_channel.name == INFO_CHANNEL_NAME
        assert f"Version: {__version__}" in text
        assert "NativeScript CLI: 2.5.0" in text
        assert f"NativeScript CLI path: {fake_tns}" in text
        assert f"Workspace: {temp_workspace}" in text

    @pytest.mark.asyncio
    async def test_cli_not_installed_still_registers(self, make_services, tmp_path):
        """未安装 CLI：显示错误，但命令仍然注册。"""
        services = make_services(tns_path=str(tmp_path / "missing-tns"))
        context = ExtensionContext()

        activate(context, services)

        notes = services.window.notifications
        assert [(n.severity, n.message) for n in notes] == [(Severity.ERROR, NOT_INSTALLED_MESSAGE)]
        assert context.commands.names == ALL_COMMANDS
        assert "NativeScript CLI: not found" in context.info_channel.text
        assert "Workspace: (none)" in context.info_channel.text

    @pytest.mark.asyncio
    async def test_cli_incompatible_version(self, make_services, fake_tns, monkeypatch):
        monkeypatch.setenv("FAKE_TNS_VERSION", "3.1.0")
        services = make_services(tns_path=fake_tns)
        context = ExtensionContext()

        activate(context, services)

        notes = services.window.notifications
        assert len(notes) == 1
        assert notes[0].severity is Severity.ERROR
        assert "3.1.0" in notes[0].message
        assert context.commands.names == ALL_COMMANDS

    @pytest.mark.asyncio
    async def test_invalid_version_bound_still_registers(self, make_services, fake_tns):
        services = make_services(tns_path=fake_tns, cli_min_version="latest")
        context = ExtensionContext()

        activate(context, services)

        assert services.window.notifications == []
        assert context.commands.names == ALL_COMMANDS
        assert "NativeScript CLI: 2.5.0" in context.info_channel.text

    @pytest.mark.asyncio
    async def test_update_available_warning(self, make_services, make_config, fake_tns):
        services = make_services(tns_path=fake_tns)
        services.version_service = ExtensionVersionService(
            make_config(update_check=True),
            fetch_latest=mock.AsyncMock(return_value="99.0.0"),
            current_version="0.1.0",
        )
        context = ExtensionContext()

        activate(context, services)
        await services.version_service.start()
        await asyncio.sleep(0)

        warnings = [n for n in services.window.notifications if n.severity is Severity.WARNING]
        assert len(warnings) == 1
        assert "99.0.0" in warnings[0].message

    @pytest.mark.asyncio
    async def test_update_check_failure_is_silent(self, make_services, make_config, fake_tns):
        services = make_services(tns_path=fake_tns)
        services.version_service = ExtensionVersionService(
            make_config(update_check=True),
            fetch_latest=mock.AsyncMock(side_effect=OSError("offline")),
        )
        context = ExtensionContext()

        activate(context, services)
        result = await services.version_service.start()
        await asyncio.sleep(0)

        assert result.result is True
        assert services.window.notifications == []

    @pytest.mark.asyncio
    async def test_analytics_initialized(self, make_services, make_config, fake_tns, tmp_path):
        services = make_services(tns_path=fake_tns)
        state = GlobalState(tmp_path / "state")
        services.analytics = AnalyticsService(make_config(analytics_enabled=True), state)
        context = ExtensionContext()

        activate(context, services)

        assert state.get(CLIENT_ID_KEY)


class TestDeactivate:
    """停用流程。"""

    @pytest.mark.asyncio
    async def test_deactivate_terminates_runs(self, make_services, fake_tns, temp_workspace, tmp_path, monkeypatch):
        ready = tmp_path / "ready"
        monkeypatch.setenv("FAKE_TNS_DURATION", "30")
        monkeypatch.setenv("FAKE_TNS_READY_FILE", str(ready))
        services = make_services(tns_path=fake_tns, workspace_root=temp_workspace)
        context = ExtensionContext()
        activate(context, services)

        result = await context.commands.execute(RUN_ANDROID_COMMAND)
        assert result.ok
        await wait_for_file(ready)

        await asyncio.wait_for(deactivate(context, services), timeout=10)

        supervisor = result.supervisor
        assert supervisor.state is RunState.DISPOSED
        assert supervisor.handle.returncode is not None
        assert context.commands.names == []
        assert len(context.subscriptions) == 0
        await asyncio.wait_for(supervisor.wait_closed(), timeout=5)

    @pytest.mark.asyncio
    async def test_deactivate_cancels_update_check(self, make_services, make_config, fake_tns):
        async def never_returns() -> str:
            await asyncio.Event().wait()
            return "0.0.0"

        services = make_services(tns_path=fake_tns)
        services.version_service = ExtensionVersionService(
            make_config(update_check=True), fetch_latest=never_returns
        )
        context = ExtensionContext()
        activate(context, services)
        await asyncio.sleep(0)

        await asyncio.wait_for(deactivate(context, services), timeout=5)

        assert services.version_service.start().cancelled()
        assert services.window.notifications == []

    @pytest.mark.asyncio
    async def test_deactivate_without_runs(self, make_services, fake_tns):
        services = make_services(tns_path=fake_tns)
        context = ExtensionContext()
        activate(context, services)

        await deactivate(context, services)

        assert context.subscriptions.is_disposed
