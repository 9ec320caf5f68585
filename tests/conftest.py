"""Pytest 配置和 fixtures。"""

from __future__ import annotations

import os
import stat
import sys
from pathlib import Path

import pytest

# 项目根目录
PROJECT_ROOT = Path(__file__).parent.parent

# 添加 src 目录到 Python 路径
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

FIXTURES_DIR = PROJECT_ROOT / "tests" / "fixtures"
FAKE_TNS_PATH = FIXTURES_DIR / "fake_tns.py"

IS_WINDOWS = sys.platform == "win32"

from ns_run_mcp.cli import NativeScriptCli  # noqa: E402
from ns_run_mcp.config import Config  # noqa: E402
from ns_run_mcp.context import ServiceContext  # noqa: E402
from ns_run_mcp.runtime import ProcessRunner  # noqa: E402
from ns_run_mcp.window import Window  # noqa: E402


@pytest.fixture(autouse=True)
def _clean_fake_tns_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """每个测试开始时清除 fake tns 与 NSR_* 环境变量。"""
    for key in list(os.environ):
        if key.startswith("FAKE_TNS_") or key.startswith("NSR_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def temp_workspace(tmp_path: Path) -> Path:
    """临时工作区（NativeScript 项目目录）。"""
    workspace = tmp_path / "proj"
    workspace.mkdir()
    return workspace


@pytest.fixture
def fake_tns(tmp_path: Path) -> str:
    """可执行的 fake tns（shell 包装脚本，exec 保持同一个 pid）。"""
    if IS_WINDOWS:
        pytest.skip("fake tns wrapper requires a POSIX shell")
    wrapper = tmp_path / "bin" / "tns"
    wrapper.parent.mkdir()
    wrapper.write_text(f"#!/bin/sh\nexec '{sys.executable}' '{FAKE_TNS_PATH}' \"$@\"\n")
    wrapper.chmod(wrapper.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(wrapper)


@pytest.fixture
def make_config(tmp_path: Path):
    """按需构造 Config（不读取环境变量）。"""

    def factory(**overrides) -> Config:
        values = {
            "state_dir": tmp_path / "state",
            "update_check": False,
            "term_timeout": 0.5,
        }
        values.update(overrides)
        return Config(**values)

    return factory


@pytest.fixture
def make_services(make_config):
    """构造测试用 ServiceContext（不含统计与更新检查）。"""

    def factory(tns_path: str = "tns", workspace_root: Path | None = None, **overrides) -> ServiceContext:
        config = make_config(tns_path=tns_path, workspace_root=workspace_root, **overrides)
        return ServiceContext(
            config=config,
            cli=NativeScriptCli(
                path=tns_path,
                min_version=config.cli_min_version,
                max_version=config.cli_max_version,
            ),
            runner=ProcessRunner(term_timeout=0.5, kill_timeout=0.5),
            window=Window(),
        )

    return factory
