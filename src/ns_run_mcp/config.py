"""NSR 环境变量配置管理。

环境变量:
    NSR_TNS_PATH: NativeScript CLI 可执行文件路径
        - 未设置时使用 PATH 中的 "tns"

    NSR_WORKSPACE: 工作区根目录
        - 未设置 = 没有打开工作区（所有 run 命令将被拒绝）

    NSR_CLI_MIN_VERSION / NSR_CLI_MAX_VERSION: 兼容的 CLI 版本范围（闭区间）
        - 默认 2.0.0 - 2.5.99，无法识别的版本号回退到默认值

    NSR_ANALYTICS: 是否发送使用统计
        - true/1/yes = 开启
        - false/0/no = 关闭 (默认)

    NSR_ANALYTICS_URL: 统计事件的上报地址（为空时只写日志）

    NSR_UPDATE_CHECK: 启动时是否检查新版本
        - true/1/yes = 检查 (默认)
        - false/0/no = 不检查

    NSR_UPDATE_URL: 版本检查地址（PyPI JSON API 格式）

    NSR_STATE_DIR: 全局状态文件目录
        - 默认 ~/.ns-run-mcp

    NSR_TERM_TIMEOUT: SIGTERM 之后等待多久再发送 SIGKILL（秒）
        - 默认 2.0 秒，限制在 0.1-30 秒

    NSR_LOG_DEBUG: 日志调试模式
        - true/1/yes = 开启 (日志输出到临时文件)
        - false/0/no = 关闭 (默认，日志输出到 stderr)

    NSR_SIGINT_DOUBLE_TAP_WINDOW: 双击退出窗口时间（秒）
        - 默认 1.0 秒
        - 在此时间窗口内第二次 Ctrl+C 将强制退出
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from .version_gate import DEFAULT_MAX_CLI_VERSION, DEFAULT_MIN_CLI_VERSION, parse_version

__all__ = ["Config", "load_config", "get_config", "reload_config"]

logger = logging.getLogger(__name__)

DEFAULT_TNS_PATH = "tns"
DEFAULT_UPDATE_URL = "https://pypi.org/pypi/ns-run-mcp/json"
DEFAULT_TERM_TIMEOUT = 2.0


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """解析布尔值环境变量。"""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_path(value: str | None) -> Path | None:
    """解析路径环境变量，空值返回 None。"""
    if not value or not value.strip():
        return None
    return Path(value.strip()).expanduser()


def _parse_float(value: str | None, default: float, low: float, high: float) -> float:
    """解析浮点数环境变量，并限制在 [low, high] 范围内。"""
    if not value:
        return default
    try:
        number = float(value)
    except ValueError:
        return default
    return max(low, min(number, high))


def _parse_version_bound(name: str, default: str) -> str:
    """解析版本范围环境变量，无法识别的版本回退到默认值。"""
    value = (os.environ.get(name) or "").strip()
    if not value:
        return default
    if parse_version(value) is None:
        logger.warning(f"Ignoring invalid {name}={value!r}, using {default}")
        return default
    return value


@dataclass
class Config:
    """NSR 配置。

    Attributes:
        tns_path: CLI 可执行文件路径
        workspace_root: 工作区根目录（None 表示没有打开工作区）
        cli_min_version: 兼容的最低 CLI 版本
        cli_max_version: 已知兼容的最高 CLI 版本
        analytics_enabled: 是否发送使用统计
        analytics_url: 统计上报地址
        update_check: 启动时是否检查新版本
        update_url: 版本检查地址
        state_dir: 全局状态目录
        term_timeout: SIGTERM -> SIGKILL 的等待时间（秒）
        log_debug: 日志调试模式（输出到临时文件）
        log_file: 日志文件路径（当 log_debug=True 时自动设置）
        sigint_double_tap_window: 双击退出窗口时间（秒）
    """

    tns_path: str = DEFAULT_TNS_PATH
    workspace_root: Path | None = None
    cli_min_version: str = DEFAULT_MIN_CLI_VERSION
    cli_max_version: str = DEFAULT_MAX_CLI_VERSION
    analytics_enabled: bool = False
    analytics_url: str | None = None
    update_check: bool = True
    update_url: str = DEFAULT_UPDATE_URL
    state_dir: Path = Path.home() / ".ns-run-mcp"
    term_timeout: float = DEFAULT_TERM_TIMEOUT
    log_debug: bool = False
    log_file: str | None = None
    sigint_double_tap_window: float = 1.0

    @property
    def has_workspace(self) -> bool:
        """是否打开了工作区。"""
        return self.workspace_root is not None

    def __repr__(self) -> str:
        return (
            f"Config(tns_path={self.tns_path}, "
            f"workspace_root={self.workspace_root}, "
            f"cli_versions={self.cli_min_version}..{self.cli_max_version}, "
            f"analytics_enabled={self.analytics_enabled}, "
            f"update_check={self.update_check}, "
            f"state_dir={self.state_dir}, "
            f"term_timeout={self.term_timeout}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file}, "
            f"sigint_double_tap_window={self.sigint_double_tap_window})"
        )


def _generate_log_file_path() -> str:
    """生成日志文件路径。

    Returns:
        临时目录下的日志文件绝对路径
    """
    log_dir = Path(tempfile.gettempdir()) / "ns-run-mcp"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"nsr_debug_{timestamp}.log"

    return str(log_file.resolve())


def load_config() -> Config:
    """从环境变量加载配置。"""
    log_debug = _parse_bool(os.environ.get("NSR_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    tns_path = (os.environ.get("NSR_TNS_PATH") or "").strip() or DEFAULT_TNS_PATH

    return Config(
        tns_path=tns_path,
        workspace_root=_parse_path(os.environ.get("NSR_WORKSPACE")),
        cli_min_version=_parse_version_bound("NSR_CLI_MIN_VERSION", DEFAULT_MIN_CLI_VERSION),
        cli_max_version=_parse_version_bound("NSR_CLI_MAX_VERSION", DEFAULT_MAX_CLI_VERSION),
        analytics_enabled=_parse_bool(os.environ.get("NSR_ANALYTICS"), default=False),
        analytics_url=(os.environ.get("NSR_ANALYTICS_URL") or "").strip() or None,
        update_check=_parse_bool(os.environ.get("NSR_UPDATE_CHECK"), default=True),
        update_url=(os.environ.get("NSR_UPDATE_URL") or "").strip() or DEFAULT_UPDATE_URL,
        state_dir=_parse_path(os.environ.get("NSR_STATE_DIR")) or Path.home() / ".ns-run-mcp",
        term_timeout=_parse_float(
            os.environ.get("NSR_TERM_TIMEOUT"), DEFAULT_TERM_TIMEOUT, 0.1, 30.0
        ),
        log_debug=log_debug,
        log_file=log_file,
        sigint_double_tap_window=_parse_float(
            os.environ.get("NSR_SIGINT_DOUBLE_TAP_WINDOW"), 1.0, 0.1, 10.0
        ),
    )


# 全局配置实例（延迟加载）
_config: Config | None = None


def get_config() -> Config:
    """获取全局配置实例。"""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """重新加载配置（用于测试）。"""
    global _config
    _config = load_config()
    return _config
