"""新版本检查服务。

启动时在后台检查 ns-run-mcp 是否有新版本：
- 结果通过 is_latest_installed（asyncio.Task）只解析一次
- result=False 时 error 中是给用户的提示（作为 warning 显示）
- 网络 / 解析失败不会打扰用户：结果视为"已是最新"，只写 debug 日志
- 最新版本号缓存在 GlobalState 中，24 小时内不重复请求网络
- 服务关闭时可以取消，结果允许被忽略
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable

import aiohttp
from pydantic import BaseModel, ConfigDict

from . import __version__
from .version_gate import parse_version

if TYPE_CHECKING:
    from .config import Config
    from .state import GlobalState

__all__ = ["ExtensionVersionService", "UpdateCheckResult"]

logger = logging.getLogger(__name__)

LAST_CHECK_KEY = "update.lastCheck"
LATEST_VERSION_KEY = "update.latestVersion"
CHECK_INTERVAL = 24 * 60 * 60
FETCH_TIMEOUT = 10.0

LatestVersionFetcher = Callable[[], Awaitable[str]]


@dataclass(frozen=True)
class UpdateCheckResult:
    """版本检查结果。"""

    result: bool
    error: str = ""


class _PackageInfo(BaseModel):
    model_config = ConfigDict(extra="ignore")

    version: str


class PackageIndexResponse(BaseModel):
    """PyPI JSON API 响应中我们关心的部分。"""

    model_config = ConfigDict(extra="ignore")

    info: _PackageInfo


class ExtensionVersionService:
    """新版本检查服务。

    Example:
        ```python
        service = ExtensionVersionService(config, global_state)
        service.start().add_done_callback(on_result)
        ...
        await service.aclose()
        ```
    """

    def __init__(
        self,
        config: "Config",
        global_state: "GlobalState | None" = None,
        fetch_latest: LatestVersionFetcher | None = None,
        current_version: str = __version__,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """初始化。

        Args:
            config: 配置（update_check, update_url）
            global_state: 缓存检查结果（可选）
            fetch_latest: 获取最新版本号的协程函数（默认请求 update_url）
            current_version: 当前安装的版本
            clock: 时间来源（测试用）
        """
        self._enabled = config.update_check
        self._url = config.update_url
        self._global_state = global_state
        self._fetch_latest = fetch_latest or self._fetch_from_index
        self._current_version = current_version
        self._clock = clock
        self._task: asyncio.Task[UpdateCheckResult] | None = None

    @property
    def is_latest_installed(self) -> asyncio.Task[UpdateCheckResult]:
        """检查任务（首次访问时启动）。"""
        return self.start()

    def start(self) -> asyncio.Task[UpdateCheckResult]:
        """启动后台检查（幂等）。"""
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(
                self._check(), name="update-check"
            )
        return self._task

    async def _check(self) -> UpdateCheckResult:
        if not self._enabled:
            return UpdateCheckResult(result=True)

        try:
            latest = await self._latest_version()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.debug(f"Update check failed: {e}")
            return UpdateCheckResult(result=True)

        latest_v = parse_version(latest)
        current_v = parse_version(self._current_version)
        if latest_v is None or current_v is None:
            logger.debug(f"Update check: cannot compare {latest!r} with {self._current_version!r}")
            return UpdateCheckResult(result=True)

        if latest_v.precedence_key() > current_v.precedence_key():
            return UpdateCheckResult(
                result=False,
                error=(
                    f"A new version of ns-run-mcp is available (v{latest_v}, "
                    f"installed v{current_v}). Run 'pip install -U ns-run-mcp' to update."
                ),
            )
        return UpdateCheckResult(result=True)

    async def _latest_version(self) -> str:
        """返回最新版本号，24 小时内使用缓存。"""
        now = self._clock()
        state = self._global_state
        if state is not None:
            last_check = state.get(LAST_CHECK_KEY)
            cached = state.get(LATEST_VERSION_KEY)
            if cached and isinstance(last_check, (int, float)) and now - last_check < CHECK_INTERVAL:
                logger.debug(f"Update check: using cached latest version {cached}")
                return cached

        latest = await self._fetch_latest()
        if state is not None:
            try:
                state.update(LATEST_VERSION_KEY, latest)
                state.update(LAST_CHECK_KEY, now)
            except Exception as e:
                logger.debug(f"Could not cache update check result: {e}")
        return latest

    async def _fetch_from_index(self) -> str:
        timeout = aiohttp.ClientTimeout(total=FETCH_TIMEOUT)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(self._url) as response:
                response.raise_for_status()
                payload = await response.json(content_type=None)
        return PackageIndexResponse.model_validate(payload).info.version

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def aclose(self) -> None:
        """取消未完成的检查。"""
        self.cancel()
        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                pass
