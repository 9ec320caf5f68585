"""使用统计服务。

每次分发 run 命令记录一条事件。发送是"发出即忘"的：
- 不阻塞命令执行
- 任何失败（网络、序列化、状态文件）都被吞掉，只写 debug 日志

NSR_ANALYTICS=false 时完全不发送；未配置 NSR_ANALYTICS_URL 时只写日志。
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
import uuid
from typing import TYPE_CHECKING

import aiohttp
from pydantic import BaseModel, ConfigDict, Field

from . import __version__

if TYPE_CHECKING:
    from .config import Config
    from .state import GlobalState

__all__ = ["AnalyticsEvent", "AnalyticsService"]

logger = logging.getLogger(__name__)

CLIENT_ID_KEY = "analytics.clientId"
POST_TIMEOUT = 10.0


class AnalyticsEvent(BaseModel):
    """上报的统计事件。"""

    model_config = ConfigDict(extra="ignore", frozen=True)

    category: str
    action: str
    label: str = ""
    client_id: str
    extension_version: str = __version__
    timestamp: float = Field(default_factory=time.time)


class AnalyticsService:
    """统计事件发送服务。

    Example:
        ```python
        analytics = AnalyticsService(config, global_state)
        analytics.initialize()
        analytics.run_run_command("Android")  # 立即返回
        ...
        await analytics.aclose()
        ```
    """

    def __init__(self, config: "Config", global_state: "GlobalState | None" = None) -> None:
        self._enabled = config.analytics_enabled
        self._url = config.analytics_url
        self._global_state = global_state
        self._client_id: str | None = None
        self._session: aiohttp.ClientSession | None = None
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def enabled(self) -> bool:
        return self._enabled

    def initialize(self) -> None:
        """读取（或生成）匿名客户端 ID。"""
        if not self._enabled:
            logger.debug("Analytics disabled")
            return
        try:
            client_id = self._global_state.get(CLIENT_ID_KEY) if self._global_state else None
            if not client_id:
                client_id = str(uuid.uuid4())
                if self._global_state is not None:
                    self._global_state.update(CLIENT_ID_KEY, client_id)
            self._client_id = client_id
        except Exception as e:
            logger.debug(f"Analytics initialization failed: {e}")
            self._client_id = str(uuid.uuid4())
        logger.debug(f"Analytics initialized (client_id={self._client_id[:8]}...)")

    def run_run_command(self, platform: str) -> None:
        """记录一次 run 命令（发出即忘）。"""
        self.track("command", "run", platform)

    def track(self, category: str, action: str, label: str = "") -> None:
        """记录事件。不会抛出异常。"""
        if not self._enabled:
            return
        try:
            event = AnalyticsEvent(
                category=category,
                action=action,
                label=label,
                client_id=self._client_id or "anonymous",
            )
            self._send(event)
        except Exception as e:
            logger.debug(f"Analytics event dropped: {e}")

    def _send(self, event: AnalyticsEvent) -> None:
        if not self._url:
            logger.info(f"Analytics event: {event.category}/{event.action} {event.label}")
            return
        task = asyncio.get_running_loop().create_task(
            self._post(event), name=f"analytics-{event.action}"
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _get_session(self) -> aiohttp.ClientSession:
        """获取或创建 HTTP 会话。"""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=POST_TIMEOUT)
            )
        return self._session

    async def _post(self, event: AnalyticsEvent) -> None:
        try:
            session = await self._get_session()
            async with session.post(self._url, json=event.model_dump()) as response:
                if response.status >= 400:
                    logger.debug(f"Analytics endpoint returned HTTP {response.status}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.debug(f"Analytics post failed: {e}")

    async def aclose(self) -> None:
        """取消未完成的发送并关闭 HTTP 会话。"""
        for task in list(self._pending):
            task.cancel()
        for task in list(self._pending):
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await task
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None
