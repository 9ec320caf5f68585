"""订阅（可释放资源）管理模块。

提供宿主侧的资源登记与统一释放，包括：
- Disposable: 可释放对象协议
- DisposalToken: 一次性释放令牌（幂等）
- Subscriptions: 宿主的订阅列表，停用时统一释放

宿主发起的释放（服务器关闭）与进程自身退出可能同时发生，
因此 DisposalToken.dispose() 必须可以安全地调用任意次。
"""

from __future__ import annotations

import logging
from typing import Callable, Protocol, runtime_checkable

__all__ = ["Disposable", "DisposalToken", "Subscriptions"]

logger = logging.getLogger(__name__)


@runtime_checkable
class Disposable(Protocol):
    """可释放对象。"""

    def dispose(self) -> None:
        ...


class DisposalToken:
    """一次性释放令牌。

    构造时登记释放回调，第一次 dispose() 调用回调，之后的调用均为空操作。

    Example:
        ```python
        token = DisposalToken(lambda: handle.request_termination(), label="run-ios")
        subscriptions.push(token)

        token.dispose()  # 调用回调
        token.dispose()  # 空操作
        ```
    """

    def __init__(self, release: Callable[[], None], label: str = "") -> None:
        """初始化令牌。

        Args:
            release: 释放回调
            label: 日志用标签
        """
        self._release: Callable[[], None] | None = release
        self.label = label

    @property
    def is_disposed(self) -> bool:
        """是否已释放。"""
        return self._release is None

    def dispose(self) -> None:
        """释放资源（幂等）。"""
        release, self._release = self._release, None
        if release is None:
            return
        logger.debug(f"Disposing token: {self.label or id(self)}")
        release()

    def __repr__(self) -> str:
        status = "disposed" if self.is_disposed else "live"
        return f"DisposalToken({self.label or hex(id(self))}, {status})"


class Subscriptions:
    """宿主的订阅列表。

    管理所有需要在停用时释放的对象：
    - 命令注册
    - 运行中进程的释放令牌

    线程安全：所有操作都是同步的，由调用方保证在同一个事件循环中调用。
    """

    def __init__(self) -> None:
        """初始化订阅列表。"""
        self._items: list[Disposable] = []
        self._disposed = False

    @property
    def is_disposed(self) -> bool:
        """是否已经整体释放。"""
        return self._disposed

    def push(self, *items: Disposable) -> None:
        """登记可释放对象。

        整体释放之后再登记的对象会被立即释放，避免泄漏。
        """
        for item in items:
            if self._disposed:
                logger.debug(f"Subscriptions already disposed, disposing {item!r} immediately")
                self._dispose_one(item)
                continue
            self._items.append(item)

    def discard(self, item: Disposable) -> bool:
        """移除对象（不释放）。

        Returns:
            对象是否存在
        """
        try:
            self._items.remove(item)
        except ValueError:
            return False
        return True

    def dispose_all(self) -> int:
        """按登记的逆序释放全部对象。

        单个对象释放失败不影响其余对象。

        Returns:
            释放的对象数量
        """
        self._disposed = True
        items, self._items = self._items, []
        for item in reversed(items):
            self._dispose_one(item)
        if items:
            logger.info(f"Disposed {len(items)} subscription(s)")
        return len(items)

    @staticmethod
    def _dispose_one(item: Disposable) -> None:
        try:
            item.dispose()
        except Exception as e:
            logger.warning(f"Error disposing {item!r}: {e}")

    def __len__(self) -> int:
        """返回登记的对象数量。"""
        return len(self._items)

    def __contains__(self, item: object) -> bool:
        """检查对象是否已登记。"""
        return item in self._items
