"""全局状态存储。

跨会话保存的少量键值数据（例如上次检查更新的时间），
以 JSON 文件形式保存在 NSR_STATE_DIR 下。
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

__all__ = ["GlobalState"]

logger = logging.getLogger(__name__)

STATE_FILE_NAME = "global_state.json"


class GlobalState:
    """JSON 文件支持的键值存储。

    读取失败（文件不存在、内容损坏）时视为空状态；
    写入使用临时文件 + 替换，避免留下半个文件。
    """

    def __init__(self, state_dir: Path) -> None:
        self._path = Path(state_dir) / STATE_FILE_NAME
        self._data: dict[str, Any] = self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict[str, Any]:
        try:
            with open(self._path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable state file {self._path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring malformed state file {self._path}")
            return {}
        return data

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def update(self, key: str, value: Any) -> None:
        """设置键值并立即写盘。

        Raises:
            OSError: 写入失败
            TypeError: 值无法 JSON 序列化
        """
        if value is None:
            self._data.pop(key, None)
        else:
            self._data[key] = value
        self._save()

    def _save(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".state-", dir=self._path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._data, f, ensure_ascii=False, indent=2)
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
