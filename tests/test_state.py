"""GlobalState 测试。"""

from __future__ import annotations

from pathlib import Path

from ns_run_mcp.state import STATE_FILE_NAME, GlobalState


class TestGlobalState:
    def test_missing_file_is_empty(self, tmp_path: Path):
        state = GlobalState(tmp_path / "state")
        assert state.get("anything") is None
        assert state.get("anything", 1) == 1
        assert state.get("k") is None

    def test_update_persists(self, tmp_path: Path):
        state = GlobalState(tmp_path / "state")
        state.update("update.latestVersion", "0.2.0")
        state.update("update.lastCheck", 123.5)

        reloaded = GlobalState(tmp_path / "state")
        assert reloaded.get("update.latestVersion") == "0.2.0"
        assert reloaded.get("update.lastCheck") == 123.5

    def test_update_none_removes_key(self, tmp_path: Path):
        state = GlobalState(tmp_path)
        state.update("k", "v")
        state.update("k", None)
        assert GlobalState(tmp_path).get("k") is None

    def test_corrupted_file_is_ignored(self, tmp_path: Path):
        (tmp_path / STATE_FILE_NAME).write_text("{not json", encoding="utf-8")
        state = GlobalState(tmp_path)
        assert state.get("k") is None

        state.update("k", "v")
        assert GlobalState(tmp_path).get("k") == "v"

    def test_non_object_file_is_ignored(self, tmp_path: Path):
        (tmp_path / STATE_FILE_NAME).write_text("[1, 2]", encoding="utf-8")
        assert GlobalState(tmp_path).get("k") is None

    def test_no_temp_files_left(self, tmp_path: Path):
        state = GlobalState(tmp_path)
        state.update("a", 1)
        state.update("b", 2)
        assert sorted(p.name for p in tmp_path.iterdir()) == [STATE_FILE_NAME]
