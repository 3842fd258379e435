"""
Unit Tests for Key/Value Storage
"""

import json
import os
import sys

import pytest

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "practice_exam", "src"))

from practice_exam.storage import InMemoryStore, JsonFileStore, open_store


class TestInMemoryStore:

    def test_get_set_delete(self):
        store = InMemoryStore()
        store.set("a", "1")

        assert store.get("a") == "1"
        assert "a" in store

        store.delete("a")
        store.delete("a")
        assert store.get("a") is None

    def test_json_helpers(self):
        store = InMemoryStore()
        store.set_json("k", {"x": [1, 2]})

        assert store.get_json("k") == {"x": [1, 2]}
        assert store.get_json("missing", default=[]) == []

    def test_bad_json_returns_default(self):
        store = InMemoryStore({"k": "{oops"})
        assert store.get_json("k", default="fallback") == "fallback"


class TestJsonFileStore:

    def test_values_survive_reopen(self, tmp_path):
        path = tmp_path / "state" / "store.json"
        store = JsonFileStore(str(path))
        store.set("practice_result_m1", json.dumps({"score_percent": 50}))

        reopened = JsonFileStore(str(path))

        assert reopened.get_json("practice_result_m1") == {"score_percent": 50}
        assert list(reopened.keys()) == ["practice_result_m1"]

    def test_delete_is_persisted(self, tmp_path):
        path = tmp_path / "store.json"
        store = JsonFileStore(str(path))
        store.set("a", "1")
        store.delete("a")

        assert JsonFileStore(str(path)).get("a") is None

    @pytest.mark.parametrize("content", ["{not json", "[1, 2, 3]"])
    def test_unreadable_file_starts_empty(self, tmp_path, content):
        path = tmp_path / "store.json"
        path.write_text(content, encoding="utf-8")

        store = JsonFileStore(str(path))

        assert list(store.keys()) == []
        store.set("a", "1")
        assert json.loads(path.read_text(encoding="utf-8")) == {"a": "1"}

    def test_no_temp_files_left_behind(self, tmp_path):
        store = JsonFileStore(str(tmp_path / "store.json"))
        store.set("a", "1")
        store.set("b", "2")

        assert sorted(p.name for p in tmp_path.iterdir()) == ["store.json"]


class TestOpenStore:

    def test_memory_when_no_path(self):
        assert isinstance(open_store(None), InMemoryStore)

    def test_file_when_path_given(self, tmp_path):
        assert isinstance(open_store(str(tmp_path / "s.json")), JsonFileStore)
