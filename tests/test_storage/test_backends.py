"""Tests for the MemoryStore and JsonFileStore backends."""

from __future__ import annotations

import json
import os
import stat
import threading
from pathlib import Path
from unittest.mock import patch

import pytest

from pkceauth.storage import JsonFileStore, MemoryStore, Store


@pytest.fixture(params=["memory", "file"])
def store(request: pytest.FixtureRequest, tmp_path: Path) -> Store:
    if request.param == "memory":
        return MemoryStore()
    return JsonFileStore(tmp_path / "tokens.json")


class TestStoreContract:
    def test_get_missing_is_none(self, store: Store) -> None:
        assert store.get("nope") is None

    def test_set_then_get(self, store: Store) -> None:
        store.set("k", "v")
        assert store.get("k") == "v"

    def test_overwrite(self, store: Store) -> None:
        store.set("k", "v1")
        store.set("k", "v2")
        assert store.get("k") == "v2"

    def test_remove(self, store: Store) -> None:
        store.set("k", "v")
        store.remove("k")
        assert store.get("k") is None

    def test_remove_missing_is_not_an_error(self, store: Store) -> None:
        store.remove("never-set")

    def test_clear_all(self, store: Store) -> None:
        store.set("a", "1")
        store.set("b", "2")
        store.clear_all()
        assert store.get("a") is None
        assert store.get("b") is None

    def test_concurrent_writers(self, store: Store) -> None:
        def writer(prefix: str) -> None:
            for i in range(25):
                store.set(f"{prefix}{i}", str(i))

        threads = [threading.Thread(target=writer, args=(p,)) for p in "abcd"]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        for prefix in "abcd":
            assert store.get(f"{prefix}24") == "24"


class TestMemoryStore:
    def test_initial_values(self) -> None:
        store = MemoryStore({"k": "v"})
        assert store.get("k") == "v"
        assert store.keys() == ["k"]


class TestJsonFileStore:
    def test_persists_across_instances(self, tmp_path: Path) -> None:
        path = tmp_path / "tokens.json"
        JsonFileStore(path).set("k", "v")
        assert JsonFileStore(path).get("k") == "v"

    def test_file_contents(self, tmp_path: Path) -> None:
        path = tmp_path / "tokens.json"
        store = JsonFileStore(path)
        store.set("b", "2")
        store.set("a", "1")
        assert json.loads(path.read_text()) == {"a": "1", "b": "2"}

    @pytest.mark.skipif(os.name == "nt", reason="POSIX permissions")
    def test_file_is_private(self, tmp_path: Path) -> None:
        path = tmp_path / "tokens.json"
        JsonFileStore(path).set("k", "secret")
        assert stat.S_IMODE(path.stat().st_mode) == 0o600

    def test_creates_parent_directories(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "dir" / "tokens.json"
        JsonFileStore(path).set("k", "v")
        assert path.is_file()

    def test_clear_all_deletes_file(self, tmp_path: Path) -> None:
        path = tmp_path / "tokens.json"
        store = JsonFileStore(path)
        store.set("k", "v")
        store.clear_all()
        assert not path.exists()
        assert store.get("k") is None

    def test_corrupt_file_treated_as_empty(self, tmp_path: Path) -> None:
        path = tmp_path / "tokens.json"
        path.write_text("{not json")
        store = JsonFileStore(path)
        assert store.get("k") is None

        store.set("k", "v")
        assert json.loads(path.read_text()) == {"k": "v"}

    def test_non_object_file_treated_as_empty(self, tmp_path: Path) -> None:
        path = tmp_path / "tokens.json"
        path.write_text("[1, 2, 3]")
        assert JsonFileStore(path).get("0") is None

    def test_no_temp_files_left(self, tmp_path: Path) -> None:
        path = tmp_path / "tokens.json"
        store = JsonFileStore(path)
        for i in range(5):
            store.set(str(i), "v")
        assert sorted(p.name for p in tmp_path.iterdir() if not p.name.endswith(".lock")) == ["tokens.json"]

    def test_expands_user(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("HOME", str(tmp_path))
        store = JsonFileStore("~/tokens.json")
        assert store.path == tmp_path / "tokens.json"

    def test_instances_on_one_file_keep_each_others_keys(self, tmp_path: Path) -> None:
        path = tmp_path / "tokens.json"
        first = JsonFileStore(path)
        second = JsonFileStore(path)
        assert first.get("a") is None
        assert second.get("b") is None

        first.set("a", "1")
        second.set("b", "2")
        first.remove("missing")

        assert json.loads(path.read_text()) == {"a": "1", "b": "2"}

    def test_sees_changes_made_by_another_writer(self, tmp_path: Path) -> None:
        path = tmp_path / "tokens.json"
        store = JsonFileStore(path)
        store.set("k", "old")

        path.write_text(json.dumps({"k": "new", "other": "x"}))

        assert store.get("k") == "new"
        store.set("mine", "y")
        assert json.loads(path.read_text()) == {"k": "new", "other": "x", "mine": "y"}

    def test_concurrent_instances(self, tmp_path: Path) -> None:
        path = tmp_path / "tokens.json"

        def writer(prefix: str) -> None:
            store = JsonFileStore(path)
            for i in range(10):
                store.set(f"{prefix}{i}", str(i))

        threads = [threading.Thread(target=writer, args=(p,)) for p in "abc"]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(json.loads(path.read_text())) == 30

    def test_failed_write_changes_nothing(self, tmp_path: Path) -> None:
        path = tmp_path / "tokens.json"
        store = JsonFileStore(path)
        store.set("k", "v")

        with patch("pkceauth.storage.file_store._atomic_write", side_effect=OSError("disk full")):
            with pytest.raises(OSError, match="disk full"):
                store.set("k", "changed")
            with pytest.raises(OSError):
                store.remove("k")

        assert store.get("k") == "v"
        assert json.loads(path.read_text()) == {"k": "v"}

    def test_shared_instance_per_path(self, tmp_path: Path) -> None:
        path = tmp_path / "tokens.json"
        assert JsonFileStore.shared(path) is JsonFileStore.shared(str(path))
        assert JsonFileStore.shared(path) is not JsonFileStore.shared(tmp_path / "other.json")
