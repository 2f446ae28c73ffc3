"""Tests for the key-value backends and the TTL cache."""

import json
from pathlib import Path

import pytest

from conftest import FakeClock
from gmail2notion.storage.backends import JsonFileStore, MemoryStore, TTLCache


class TestMemoryStore:
    def test_values_are_copies(self) -> None:
        store = MemoryStore()
        value = {"a": [1, 2]}
        store.set("k", value)
        value["a"].append(3)

        assert store.get("k") == {"a": [1, 2]}

    def test_delete_and_keys(self) -> None:
        store = MemoryStore()
        store.set("PROPERTY_MAPPINGS_a", {})
        store.set("PROPERTY_MAPPINGS_b", {})
        store.set("G2N_CONFIG", {})

        assert sorted(store.keys("PROPERTY_MAPPINGS_")) == ["PROPERTY_MAPPINGS_a", "PROPERTY_MAPPINGS_b"]
        assert store.delete("G2N_CONFIG") is True
        assert store.delete("G2N_CONFIG") is False
        assert store.get("G2N_CONFIG") is None


class TestJsonFileStore:
    def test_missing_file_reads_empty(self, tmp_path: Path) -> None:
        store = JsonFileStore(tmp_path / "nope.json")
        assert store.get("k") is None
        assert store.keys() == []

    def test_set_creates_parents_and_persists(self, tmp_path: Path) -> None:
        path = tmp_path / "users" / "store.json"
        JsonFileStore(path).set("k", {"v": 1})

        assert json.loads(path.read_text()) == {"k": {"v": 1}}
        assert JsonFileStore(path).get("k") == {"v": 1}

    def test_no_temp_files_left_behind(self, tmp_path: Path) -> None:
        store = JsonFileStore(tmp_path / "store.json")
        store.set("a", 1)
        store.set("b", 2)
        store.delete("a")

        assert [p.name for p in tmp_path.iterdir()] == ["store.json"]

    def test_non_object_file_is_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "store.json"
        path.write_text("[1, 2]")
        with pytest.raises(ValueError):
            JsonFileStore(path).get("k")


class TestTTLCache:
    def test_hit_then_expire(self) -> None:
        clock = FakeClock()
        cache = TTLCache(default_ttl=60, clock=clock)
        cache.set("k", {"v": 1})

        clock.advance(59)
        assert cache.get("k") == {"v": 1}
        clock.advance(1)
        assert cache.get("k") is None

        stats = cache.stats()
        assert stats["hits"] == 1
        assert stats["expirations"] == 1
        assert stats["size"] == 0

    def test_per_entry_ttl(self) -> None:
        clock = FakeClock()
        cache = TTLCache(default_ttl=600, clock=clock)
        cache.set("short", 1, ttl=5)
        cache.set("long", 2)

        clock.advance(10)
        assert cache.get("short") is None
        assert cache.get("long") == 2

    def test_delete_and_clear(self) -> None:
        cache = TTLCache()
        cache.set("a", 1)
        cache.set("b", 2)

        assert cache.delete("a") is True
        assert cache.get("a") is None
        cache.clear()
        assert cache.get("b") is None
