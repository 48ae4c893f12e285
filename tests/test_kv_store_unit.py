"""Unit tests for the key-value command layer and local storage."""

import json

import pytest

from travelbook_auth.storage.errors import MalformedRecord
from travelbook_auth.storage.kv import decode_json, normalize_hash
from travelbook_auth.storage.local import LocalKeyValueStore, LocalStorage


class TestNormalizeHash:
    """Tests for HGETALL reply normalisation."""

    def test_flat_list_becomes_mapping(self):
        assert normalize_hash(["a", "1", "b", "2"]) == {"a": "1", "b": "2"}

    def test_mapping_passes_through(self):
        assert normalize_hash({"a": "1"}) == {"a": "1"}

    def test_empty_and_null_pairs_skipped(self):
        assert normalize_hash(["", "x", "b", None, "c", "3"]) == {"c": "3"}

    def test_empty_reply(self):
        assert normalize_hash(None) == {}
        assert normalize_hash([]) == {}

    def test_unexpected_shape_is_malformed(self):
        with pytest.raises(MalformedRecord):
            normalize_hash("not-a-hash")


class TestDecodeJson:
    def test_valid_json(self):
        assert decode_json('{"a": 1}', key="k") == {"a": 1}

    def test_invalid_json_raises_malformed(self):
        with pytest.raises(MalformedRecord) as excinfo:
            decode_json("{oops", key="k", field="f")
        assert excinfo.value.detail["field"] == "f"

    def test_non_string_raises_malformed(self):
        with pytest.raises(MalformedRecord):
            decode_json(42, key="k")


class TestLocalKeyValueStore:
    """Tests for the in-process key-value backend."""

    async def test_string_commands(self):
        store = LocalKeyValueStore()

        assert await store.get("k") is None
        await store.set("k", "v")
        assert await store.get("k") == "v"
        assert await store.delete("k") == 1
        assert await store.delete("k") == 0
        assert await store.get("k") is None

    async def test_hash_commands(self):
        store = LocalKeyValueStore()

        assert await store.hset("h", "a", "1") == 1
        assert await store.hset("h", "a", "2") == 0
        await store.hset("h", "b", "3")

        assert await store.hget("h", "a") == "2"
        assert await store.hgetall("h") == {"a": "2", "b": "3"}
        assert await store.hdel("h", "a") == 1
        assert await store.hdel("h", "a") == 0
        assert await store.hgetall("h") == {"b": "3"}

    async def test_set_commands(self):
        store = LocalKeyValueStore()

        assert await store.sadd("s", "b") == 1
        assert await store.sadd("s", "a") == 1
        assert await store.sadd("s", "a") == 0
        assert await store.smembers("s") == ["a", "b"]
        assert await store.srem("s", "a") == 1
        assert await store.srem("s", "a") == 0
        assert await store.smembers("s") == ["b"]

    async def test_hash_read_of_string_value_is_malformed(self):
        store = LocalKeyValueStore()
        await store.set("h", "plain")

        with pytest.raises(MalformedRecord):
            await store.hgetall("h")

    async def test_prefix_namespaces_keys(self):
        local = LocalStorage()
        store = LocalKeyValueStore(local, prefix="kv:")

        await store.set("k", "v")

        assert local.get_item("kv:k") == "v"
        assert local.get_item("k") is None


class TestLocalStoragePersistence:
    """Tests for the file-backed local storage."""

    def test_values_survive_reload(self, tmp_path):
        first = LocalStorage(str(tmp_path))
        first.set_item("session", json.dumps({"id": "s1"}))

        second = LocalStorage(str(tmp_path))

        assert json.loads(second.get_item("session")) == {"id": "s1"}
        assert (tmp_path / "state" / "local_storage.json").exists()

    def test_remove_and_clear(self, tmp_path):
        storage = LocalStorage(str(tmp_path))
        storage.set_item("a", "1")
        storage.set_item("b", "2")

        storage.remove_item("a")
        assert storage.keys() == ["b"]

        storage.clear()
        assert LocalStorage(str(tmp_path)).keys() == []

    def test_corrupt_state_file_starts_empty(self, tmp_path):
        state = tmp_path / "state"
        state.mkdir()
        (state / "local_storage.json").write_text("{not json")

        assert LocalStorage(str(tmp_path)).keys() == []
