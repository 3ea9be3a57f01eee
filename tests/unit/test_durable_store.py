"""Tests unitaires pour services/durable_store.py - codec sans perte et stores à quota."""
import json

import pytest

from services.durable_store import (
    JsonFileKeyValueStore,
    MemoryKeyValueStore,
    dumps,
    loads,
)
from shared.exceptions import StoreFullError


class TestCodec:
    def test_big_int_and_ordered_map_survive(self):
        value = {
            "data": {"b": 10 ** 30 + 7, 3: "three", "a": [1, 2.5, True, None]},
            "fetched_at": 1_700_000_000.25,
        }
        restored = loads(dumps(value))
        assert restored == value
        inner = restored["data"]
        assert list(inner.keys()) == ["b", 3, "a"]
        assert isinstance(inner["b"], int)
        assert inner["b"] == 10 ** 30 + 7
        assert inner["a"][2] is True

    def test_ints_are_tagged_not_numbers(self):
        encoded = json.loads(dumps(2 ** 200))
        assert encoded == {"__int__": str(2 ** 200)}

    def test_bool_stays_bool(self):
        assert loads(dumps([True, False])) == [True, False]

    def test_tuple_keys_and_values(self):
        restored = loads(dumps({(1, "x"): (2, 3)}))
        assert restored == {(1, "x"): [2, 3]}

    def test_unsupported_type(self):
        with pytest.raises(TypeError):
            dumps({"x": object()})


class TestMemoryStore:
    @pytest.mark.asyncio
    async def test_get_set_remove(self):
        store = MemoryKeyValueStore()
        await store.set("k", "v")
        assert await store.get("k") == "v"
        assert await store.keys() == ["k"]
        await store.remove("k")
        assert await store.get("k") is None
        await store.remove("missing")

    @pytest.mark.asyncio
    async def test_quota(self):
        store = MemoryKeyValueStore(max_bytes=20)
        await store.set("a", "x" * 10)
        with pytest.raises(StoreFullError):
            await store.set("b", "y" * 10)
        assert await store.get("b") is None
        # overwriting the same key only counts the new value
        await store.set("a", "z" * 15)
        assert store.used_bytes == 16


class TestJsonFileStore:
    @pytest.mark.asyncio
    async def test_persists_across_instances(self, tmp_path):
        path = tmp_path / "nested" / "cache.json"
        store = JsonFileKeyValueStore(path)
        await store.set("cache:a", dumps({"n": 10 ** 25}))
        assert path.exists()

        reopened = JsonFileKeyValueStore(path)
        assert loads(await reopened.get("cache:a")) == {"n": 10 ** 25}
        await reopened.remove("cache:a")
        assert await JsonFileKeyValueStore(path).keys() == []

    @pytest.mark.asyncio
    async def test_corrupt_file_starts_empty(self, tmp_path):
        path = tmp_path / "cache.json"
        path.write_text("{not json", encoding="utf-8")
        store = JsonFileKeyValueStore(path)
        assert await store.keys() == []
        await store.set("k", "v")
        assert json.loads(path.read_text(encoding="utf-8")) == {"k": "v"}

    @pytest.mark.asyncio
    async def test_quota_applies(self, tmp_path):
        store = JsonFileKeyValueStore(tmp_path / "cache.json", max_bytes=10)
        with pytest.raises(StoreFullError):
            await store.set("key", "x" * 20)
        assert not list(tmp_path.glob("*.tmp"))
