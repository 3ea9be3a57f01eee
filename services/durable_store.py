"""
Durable key/value store - miroir persistant du cache.

Values are text produced by the lossless codec below: integers of any size
and ordered maps with non-string keys survive a round trip exactly.
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiofiles

from shared.exceptions import StoreFullError

logger = logging.getLogger(__name__)

INT_TAG = "__int__"
MAP_TAG = "__map__"


# ---------------- Codec ----------------

def _encode(value: Any) -> Any:
    # bool is a subclass of int and must stay a JSON boolean
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, int):
        return {INT_TAG: str(value)}
    if isinstance(value, (float, str)):
        return value
    if isinstance(value, dict):
        return {MAP_TAG: [[_encode(k), _encode(v)] for k, v in value.items()]}
    if isinstance(value, (list, tuple)):
        return [_encode(item) for item in value]
    raise TypeError(f"Type non sérialisable: {type(value).__name__}")


def _decode(value: Any) -> Any:
    if isinstance(value, list):
        return [_decode(item) for item in value]
    if isinstance(value, dict):
        if INT_TAG in value:
            return int(value[INT_TAG])
        if MAP_TAG in value:
            return {_hashable(_decode(k)): _decode(v) for k, v in value[MAP_TAG]}
        return {k: _decode(v) for k, v in value.items()}
    return value


def _hashable(key: Any) -> Any:
    if isinstance(key, list):
        return tuple(_hashable(k) for k in key)
    return key


def dumps(value: Any) -> str:
    """Encoder une valeur en texte JSON sans perte (tuples -> listes)."""
    return json.dumps(_encode(value), ensure_ascii=False, separators=(",", ":"))


def loads(text: str) -> Any:
    return _decode(json.loads(text))


# ---------------- Stores ----------------

class KeyValueStore:
    """Async string key/value store with a byte quota."""

    async def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    async def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    async def remove(self, key: str) -> None:
        raise NotImplementedError

    async def keys(self) -> List[str]:
        raise NotImplementedError


def _entry_size(key: str, value: str) -> int:
    return len(key.encode("utf-8")) + len(value.encode("utf-8"))


class MemoryKeyValueStore(KeyValueStore):
    """In-process store, used by tests and when persistence is disabled."""

    def __init__(self, max_bytes: Optional[int] = None):
        self.max_bytes = max_bytes
        self._data: Dict[str, str] = {}

    def _check_quota(self, key: str, value: str) -> None:
        if self.max_bytes is None:
            return
        others = sum(_entry_size(k, v) for k, v in self._data.items() if k != key)
        size = others + _entry_size(key, value)
        if size > self.max_bytes:
            raise StoreFullError(key, size, self.max_bytes)

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._check_quota(key, value)
        self._data[key] = value

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    async def keys(self) -> List[str]:
        return list(self._data.keys())

    @property
    def used_bytes(self) -> int:
        return sum(_entry_size(k, v) for k, v in self._data.items())


class JsonFileKeyValueStore(MemoryKeyValueStore):
    """
    Store backed by one JSON file, loaded on first access and rewritten
    atomically (temp file + os.replace) after every mutation.
    """

    def __init__(self, path: Path, max_bytes: Optional[int] = None):
        super().__init__(max_bytes)
        self.path = Path(path)
        self._loaded = False
        self._lock = asyncio.Lock()

    async def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        self._loaded = True
        if not self.path.exists():
            return
        try:
            async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
                content = await f.read()
            data = json.loads(content) if content.strip() else {}
            if isinstance(data, dict):
                self._data = {str(k): str(v) for k, v in data.items()}
            logger.debug(f"Durable store loaded: {len(self._data)} keys from {self.path}")
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Durable store unreadable ({self.path}), starting empty: {e}")
            self._data = {}

    async def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent))
        os.close(fd)
        try:
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(json.dumps(self._data, ensure_ascii=False))
            os.replace(tmp_path, self.path)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    async def get(self, key: str) -> Optional[str]:
        await self._ensure_loaded()
        return await super().get(key)

    async def set(self, key: str, value: str) -> None:
        async with self._lock:
            await self._ensure_loaded()
            await super().set(key, value)
            await self._flush()

    async def remove(self, key: str) -> None:
        async with self._lock:
            await self._ensure_loaded()
            if key in self._data:
                await super().remove(key)
                await self._flush()

    async def keys(self) -> List[str]:
        await self._ensure_loaded()
        return await super().keys()
