"""Local, per-browsing-context storage.

``LocalStorage`` is a synchronous string map playing the part of the
browser's localStorage: it holds the cached session and the fallback copies
of remote documents. With a ``state_dir`` it is persisted to a JSON file so a
"page refresh" (a new process) sees the same values.

``LocalKeyValueStore`` layers the async key-value command interface on top of
a ``LocalStorage`` and backs the ``memory`` store backend.
"""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Dict, List, Optional

from travelbook_auth.logging import get_logger
from travelbook_auth.storage.errors import MalformedRecord
from travelbook_auth.storage.kv import decode_json

logger = get_logger(__name__)


class LocalStorage:
    """Thread-safe string map with optional JSON file persistence."""

    def __init__(self, state_dir: Optional[str] = None) -> None:
        self._items: Dict[str, str] = {}
        self._lock = threading.RLock()
        self.state_dir = Path(state_dir) if state_dir else None
        if self.state_dir is not None:
            self._load_state()

    def _state_path(self) -> Path:
        if self.state_dir is None:
            raise RuntimeError("local storage has no state_dir")
        state_dir = self.state_dir / "state"
        state_dir.mkdir(parents=True, exist_ok=True)
        return state_dir / "local_storage.json"

    def _persist_state(self) -> None:
        if self.state_dir is None:
            return
        path = self._state_path()
        try:
            path.write_text(json.dumps(self._items, indent=2, sort_keys=True))
        except OSError as exc:
            raise RuntimeError(f"failed to persist local storage: {exc}") from exc

    def _load_state(self) -> bool:
        path = self._state_path()
        try:
            data = json.loads(path.read_text())
        except FileNotFoundError:
            return False
        except json.JSONDecodeError as exc:
            logger.warning("local_storage_corrupt", path=str(path), error=str(exc))
            return False
        if not isinstance(data, dict):
            logger.warning("local_storage_corrupt", path=str(path), error="not an object")
            return False
        self._items = {str(k): v for k, v in data.items() if isinstance(v, str)}
        return True

    def get_item(self, key: str) -> Optional[str]:
        with self._lock:
            return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            self._items[key] = value
            self._persist_state()

    def remove_item(self, key: str) -> None:
        with self._lock:
            if self._items.pop(key, None) is not None:
                self._persist_state()

    def keys(self) -> List[str]:
        with self._lock:
            return sorted(self._items)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()
            self._persist_state()


class LocalKeyValueStore:
    """Key-value store kept entirely in a ``LocalStorage``.

    Hashes are stored as JSON objects and sets as sorted JSON lists.
    """

    def __init__(self, local: Optional[LocalStorage] = None, *, prefix: str = "") -> None:
        self.local = local or LocalStorage()
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def _read_hash(self, key: str) -> Dict[str, str]:
        raw = self.local.get_item(self._key(key))
        if raw is None:
            return {}
        data = decode_json(raw, key=key)
        if not isinstance(data, dict):
            raise MalformedRecord("value is not a hash", {"key": key})
        return data

    def _read_set(self, key: str) -> List[str]:
        raw = self.local.get_item(self._key(key))
        if raw is None:
            return []
        data = decode_json(raw, key=key)
        if not isinstance(data, list):
            raise MalformedRecord("value is not a set", {"key": key})
        return data

    def _write(self, key: str, value) -> None:
        if value:
            self.local.set_item(self._key(key), json.dumps(value, sort_keys=True))
        else:
            self.local.remove_item(self._key(key))

    async def get(self, key: str) -> Optional[str]:
        return self.local.get_item(self._key(key))

    async def set(self, key: str, value: str) -> None:
        self.local.set_item(self._key(key), value)

    async def delete(self, key: str) -> int:
        existed = self.local.get_item(self._key(key)) is not None
        self.local.remove_item(self._key(key))
        return int(existed)

    async def hset(self, key: str, field: str, value: str) -> int:
        data = self._read_hash(key)
        added = int(field not in data)
        data[field] = value
        self._write(key, data)
        return added

    async def hget(self, key: str, field: str) -> Optional[str]:
        return self._read_hash(key).get(field)

    async def hgetall(self, key: str) -> Dict[str, str]:
        return dict(self._read_hash(key))

    async def hdel(self, key: str, field: str) -> int:
        data = self._read_hash(key)
        if field not in data:
            return 0
        del data[field]
        self._write(key, data)
        return 1

    async def sadd(self, key: str, member: str) -> int:
        members = self._read_set(key)
        if member in members:
            return 0
        self._write(key, sorted([*members, member]))
        return 1

    async def smembers(self, key: str) -> List[str]:
        return sorted(self._read_set(key))

    async def srem(self, key: str, member: str) -> int:
        members = self._read_set(key)
        if member not in members:
            return 0
        self._write(key, [m for m in members if m != member])
        return 1

    async def close(self) -> None:
        return None
