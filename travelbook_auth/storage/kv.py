"""Key-value command interface consumed by the auth core.

All values are opaque strings. Structured records are JSON-encoded by the
callers; ``decode_json`` is the shared decoding helper that turns a bad
payload into ``MalformedRecord`` instead of a ``json.JSONDecodeError``.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Protocol

from travelbook_auth.storage.errors import MalformedRecord

SUPPORTED_COMMANDS = (
    "get",
    "set",
    "del",
    "hset",
    "hget",
    "hgetall",
    "hdel",
    "sadd",
    "smembers",
    "srem",
)


class KeyValueStore(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str) -> None: ...

    async def delete(self, key: str) -> int: ...

    async def hset(self, key: str, field: str, value: str) -> int: ...

    async def hget(self, key: str, field: str) -> Optional[str]: ...

    async def hgetall(self, key: str) -> Dict[str, str]: ...

    async def hdel(self, key: str, field: str) -> int: ...

    async def sadd(self, key: str, member: str) -> int: ...

    async def smembers(self, key: str) -> List[str]: ...

    async def srem(self, key: str, member: str) -> int: ...

    async def close(self) -> None: ...


def normalize_hash(raw: Any) -> Dict[str, str]:
    """Coerce an HGETALL reply into a mapping.

    REST providers reply with a flat ``[field1, value1, field2, value2, ...]``
    list while redis-py already returns a dict. Pairs with an empty field or
    value are skipped.
    """
    if not raw:
        return {}
    if isinstance(raw, dict):
        return {str(k): v if isinstance(v, str) else json.dumps(v) for k, v in raw.items()}
    if isinstance(raw, (list, tuple)):
        result: Dict[str, str] = {}
        for i in range(0, len(raw) - 1, 2):
            field, value = raw[i], raw[i + 1]
            if not field or value is None:
                continue
            result[str(field)] = value if isinstance(value, str) else json.dumps(value)
        return result
    raise MalformedRecord("unexpected hgetall reply", {"type": type(raw).__name__})


def decode_json(raw: Any, *, key: str, field: Optional[str] = None) -> Any:
    """Decode a stored JSON string, raising MalformedRecord on failure."""
    if not isinstance(raw, (str, bytes, bytearray)):
        raise MalformedRecord("stored value is not a string", {"key": key, "field": field})
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise MalformedRecord(
            "stored value is not valid JSON", {"key": key, "field": field, "error": str(exc)}
        ) from exc


__all__ = ["KeyValueStore", "SUPPORTED_COMMANDS", "normalize_hash", "decode_json"]
