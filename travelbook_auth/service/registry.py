from __future__ import annotations

import json
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from travelbook_auth.logging import get_logger
from travelbook_auth.storage.errors import MalformedRecord, StoreUnavailable
from travelbook_auth.storage.kv import KeyValueStore, decode_json
from travelbook_auth.storage.local import LocalStorage
from travelbook_auth.storage.models import ActiveSessionEntry

logger = get_logger(__name__)

SESSIONS_FALLBACK_KEY = "travelbook_active_sessions_fallback"

Registry = Dict[str, List[ActiveSessionEntry]]


class ActiveSessionRegistry:
    """Which sessions are currently valid for each user, across devices.

    Stored as one JSON document ``{user_id: [{sessionId, createdAt,
    lastActivity}, ...]}``. Every write is mirrored into local storage and
    reads fall back to that copy while the store is unreachable. Mutations
    read the remote copy only; last writer wins.
    """

    def __init__(
        self,
        store: KeyValueStore,
        key: str,
        *,
        local: Optional[LocalStorage] = None,
        fallback_key: str = SESSIONS_FALLBACK_KEY,
    ) -> None:
        self.store = store
        self.key = key
        self.local = local
        self.fallback_key = fallback_key

    def _decode(self, raw: Optional[str], key: str) -> Registry:
        if raw is None:
            return {}
        try:
            data = decode_json(raw, key=key)
        except MalformedRecord:
            logger.warning("session_registry_malformed", key=key)
            return {}
        if not isinstance(data, dict):
            logger.warning("session_registry_malformed", key=key)
            return {}
        registry: Registry = {}
        for user_id, entries in data.items():
            if not isinstance(entries, list):
                logger.warning("session_registry_entry_malformed", key=key, user_id=user_id)
                continue
            parsed = []
            for entry in entries:
                try:
                    parsed.append(ActiveSessionEntry.from_dict(entry))
                except (KeyError, TypeError, ValueError, AttributeError) as exc:
                    logger.warning(
                        "session_registry_entry_malformed",
                        key=key,
                        user_id=user_id,
                        error_type=type(exc).__name__,
                    )
            if parsed:
                registry[user_id] = parsed
        return registry

    @staticmethod
    def _encode(registry: Registry) -> str:
        return json.dumps(
            {
                user_id: [e.to_dict() for e in entries]
                for user_id, entries in registry.items()
                if entries
            }
        )

    async def _read(self, *, allow_fallback: bool = False) -> Registry:
        try:
            raw = await self.store.get(self.key)
        except StoreUnavailable:
            if not allow_fallback or self.local is None:
                raise
            logger.warning("session_registry_unavailable_using_fallback", key=self.key)
            return self._decode(self.local.get_item(self.fallback_key), self.fallback_key)
        registry = self._decode(raw, self.key)
        if self.local is not None:
            self.local.set_item(self.fallback_key, self._encode(registry))
        return registry

    async def _write(self, registry: Registry) -> None:
        payload = self._encode(registry)
        if self.local is not None:
            self.local.set_item(self.fallback_key, payload)
        await self.store.set(self.key, payload)

    async def register(self, user_id: str, session_id: str, now: datetime) -> None:
        registry = await self._read()
        entries = [e for e in registry.get(user_id, []) if e.session_id != session_id]
        entries.append(
            ActiveSessionEntry(session_id=session_id, created_at=now, last_activity=now)
        )
        registry[user_id] = entries
        await self._write(registry)
        logger.info("session_registered", user_id=user_id, active_sessions=len(entries))

    async def is_active(self, user_id: str, session_id: str) -> bool:
        registry = await self._read(allow_fallback=True)
        return any(e.session_id == session_id for e in registry.get(user_id, []))

    async def sessions_for(self, user_id: str) -> List[ActiveSessionEntry]:
        registry = await self._read(allow_fallback=True)
        return list(registry.get(user_id, []))

    async def remove(self, user_id: str, session_id: str) -> bool:
        registry = await self._read()
        entries = registry.get(user_id, [])
        kept = [e for e in entries if e.session_id != session_id]
        if len(kept) == len(entries):
            return False
        registry[user_id] = kept
        await self._write(registry)
        logger.info("session_unregistered", user_id=user_id)
        return True

    async def evict_others(self, user_id: str) -> int:
        """Drop every registered session for the user; returns how many went."""
        registry = await self._read()
        evicted = len(registry.pop(user_id, []))
        if evicted:
            await self._write(registry)
            logger.info("sessions_evicted", user_id=user_id, count=evicted)
        return evicted

    async def evict_user(self, user_id: str) -> int:
        return await self.evict_others(user_id)

    async def touch(self, user_id: str, session_id: str, now: datetime) -> bool:
        registry = await self._read()
        for entry in registry.get(user_id, []):
            if entry.session_id == session_id:
                entry.last_activity = now
                await self._write(registry)
                return True
        return False

    async def cleanup_expired(self, now: datetime, session_duration: timedelta) -> int:
        registry = await self._read()
        removed = 0
        for user_id in list(registry):
            kept = [e for e in registry[user_id] if now - e.created_at < session_duration]
            removed += len(registry[user_id]) - len(kept)
            if kept:
                registry[user_id] = kept
            else:
                del registry[user_id]
        if removed:
            await self._write(registry)
            logger.info("expired_sessions_cleaned", count=removed)
        return removed
