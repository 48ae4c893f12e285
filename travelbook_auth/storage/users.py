from __future__ import annotations

import json
from typing import Dict, List, Optional, Protocol

from travelbook_auth.logging import get_logger
from travelbook_auth.storage.errors import MalformedRecord, StoreUnavailable
from travelbook_auth.storage.kv import KeyValueStore, decode_json
from travelbook_auth.storage.local import LocalStorage
from travelbook_auth.storage.models import User

logger = get_logger(__name__)

USERS_FALLBACK_KEY = "travelbook_admin_users_fallback"


class UserRepository(Protocol):
    async def load_all(self, *, allow_fallback: bool = True) -> List[User]: ...

    async def save_all(self, users: List[User]) -> None: ...


class KeyValueUserRepository:
    """User collection kept as a hash of JSON records keyed by user id.

    Reads that reach the store are mirrored into ``LocalStorage`` so the
    directory can still be listed while the store is unreachable. Writes
    always go to the store and fail loudly when it is down.
    """

    def __init__(
        self,
        store: KeyValueStore,
        key: str,
        *,
        local: Optional[LocalStorage] = None,
        fallback_key: str = USERS_FALLBACK_KEY,
    ) -> None:
        self.store = store
        self.key = key
        self.local = local
        self.fallback_key = fallback_key

    async def load_all(self, *, allow_fallback: bool = True) -> List[User]:
        try:
            raw = await self.store.hgetall(self.key)
        except StoreUnavailable:
            if not allow_fallback or self.local is None:
                raise
            logger.warning("user_store_unavailable_using_fallback", key=self.key)
            return self._load_fallback()
        users = self._decode(raw)
        self._mirror(users)
        return users

    async def save_all(self, users: List[User]) -> None:
        for user in users:
            await self.store.hset(self.key, user.id, json.dumps(user.to_dict()))
        self._mirror(users)

    def _decode(self, raw: Dict[str, str]) -> List[User]:
        users: List[User] = []
        for field, value in raw.items():
            try:
                data = decode_json(value, key=self.key, field=field)
                if not isinstance(data, dict):
                    raise MalformedRecord("user record is not an object", {"field": field})
                users.append(User.from_dict(data))
            except (MalformedRecord, KeyError, ValueError, TypeError, AttributeError) as exc:
                logger.warning(
                    "user_record_malformed",
                    key=self.key,
                    field=field,
                    error_type=type(exc).__name__,
                )
        users.sort(key=lambda u: u.created_at)
        return users

    def _mirror(self, users: List[User]) -> None:
        if self.local is None:
            return
        payload = {user.id: json.dumps(user.to_dict()) for user in users}
        self.local.set_item(self.fallback_key, json.dumps(payload))

    def _load_fallback(self) -> List[User]:
        if self.local is None:
            return []
        raw = self.local.get_item(self.fallback_key)
        if raw is None:
            return []
        try:
            data = decode_json(raw, key=self.fallback_key)
        except MalformedRecord:
            logger.warning("user_fallback_malformed", key=self.fallback_key)
            return []
        if not isinstance(data, dict):
            return []
        return self._decode(data)
