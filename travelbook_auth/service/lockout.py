"""Two-tier progressive lockout keyed by username.

Failed attempts live in one JSON document, ``{username: [epoch_millis, ...]}``,
stored under the login-attempts key. Entries older than the extended window
are pruned on every write. Lockout is per username, not per device or IP, so
anyone can lock an account by failing against its username.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from travelbook_auth.config import Settings
from travelbook_auth.logging import get_logger
from travelbook_auth.service.clock import Clock
from travelbook_auth.service.errors import AccountLockedError
from travelbook_auth.storage.errors import MalformedRecord
from travelbook_auth.storage.kv import KeyValueStore, decode_json
from travelbook_auth.storage.models import from_millis, to_millis

logger = get_logger(__name__)

TIER_NONE = 0
TIER_SHORT = 1
TIER_EXTENDED = 2


@dataclass
class LockoutStatus:
    locked: bool
    tier: int = TIER_NONE
    unlock_at: Optional[datetime] = None
    message: Optional[str] = None
    attempts: int = 0

    def to_error(self) -> AccountLockedError:
        if not self.locked or self.unlock_at is None:
            raise ValueError("only a locked status converts to AccountLockedError")
        return AccountLockedError(
            self.message or "Account locked", tier=self.tier, unlock_at=self.unlock_at
        )


class LockoutPolicy:
    def __init__(self, store: KeyValueStore, clock: Clock, settings: Settings) -> None:
        self.store = store
        self.clock = clock
        self.key = settings.login_attempts_key
        self.max_attempts = settings.max_login_attempts
        self.window = settings.lockout_window
        self.max_attempts_extended = settings.max_login_attempts_extended
        self.extended_window = settings.extended_lockout_window

    async def _read(self) -> Dict[str, List[int]]:
        raw = await self.store.get(self.key)
        if raw is None:
            return {}
        try:
            data = decode_json(raw, key=self.key)
        except MalformedRecord:
            logger.warning("login_attempts_malformed", key=self.key)
            return {}
        if not isinstance(data, dict):
            logger.warning("login_attempts_malformed", key=self.key)
            return {}
        attempts: Dict[str, List[int]] = {}
        for username, stamps in data.items():
            if isinstance(stamps, list):
                attempts[username] = [int(s) for s in stamps if isinstance(s, (int, float))]
        return attempts

    async def _write(self, attempts: Dict[str, List[int]]) -> None:
        if attempts:
            await self.store.set(self.key, json.dumps(attempts, sort_keys=True))
        else:
            await self.store.delete(self.key)

    def _recent(self, stamps: List[int], now: datetime, window: timedelta) -> List[int]:
        cutoff = to_millis(now - window)
        return sorted(s for s in stamps if s > cutoff)

    async def attempts(self, username: str) -> List[datetime]:
        """Failed attempts still inside the extended window, oldest first."""
        now = self.clock.now()
        stamps = (await self._read()).get(username, [])
        return [from_millis(s) for s in self._recent(stamps, now, self.extended_window)]

    async def record_failure(self, username: str) -> LockoutStatus:
        now = self.clock.now()
        attempts = await self._read()
        stamps = attempts.get(username, []) + [to_millis(now)]
        attempts[username] = self._recent(stamps, now, self.extended_window)
        # Other usernames are pruned on the same write
        for other in list(attempts):
            if other != username:
                kept = self._recent(attempts[other], now, self.extended_window)
                if kept:
                    attempts[other] = kept
                else:
                    del attempts[other]
        await self._write(attempts)
        status = self._evaluate(attempts[username], now)
        logger.info(
            "login_failure_recorded",
            username=username,
            attempts=len(attempts[username]),
            locked=status.locked,
            tier=status.tier,
        )
        return status

    async def status(self, username: str) -> LockoutStatus:
        now = self.clock.now()
        stamps = (await self._read()).get(username, [])
        return self._evaluate(stamps, now)

    async def is_locked(self, username: str) -> bool:
        return (await self.status(username)).locked

    async def clear(self, username: str) -> None:
        attempts = await self._read()
        if attempts.pop(username, None) is not None:
            await self._write(attempts)
            logger.info("login_failures_cleared", username=username)

    def _evaluate(self, stamps: List[int], now: datetime) -> LockoutStatus:
        extended = self._recent(stamps, now, self.extended_window)
        if len(extended) >= self.max_attempts_extended:
            oldest = extended[len(extended) - self.max_attempts_extended]
            unlock_at = from_millis(oldest) + self.extended_window
            return LockoutStatus(
                locked=True,
                tier=TIER_EXTENDED,
                unlock_at=unlock_at,
                message=(
                    "Too many failed login attempts. Your account is locked for an "
                    f"extended period and will unlock automatically in "
                    f"{self._minutes_until(unlock_at, now)} minutes."
                ),
                attempts=len(extended),
            )
        recent = self._recent(stamps, now, self.window)
        if len(recent) >= self.max_attempts:
            oldest = recent[len(recent) - self.max_attempts]
            unlock_at = from_millis(oldest) + self.window
            return LockoutStatus(
                locked=True,
                tier=TIER_SHORT,
                unlock_at=unlock_at,
                message=(
                    "Too many failed login attempts. Your account is temporarily locked "
                    f"and will unlock automatically in {self._minutes_until(unlock_at, now)} minutes."
                ),
                attempts=len(extended),
            )
        return LockoutStatus(locked=False, attempts=len(extended))

    @staticmethod
    def _minutes_until(unlock_at: datetime, now: datetime) -> int:
        return max(1, math.ceil((unlock_at - now).total_seconds() / 60))
