from __future__ import annotations

import asyncio
from typing import Optional

from argon2 import PasswordHasher

from travelbook_auth.config import Settings, StoreBackend
from travelbook_auth.logging import get_logger, mask_url_password
from travelbook_auth.service.clock import Clock, LoopClock
from travelbook_auth.service.credentials import CredentialStore
from travelbook_auth.service.inactivity import InactivityMonitor
from travelbook_auth.service.lockout import LockoutPolicy
from travelbook_auth.service.notifications import LoggingNotifier, Notifier
from travelbook_auth.service.registry import ActiveSessionRegistry
from travelbook_auth.service.sessions import LogoutReason, SessionManager, SessionState
from travelbook_auth.storage.errors import StoreUnavailable
from travelbook_auth.storage.kv import KeyValueStore
from travelbook_auth.storage.local import LocalKeyValueStore, LocalStorage
from travelbook_auth.storage.redis_store import RedisKeyValueStore
from travelbook_auth.storage.rest_store import ProxyKeyValueStore, UpstashKeyValueStore
from travelbook_auth.storage.users import KeyValueUserRepository

logger = get_logger(__name__)


def build_store(settings: Settings, local: LocalStorage) -> KeyValueStore:
    """Pick the key-value backend once, at construction time."""
    backend = settings.kv_backend
    timeout = settings.store_timeout_seconds
    if backend == StoreBackend.REDIS:
        store: KeyValueStore = RedisKeyValueStore(settings.redis_url, socket_timeout=timeout)
        target = mask_url_password(settings.redis_url)
    elif backend == StoreBackend.UPSTASH:
        store = UpstashKeyValueStore(
            settings.upstash_rest_url or "",
            settings.upstash_rest_token or "",
            timeout=timeout,
        )
        target = settings.upstash_rest_url
    elif backend == StoreBackend.PROXY:
        store = ProxyKeyValueStore(
            settings.proxy_base_url or "",
            api_key=settings.proxy_api_key,
            timeout=timeout,
        )
        target = settings.proxy_base_url
    else:
        store = LocalKeyValueStore(local)
        target = "local"
    logger.info("runtime_store_selected", backend=backend.value, target=target)
    return store


class Runtime:
    """Explicitly constructed auth core for one browsing context.

    Nothing is built at import time: create a ``Runtime``, ``await init()``
    to restore a cached session, and ``await shutdown()`` to cancel every
    timer and close the store.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        clock: Optional[Clock] = None,
        store: Optional[KeyValueStore] = None,
        local: Optional[LocalStorage] = None,
        notifier: Optional[Notifier] = None,
        hasher: Optional[PasswordHasher] = None,
    ) -> None:
        self.settings = settings or Settings.from_env()
        self.clock = clock or LoopClock()
        self.local = local or LocalStorage(self.settings.state_dir)
        self.store = store or build_store(self.settings, self.local)
        self.notifier = notifier or LoggingNotifier()

        self.users = KeyValueUserRepository(self.store, self.settings.users_key, local=self.local)
        self.credentials = CredentialStore(self.users, self.clock, hasher=hasher)
        self.lockout = LockoutPolicy(self.store, self.clock, self.settings)
        self.registry = ActiveSessionRegistry(
            self.store, self.settings.active_sessions_key, local=self.local
        )
        self.sessions = SessionManager(
            self.credentials,
            self.lockout,
            self.registry,
            self.local,
            self.clock,
            self.settings,
            notifier=self.notifier,
        )
        self.inactivity = InactivityMonitor(
            self.clock,
            self.settings,
            self._idle_logout,
            notifier=self.notifier,
        )
        self.sessions.add_login_listener(lambda _session: self.inactivity.arm())
        self.sessions.add_logout_listener(lambda _reason: self.inactivity.disarm())
        self._initialized = False

    async def _idle_logout(self) -> None:
        await self.sessions.logout(LogoutReason.IDLE)

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def _verify_store(self) -> None:
        verify = getattr(self.store, "verify_connection", None)
        if not callable(verify):
            return
        timeout = self.settings.store_timeout_seconds
        try:
            await asyncio.wait_for(asyncio.to_thread(verify), timeout)
        except asyncio.TimeoutError as exc:
            logger.error("store_verify_timeout", timeout=timeout)
            raise StoreUnavailable(
                "store connection check timed out", {"timeout": timeout}
            ) from exc
        except StoreUnavailable as exc:
            logger.error("store_verify_failed", error=exc.message)
            raise
        except Exception as exc:
            logger.error("store_verify_failed", error=str(exc), error_type=type(exc).__name__)
            raise StoreUnavailable("store connection check failed", {"error": str(exc)}) from exc

    async def init(self) -> SessionState:
        """Check the store, restore a cached session and arm the monitor.

        Raises ``StoreUnavailable`` when the configured store cannot be reached.
        """
        if self._initialized:
            return self.sessions.state
        await self._verify_store()
        state = self.sessions.init()
        if state == SessionState.ACTIVE:
            self.inactivity.arm()
        self._initialized = True
        logger.info(
            "runtime_initialized",
            backend=self.settings.kv_backend.value,
            session_state=state.value,
        )
        return state

    async def shutdown(self) -> None:
        self.inactivity.disarm()
        self.sessions.shutdown()
        await self.store.close()
        if isinstance(self.clock, LoopClock):
            await self.clock.aclose()
        self._initialized = False
        logger.info("runtime_shutdown")
