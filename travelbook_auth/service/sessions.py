"""Session lifecycle for the admin back-office.

A browsing context holds at most one session, cached in local storage for
synchronous checks. With single-session mode on, the active-session
registry in the key-value store is the source of truth: a session missing
from it has been superseded by a login elsewhere. A background tick
re-checks membership and, when the session is gone, warns the user and
logs out after a short grace period.
"""

from __future__ import annotations

import inspect
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional

from travelbook_auth.config import Settings
from travelbook_auth.logging import get_logger
from travelbook_auth.service.clock import Clock, TimerGroup, TimerHandle
from travelbook_auth.service.credentials import CredentialStore
from travelbook_auth.service.errors import (
    InvalidCredentialsError,
    ServiceError,
    SessionExpiredError,
    SessionSupersededError,
    StoreUnavailableError,
)
from travelbook_auth.service.lockout import LockoutPolicy
from travelbook_auth.service.notifications import LoggingNotifier, NotificationLevel, Notifier
from travelbook_auth.service.registry import ActiveSessionRegistry
from travelbook_auth.service.results import Result
from travelbook_auth.storage.errors import MalformedRecord, StoreUnavailable
from travelbook_auth.storage.kv import decode_json
from travelbook_auth.storage.local import LocalStorage
from travelbook_auth.storage.models import ActiveSessionEntry, Session, UserProfile

logger = get_logger(__name__)


class SessionState(str, Enum):
    NO_SESSION = "no_session"
    ACTIVE = "active"
    EXPIRED = "expired"
    LOGGED_OUT = "logged_out"
    SUPERSEDED = "superseded"


class LogoutReason(str, Enum):
    USER = "user"
    EXPIRED = "expired"
    IDLE = "idle"
    SUPERSEDED = "superseded"


_STATE_FOR_REASON = {
    LogoutReason.USER: SessionState.LOGGED_OUT,
    LogoutReason.IDLE: SessionState.LOGGED_OUT,
    LogoutReason.EXPIRED: SessionState.EXPIRED,
    LogoutReason.SUPERSEDED: SessionState.SUPERSEDED,
}

LoginListener = Callable[[Session], Any]
LogoutListener = Callable[[LogoutReason], Any]


@dataclass
class AuthSuccess:
    user: UserProfile
    session: Session

    def to_dict(self) -> dict:
        return {"user": self.user.to_dict(), "session": self.session.to_dict()}


class SessionManager:
    def __init__(
        self,
        credentials: CredentialStore,
        lockout: LockoutPolicy,
        registry: ActiveSessionRegistry,
        local: LocalStorage,
        clock: Clock,
        settings: Settings,
        *,
        notifier: Optional[Notifier] = None,
    ) -> None:
        self.credentials = credentials
        self.lockout = lockout
        self.registry = registry
        self.local = local
        self.clock = clock
        self.settings = settings
        self.notifier = notifier or LoggingNotifier()
        self.cache_key = settings.session_cache_key
        self._session: Optional[Session] = None
        self._state = SessionState.NO_SESSION
        self._timers = TimerGroup(clock)
        self._tick_handle: Optional[TimerHandle] = None
        self._login_listeners: List[LoginListener] = []
        self._logout_listeners: List[LogoutListener] = []

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def revalidation_running(self) -> bool:
        return self._tick_handle is not None and not self._tick_handle.cancelled()

    def add_login_listener(self, listener: LoginListener) -> None:
        self._login_listeners.append(listener)

    def add_logout_listener(self, listener: LogoutListener) -> None:
        """Register a callback run with the ``LogoutReason`` whenever the session ends.

        This is the signal to navigate away from protected content.
        """
        self._logout_listeners.append(listener)

    # -- local cache -------------------------------------------------------

    def _store_session(self, session: Session) -> None:
        self._session = session
        self._state = SessionState.ACTIVE
        self.local.set_item(self.cache_key, json.dumps(session.to_dict()))

    def _clear_local(self) -> None:
        self._session = None
        self.local.remove_item(self.cache_key)

    def _load_cached(self) -> Optional[Session]:
        raw = self.local.get_item(self.cache_key)
        if raw is None:
            return None
        try:
            data = decode_json(raw, key=self.cache_key)
            return Session.from_dict(data)
        except (MalformedRecord, KeyError, TypeError, ValueError, AttributeError) as exc:
            logger.warning("session_cache_malformed", error_type=type(exc).__name__)
            self.local.remove_item(self.cache_key)
            return None

    # -- authentication ----------------------------------------------------

    async def authenticate(
        self, username: str, password: str, remember_me: bool = False
    ) -> Result[AuthSuccess]:
        try:
            status = await self.lockout.status(username)
            if status.locked:
                raise status.to_error()
            try:
                user = await self.credentials.verify_credentials(username, password)
            except InvalidCredentialsError:
                await self.lockout.record_failure(username)
                raise
            await self.lockout.clear(username)
            await self._discard_previous()
            if self.settings.single_session:
                await self.registry.evict_others(user.id)
            session = Session.new(
                user,
                now=self.clock.now(),
                duration=self.settings.session_duration,
                remember_me=remember_me,
            )
            await self.registry.register(user.id, session.id, session.created_at)
        except StoreUnavailable as exc:
            logger.error("login_store_unavailable", username=username, error=exc.message)
            return Result.fail(StoreUnavailableError(detail=exc.detail))
        except ServiceError as exc:
            logger.info("login_failed", username=username, error_code=exc.error_code)
            return Result.fail(exc)

        self._store_session(session)
        await self.credentials.record_login(user.id)
        logger.info(
            "login_succeeded",
            user_id=user.id,
            username=username,
            single_session=self.settings.single_session,
        )
        self.start()
        for listener in list(self._login_listeners):
            self._call_listener(listener, session)
        return Result.ok(AuthSuccess(user=user.profile(), session=session), "Login successful")

    async def _discard_previous(self) -> None:
        previous = self._session or self._load_cached()
        if previous is None:
            return
        self._timers.cancel_all()
        self._tick_handle = None
        try:
            await self.registry.remove(previous.user_id, previous.id)
        except StoreUnavailable:
            logger.warning("previous_session_unregister_failed", user_id=previous.user_id)
        self._clear_local()

    # -- validity ----------------------------------------------------------

    def current_session(self) -> Optional[Session]:
        """Cached session, or None. An expired session is cleared on the way."""
        session = self._session or self._load_cached()
        if session is None:
            self._state = SessionState.NO_SESSION
            return None
        if session.is_expired(self.clock.now()):
            logger.info("session_expired", user_id=session.user_id)
            self._end_local(LogoutReason.EXPIRED)
            self._timers.call_later(0, lambda: self._unregister(session))
            self.notifier.notify(SessionExpiredError().message, NotificationLevel.WARNING)
            return None
        self._session = session
        # A superseded session stays flagged until its grace-period logout
        if self._state != SessionState.SUPERSEDED:
            self._state = SessionState.ACTIVE
        return session

    def is_authenticated_local(self) -> bool:
        return self.current_session() is not None

    def require_auth(self) -> bool:
        """Synchronous guard for protected views; local expiry only.

        The background tick reconciles with the registry and logs out if it
        disagrees.
        """
        if self.current_session() is None:
            logger.info("auth_required_redirect")
            return False
        self.start()
        return True

    async def is_valid(self) -> bool:
        session = self.current_session()
        if session is None:
            return False
        if not self.settings.single_session:
            return True
        try:
            active = await self.registry.is_active(session.user_id, session.id)
        except StoreUnavailable:
            logger.warning("session_validation_store_unavailable", user_id=session.user_id)
            return False
        if not active:
            logger.info("session_superseded", user_id=session.user_id)
            self._state = SessionState.SUPERSEDED
            return False
        return True

    def remaining_session_seconds(self) -> float:
        session = self.current_session()
        if session is None:
            return 0.0
        return max(0.0, (session.expires_at - self.clock.now()).total_seconds())

    # -- background revalidation -------------------------------------------

    def start(self) -> None:
        if self.revalidation_running or self._session is None:
            return
        self._tick_handle = self._timers.call_later(
            self.settings.revalidation_interval_seconds, self._tick
        )

    def stop(self) -> None:
        self._timers.cancel_all()
        self._tick_handle = None

    async def _tick(self) -> None:
        self._tick_handle = None
        state = await self.revalidate()
        if state == SessionState.ACTIVE:
            self.start()

    async def revalidate(self) -> SessionState:
        """Reconcile the cached session with the registry.

        A superseded session is reported to the user right away and logged
        out once the grace period has passed.
        """
        session = self.current_session()
        if session is None:
            return self._state
        if not self.settings.single_session:
            return SessionState.ACTIVE
        try:
            active = await self.registry.is_active(session.user_id, session.id)
            if active:
                await self.registry.touch(session.user_id, session.id, self.clock.now())
                return SessionState.ACTIVE
        except StoreUnavailable as exc:
            logger.warning(
                "session_revalidation_failed",
                user_id=session.user_id,
                error=exc.message,
                error_type=type(exc).__name__,
            )
            return SessionState.ACTIVE

        logger.info("session_superseded", user_id=session.user_id, session_id=session.id)
        self._state = SessionState.SUPERSEDED
        self._timers.cancel_all()
        self._tick_handle = None
        self.notifier.notify(SessionSupersededError().message, NotificationLevel.WARNING)
        self._timers.call_later(
            self.settings.invalidation_grace_seconds,
            lambda: self._finish_superseded(session.id),
        )
        return SessionState.SUPERSEDED

    async def _finish_superseded(self, session_id: str) -> None:
        if self._session is None or self._session.id != session_id:
            return
        await self.logout(LogoutReason.SUPERSEDED)

    # -- logout ------------------------------------------------------------

    async def logout(self, reason: LogoutReason = LogoutReason.USER) -> Result[None]:
        """End the current session. Safe to call repeatedly; later calls do nothing."""
        session = self._session or self._load_cached()
        if session is None:
            self._timers.cancel_all()
            self._tick_handle = None
            return Result.ok(message="Already logged out")
        if reason != LogoutReason.SUPERSEDED:
            await self._unregister(session)
        logger.info("logout", user_id=session.user_id, reason=LogoutReason(reason).value)
        self._end_local(reason)
        if reason == LogoutReason.USER:
            self.notifier.notify("Logged out successfully", NotificationLevel.SUCCESS)
        return Result.ok(message="Logged out successfully")

    async def _unregister(self, session: Session) -> None:
        try:
            await self.registry.remove(session.user_id, session.id)
        except StoreUnavailable as exc:
            logger.warning(
                "session_unregister_failed", user_id=session.user_id, error=exc.message
            )

    def _end_local(self, reason: LogoutReason) -> None:
        self._timers.cancel_all()
        self._tick_handle = None
        self._clear_local()
        self._state = _STATE_FOR_REASON[reason]
        for listener in list(self._logout_listeners):
            self._call_listener(listener, reason)

    def _call_listener(self, listener: Callable[[Any], Any], arg: Any) -> None:
        try:
            result = listener(arg)
        except Exception as exc:
            logger.error(
                "session_listener_failed", error=str(exc), error_type=type(exc).__name__
            )
            return
        if inspect.isawaitable(result):
            self.clock.call_later(0, lambda: result)

    # -- lifecycle ---------------------------------------------------------

    def init(self) -> SessionState:
        """Restore the cached session (a page load) and resume revalidation."""
        if self.current_session() is not None:
            self.start()
        return self._state

    def shutdown(self) -> None:
        self.stop()
        self._session = None

    # -- admin wrappers ----------------------------------------------------

    async def force_logout_user(self, user_id: str) -> Result[int]:
        try:
            count = await self.registry.evict_user(user_id)
        except StoreUnavailable as exc:
            return Result.fail(StoreUnavailableError(detail=exc.detail))
        logger.info("user_force_logged_out", user_id=user_id, sessions=count)
        return Result.ok(count, f"Ended {count} active session(s)")

    async def user_sessions(self, user_id: str) -> Result[List[ActiveSessionEntry]]:
        try:
            return Result.ok(await self.registry.sessions_for(user_id))
        except StoreUnavailable as exc:
            return Result.fail(StoreUnavailableError(detail=exc.detail))

    async def cleanup_expired_sessions(self) -> Result[int]:
        try:
            removed = await self.registry.cleanup_expired(
                self.clock.now(), self.settings.session_duration
            )
        except StoreUnavailable as exc:
            return Result.fail(StoreUnavailableError(detail=exc.detail))
        return Result.ok(removed)
