"""Idle detection with a warning countdown before automatic logout.

State machine::

    STOPPED --arm--> IDLE --warning timer--> WARNING --logout timer--> LOGGING_OUT --delay--> LOGGED_OUT
                      ^                         |
                      +------ activity ---------+

Both timers are measured from the last activity and are rescheduled on
every activity event, so a fresh event always beats a pending timer. The
logout timer runs whether or not the warning was dismissed. ``disarm``
cancels everything at once.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional

from travelbook_auth.config import Settings
from travelbook_auth.logging import get_logger
from travelbook_auth.service.clock import Clock, TimerGroup
from travelbook_auth.service.notifications import LoggingNotifier, NotificationLevel, Notifier

logger = get_logger(__name__)


class MonitorState(str, Enum):
    STOPPED = "stopped"
    IDLE = "idle"
    WARNING = "warning"
    LOGGING_OUT = "logging_out"
    LOGGED_OUT = "logged_out"


class ActivityEvent(str, Enum):
    MOUSEMOVE = "mousemove"
    MOUSEDOWN = "mousedown"
    KEYPRESS = "keypress"
    SCROLL = "scroll"
    TOUCHSTART = "touchstart"
    CLICK = "click"
    FOCUS = "focus"
    BLUR = "blur"


RESETTING_EVENTS = frozenset(e for e in ActivityEvent if e is not ActivityEvent.BLUR)


class InactivityListener:
    """UI hooks for the warning dialog. Override what you need."""

    def warning_shown(self, seconds_left: int) -> None:
        pass

    def countdown_tick(self, seconds_left: int) -> None:
        pass

    def warning_dismissed(self) -> None:
        pass


class InactivityMonitor:
    def __init__(
        self,
        clock: Clock,
        settings: Settings,
        logout: Callable[[], Awaitable[Any]],
        *,
        notifier: Optional[Notifier] = None,
    ) -> None:
        self.clock = clock
        self.timeout = settings.inactivity_timeout_seconds
        self.warning_lead = settings.warning_lead_seconds
        self.logout_delay = settings.auto_logout_delay_seconds
        self._logout = logout
        self.notifier = notifier or LoggingNotifier()
        self._timers = TimerGroup(clock)
        self._countdown_timers = TimerGroup(clock)
        self._listeners: List[InactivityListener] = []
        self._state = MonitorState.STOPPED
        self._last_activity = clock.now()
        self._countdown: Optional[int] = None

    @property
    def state(self) -> MonitorState:
        return self._state

    @property
    def countdown(self) -> Optional[int]:
        """Seconds shown in the warning dialog, or None when no warning is up."""
        return self._countdown

    @property
    def last_activity(self) -> datetime:
        return self._last_activity

    @property
    def armed(self) -> bool:
        return self._state in (MonitorState.IDLE, MonitorState.WARNING)

    def add_listener(self, listener: InactivityListener) -> None:
        self._listeners.append(listener)

    def _emit(self, hook: str, *args) -> None:
        for listener in list(self._listeners):
            try:
                getattr(listener, hook)(*args)
            except Exception as exc:
                logger.error(
                    "inactivity_listener_failed",
                    hook=hook,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )

    def arm(self) -> None:
        """Start watching; called when a session becomes active."""
        if self.armed:
            return
        logger.info("inactivity_monitor_armed", timeout_seconds=self.timeout)
        self._reset()

    def disarm(self) -> None:
        """Cancel every pending timer; called on logout and teardown."""
        self._timers.cancel_all()
        self._countdown_timers.cancel_all()
        self._countdown = None
        if self._state is not MonitorState.LOGGED_OUT:
            self._state = MonitorState.STOPPED

    def _reset(self) -> None:
        self._timers.cancel_all()
        self._countdown_timers.cancel_all()
        self._countdown = None
        self._last_activity = self.clock.now()
        self._state = MonitorState.IDLE
        self._timers.call_later(self.timeout - self.warning_lead, self._on_warning_due)
        self._timers.call_later(self.timeout, self._on_timeout)

    def on_activity(self, event: ActivityEvent | str = ActivityEvent.MOUSEMOVE) -> None:
        if not self.armed:
            return
        try:
            kind = ActivityEvent(event)
        except ValueError:
            logger.debug("inactivity_event_ignored", event_name=str(event))
            return
        if kind not in RESETTING_EVENTS:
            return
        if self._state is MonitorState.WARNING:
            self._emit("warning_dismissed")
        self._reset()

    def stay_logged_in(self) -> None:
        """The warning dialog's "stay logged in" button."""
        self.on_activity(ActivityEvent.CLICK)

    def extend(self) -> None:
        if not self.armed:
            return
        self.on_activity(ActivityEvent.CLICK)
        self.notifier.notify("Session extended successfully!", NotificationLevel.SUCCESS)

    def remaining_seconds(self) -> float:
        if not self.armed:
            return 0.0
        idle = (self.clock.now() - self._last_activity).total_seconds()
        return max(0.0, self.timeout - idle)

    async def logout_now(self) -> None:
        """The warning dialog's "logout now" button; skips the remaining delay."""
        self._timers.cancel_all()
        self._countdown_timers.cancel_all()
        self._countdown = None
        logger.info("inactivity_logout_requested")
        await self._logout()
        self._state = MonitorState.LOGGED_OUT

    def _on_warning_due(self) -> None:
        if self._state is not MonitorState.IDLE:
            return
        self._state = MonitorState.WARNING
        self._countdown = self.warning_lead
        logger.info("inactivity_warning_shown", seconds_left=self.warning_lead)
        self.notifier.notify(
            f"You will be logged out in {self.warning_lead} seconds due to inactivity.",
            NotificationLevel.WARNING,
        )
        self._emit("warning_shown", self.warning_lead)
        self._countdown_timers.call_later(1, self._on_countdown_tick)

    def _on_countdown_tick(self) -> None:
        if self._state is not MonitorState.WARNING or self._countdown is None:
            return
        self._countdown = max(0, self._countdown - 1)
        self._emit("countdown_tick", self._countdown)
        if self._countdown > 0:
            self._countdown_timers.call_later(1, self._on_countdown_tick)

    def _on_timeout(self) -> None:
        if not self.armed:
            return
        self._countdown_timers.cancel_all()
        self._countdown = None
        self._state = MonitorState.LOGGING_OUT
        logger.info("inactivity_timeout", idle_seconds=self.timeout)
        self.notifier.notify(
            "You have been logged out due to inactivity.", NotificationLevel.WARNING
        )
        self._timers.call_later(self.logout_delay, self._perform_logout)

    async def _perform_logout(self) -> None:
        if self._state is not MonitorState.LOGGING_OUT:
            return
        await self._logout()
        self._timers.cancel_all()
        self._state = MonitorState.LOGGED_OUT
