"""Unit tests for the inactivity monitor and its warning countdown."""

import pytest

from travelbook_auth.service.inactivity import (
    ActivityEvent,
    InactivityListener,
    InactivityMonitor,
    MonitorState,
)
from travelbook_auth.service.sessions import LogoutReason, SessionState

WARNING_TEXT = "You will be logged out in 60 seconds due to inactivity."
LOGGED_OUT_TEXT = "You have been logged out due to inactivity."


class RecordingListener(InactivityListener):
    def __init__(self):
        self.events = []

    def warning_shown(self, seconds_left):
        self.events.append(("shown", seconds_left))

    def countdown_tick(self, seconds_left):
        self.events.append(("tick", seconds_left))

    def warning_dismissed(self):
        self.events.append(("dismissed", None))


@pytest.fixture
def logouts():
    return []


@pytest.fixture
def monitor(clock, settings, notifier, logouts):
    async def _logout():
        logouts.append(clock.now())

    watcher = InactivityMonitor(clock, settings, _logout, notifier=notifier)
    watcher.arm()
    return watcher


@pytest.fixture
def listener(monitor):
    recorder = RecordingListener()
    monitor.add_listener(recorder)
    return recorder


class TestWarning:
    """Tests for the warning phase."""

    async def test_warning_shown_once_at_lead_time(self, monitor, clock, notifier, listener):
        await clock.advance(839)
        assert monitor.state is MonitorState.IDLE
        assert monitor.countdown is None

        await clock.advance(1)
        assert monitor.state is MonitorState.WARNING
        assert monitor.countdown == 60

        await clock.advance(30)
        assert notifier.texts().count(WARNING_TEXT) == 1
        assert [e for e in listener.events if e[0] == "shown"] == [("shown", 60)]

    async def test_countdown_ticks_every_second(self, monitor, clock, listener):
        await clock.advance(850)

        assert monitor.countdown == 50
        ticks = [seconds for kind, seconds in listener.events if kind == "tick"]
        assert ticks == list(range(59, 49, -1))

    async def test_activity_during_warning_resets(self, monitor, clock, listener, logouts):
        await clock.advance(850)

        monitor.on_activity(ActivityEvent.KEYPRESS)

        assert monitor.state is MonitorState.IDLE
        assert monitor.countdown is None
        assert ("dismissed", None) in listener.events
        await clock.advance(100)
        assert logouts == []
        assert monitor.state is MonitorState.IDLE

    async def test_stay_logged_in(self, monitor, clock):
        await clock.advance(845)

        monitor.stay_logged_in()

        assert monitor.state is MonitorState.IDLE
        assert monitor.remaining_seconds() == 900

    async def test_extend_notifies(self, monitor, clock, notifier):
        await clock.advance(845)

        monitor.extend()

        assert monitor.state is MonitorState.IDLE
        assert "Session extended successfully!" in notifier.texts()

    async def test_failing_listener_does_not_stop_warning(self, monitor, clock):
        class Broken(InactivityListener):
            def warning_shown(self, seconds_left):
                raise RuntimeError("dialog failed to render")

        monitor.add_listener(Broken())

        await clock.advance(840)

        assert monitor.state is MonitorState.WARNING


class TestActivity:
    """Tests for timer resets from user activity."""

    async def test_activity_pushes_timers_back(self, monitor, clock):
        await clock.advance(800)
        monitor.on_activity("mousemove")

        await clock.advance(800)
        assert monitor.state is MonitorState.IDLE

        await clock.advance(40)
        assert monitor.state is MonitorState.WARNING

    async def test_blur_is_ignored(self, monitor, clock):
        await clock.advance(800)

        monitor.on_activity(ActivityEvent.BLUR)
        await clock.advance(40)

        assert monitor.state is MonitorState.WARNING

    async def test_unknown_event_name_is_ignored(self, monitor, clock):
        await clock.advance(800)

        monitor.on_activity("wheel")
        await clock.advance(40)

        assert monitor.state is MonitorState.WARNING

    async def test_remaining_seconds(self, monitor, clock):
        await clock.advance(100)

        assert monitor.remaining_seconds() == 800
        assert monitor.last_activity < clock.now()


class TestTimeout:
    """Tests for the automatic logout."""

    async def test_logout_after_delay(self, monitor, clock, notifier, logouts):
        await clock.advance(900)

        assert monitor.state is MonitorState.LOGGING_OUT
        assert LOGGED_OUT_TEXT in notifier.texts()
        assert logouts == []

        await clock.advance(1)

        assert len(logouts) == 1
        assert monitor.state is MonitorState.LOGGED_OUT
        assert clock.pending == 0

    async def test_activity_after_timeout_is_ignored(self, monitor, clock, logouts):
        await clock.advance(900)

        monitor.on_activity(ActivityEvent.CLICK)
        await clock.advance(1)

        assert len(logouts) == 1

    async def test_logout_now_skips_delay(self, monitor, clock, logouts):
        await clock.advance(845)

        await monitor.logout_now()

        assert logouts == [clock.now()]
        assert monitor.state is MonitorState.LOGGED_OUT
        assert clock.pending == 0


class TestArming:
    """Tests for arm and disarm."""

    async def test_disarm_cancels_everything(self, monitor, clock, logouts):
        assert clock.pending == 2

        monitor.disarm()
        monitor.on_activity()
        await clock.advance(2000)

        assert clock.pending == 0
        assert monitor.state is MonitorState.STOPPED
        assert logouts == []

    async def test_arm_is_idempotent(self, monitor, clock):
        await clock.advance(100)

        monitor.arm()

        assert monitor.remaining_seconds() == 800
        assert clock.pending == 2


class TestWithSession:
    """Tests for the monitor wired to the session manager."""

    async def test_idle_logout_ends_session(self, runtime, clock, notifier):
        reasons = []
        runtime.sessions.add_logout_listener(reasons.append)
        await runtime.credentials.create("alice", "correct-horse")
        session = (await runtime.sessions.authenticate("alice", "correct-horse")).value.session

        await clock.advance(901)

        assert reasons == [LogoutReason.IDLE]
        assert runtime.sessions.state is SessionState.LOGGED_OUT
        assert runtime.inactivity.state is MonitorState.LOGGED_OUT
        assert not await runtime.registry.is_active(session.user_id, session.id)
        assert LOGGED_OUT_TEXT in notifier.texts()

    async def test_manual_logout_disarms_monitor(self, runtime, clock):
        await runtime.credentials.create("alice", "correct-horse")
        await runtime.sessions.authenticate("alice", "correct-horse")

        await runtime.sessions.logout()
        await clock.advance(1000)

        assert runtime.inactivity.state is MonitorState.STOPPED
        assert runtime.sessions.state is SessionState.LOGGED_OUT
