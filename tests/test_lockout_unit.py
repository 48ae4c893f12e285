"""Unit tests for the two-tier lockout policy."""

import json

import pytest

from travelbook_auth.service.lockout import TIER_EXTENDED, TIER_SHORT, LockoutPolicy

ATTEMPTS_KEY = "travelbook:login_attempts"


@pytest.fixture
def policy(store, clock, settings):
    return LockoutPolicy(store, clock, settings)


class TestTiers:
    """Tests for tier thresholds and precedence."""

    async def test_four_failures_do_not_lock(self, policy):
        for _ in range(4):
            status = await policy.record_failure("alice")

        assert not status.locked
        assert status.attempts == 4

    async def test_fifth_failure_locks_short_tier(self, policy, clock):
        for _ in range(5):
            await clock.advance(1)
            status = await policy.record_failure("alice")

        assert status.locked
        assert status.tier == TIER_SHORT
        assert "unlock automatically" in status.message
        assert "extended" not in status.message
        assert await policy.is_locked("alice")

    async def test_ten_failures_lock_extended_tier(self, policy, clock):
        for _ in range(10):
            await clock.advance(1)
            await policy.record_failure("alice")

        status = await policy.status("alice")

        assert status.tier == TIER_EXTENDED
        assert "extended" in status.message
        error = status.to_error()
        assert error.error_code == "account_locked"
        assert error.detail["tier"] == TIER_EXTENDED

    async def test_extended_lock_outlasts_short_lock(self, policy, clock, settings):
        for _ in range(5):
            await policy.record_failure("short")
        short = await policy.status("short")
        for _ in range(10):
            await policy.record_failure("long")
        extended = await policy.status("long")

        now = clock.now()
        assert (extended.unlock_at - now) > (short.unlock_at - now)
        assert short.unlock_at - now == settings.lockout_window
        assert extended.unlock_at - now == settings.extended_lockout_window

    async def test_lock_is_per_username(self, policy):
        for _ in range(5):
            await policy.record_failure("alice")

        assert await policy.is_locked("alice")
        assert not await policy.is_locked("bob")


class TestWindows:
    """Tests for time-based release and pruning."""

    async def test_short_lock_releases_after_window(self, policy, clock):
        for _ in range(5):
            await policy.record_failure("alice")

        await clock.advance(5 * 60 - 1)
        assert await policy.is_locked("alice")

        await clock.advance(1)
        assert not await policy.is_locked("alice")

    async def test_extended_tier_reachable_across_short_windows(self, policy, clock):
        for _ in range(5):
            await policy.record_failure("alice")
        await clock.advance(6 * 60)
        assert not await policy.is_locked("alice")

        for _ in range(5):
            await policy.record_failure("alice")

        status = await policy.status("alice")
        assert status.tier == TIER_EXTENDED
        # Released when the oldest of the ten leaves the 15 minute window
        assert status.unlock_at == (await policy.attempts("alice"))[0] + policy.extended_window

    async def test_old_attempts_pruned_on_write(self, policy, clock, store):
        await policy.record_failure("alice")
        await policy.record_failure("bob")
        await clock.advance(16 * 60)

        await policy.record_failure("alice")

        stored = json.loads(await store.get(ATTEMPTS_KEY))
        assert list(stored) == ["alice"]
        assert len(stored["alice"]) == 1


class TestClear:
    """Tests for clearing after a successful login."""

    async def test_clear_removes_username_entry(self, policy, store):
        for _ in range(3):
            await policy.record_failure("alice")
        await policy.record_failure("bob")

        await policy.clear("alice")

        stored = json.loads(await store.get(ATTEMPTS_KEY))
        assert "alice" not in stored
        assert await policy.attempts("alice") == []
        assert len(await policy.attempts("bob")) == 1

    async def test_clear_last_username_deletes_key(self, policy, store):
        await policy.record_failure("alice")

        await policy.clear("alice")

        assert await store.get(ATTEMPTS_KEY) is None

    async def test_unlocked_status_has_no_error(self, policy):
        status = await policy.status("alice")

        with pytest.raises(ValueError):
            status.to_error()

    async def test_malformed_document_treated_as_empty(self, policy, store):
        await store.set(ATTEMPTS_KEY, "[[[")

        assert not await policy.is_locked("alice")
        status = await policy.record_failure("alice")
        assert status.attempts == 1
