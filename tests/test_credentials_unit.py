"""Unit tests for the credential store and user repository.

Tests for:
- Account creation and duplicate usernames
- Password hashing and password change
- Directory listing, status and role edits
- Malformed records and the local fallback copy
"""

import json

import pytest

from conftest import FlakyStore, fast_hasher
from travelbook_auth.service.credentials import CredentialStore
from travelbook_auth.service.errors import InvalidCredentialsError, StoreUnavailableError
from travelbook_auth.storage.local import LocalKeyValueStore, LocalStorage
from travelbook_auth.storage.models import Role
from travelbook_auth.storage.users import USERS_FALLBACK_KEY, KeyValueUserRepository

USERS_KEY = "travelbook:admin_users"


@pytest.fixture
def flaky(store):
    return FlakyStore(store)


@pytest.fixture
def repository(flaky, local):
    return KeyValueUserRepository(flaky, USERS_KEY, local=local)


@pytest.fixture
def credentials(repository, clock):
    return CredentialStore(repository, clock, hasher=fast_hasher())


class TestCreate:
    """Tests for account creation."""

    async def test_create_stores_hashed_password(self, credentials, store, clock):
        result = await credentials.create("alice", "correct-horse", email="a@example.com")

        assert result.success
        profile = result.value
        assert profile.username == "alice"
        assert profile.role is Role.EDITOR
        assert profile.is_active is True
        assert profile.last_login is None
        assert profile.created_at == clock.now()

        stored = json.loads(await store.hget(USERS_KEY, profile.id))
        assert stored["password"] != "correct-horse"
        assert stored["password"].startswith("$argon2id$")

    async def test_duplicate_username_rejected(self, credentials):
        first = await credentials.create("bob", "pw-one")
        second = await credentials.create("bob", "pw-two")

        assert first.success
        assert not second.success
        assert "already exists" in second.message
        assert second.error_code == "duplicate_username"
        assert second.to_dict()["success"] is False

    async def test_duplicate_check_includes_inactive_users(self, credentials):
        bob = (await credentials.create("bob", "pw")).value
        await credentials.set_active(bob.id, False)

        assert not (await credentials.create("bob", "pw")).success

    async def test_usernames_are_case_sensitive(self, credentials):
        await credentials.create("bob", "pw")

        assert (await credentials.create("Bob", "pw")).success

    async def test_empty_username_rejected(self, credentials):
        result = await credentials.create("   ", "pw")

        assert not result.success
        assert result.error_code == "validation_error"

    async def test_unknown_role_rejected(self, credentials):
        result = await credentials.create("carol", "pw", role="owner")

        assert not result.success
        assert result.error_code == "validation_error"

    async def test_store_outage_fails_creation(self, credentials, flaky):
        flaky.down = True

        result = await credentials.create("dave", "pw")

        assert not result.success
        assert result.error_code == "store_unavailable"


class TestLookupAndVerify:
    """Tests for username lookup and credential verification."""

    async def test_find_by_username_hides_inactive(self, credentials):
        user = (await credentials.create("erin", "pw")).value
        await credentials.set_active(user.id, False)

        assert await credentials.find_by_username("erin") is None
        found = await credentials.find_by_username("erin", active_only=False)
        assert found is not None and found.id == user.id

    async def test_verify_credentials(self, credentials):
        await credentials.create("alice", "correct-horse")

        user = await credentials.verify_credentials("alice", "correct-horse")

        assert user.username == "alice"

    async def test_same_error_for_unknown_user_and_wrong_password(self, credentials):
        await credentials.create("alice", "correct-horse")

        with pytest.raises(InvalidCredentialsError) as wrong_password:
            await credentials.verify_credentials("alice", "nope")
        with pytest.raises(InvalidCredentialsError) as unknown_user:
            await credentials.verify_credentials("mallory", "nope")

        assert wrong_password.value.message == unknown_user.value.message

    async def test_inactive_user_cannot_verify(self, credentials):
        user = (await credentials.create("alice", "correct-horse")).value
        await credentials.set_active(user.id, False)

        with pytest.raises(InvalidCredentialsError):
            await credentials.verify_credentials("alice", "correct-horse")

    async def test_verify_fails_closed_when_store_down(self, credentials, flaky):
        await credentials.create("alice", "correct-horse")
        flaky.down = True

        with pytest.raises(StoreUnavailableError):
            await credentials.verify_credentials("alice", "correct-horse")


class TestUpdates:
    """Tests for password, status and role changes."""

    async def test_update_password(self, credentials, clock):
        await credentials.create("alice", "old-password")
        await clock.advance(60)

        result = await credentials.update_password("alice", "old-password", "new-password")

        assert result.success
        user = await credentials.verify_credentials("alice", "new-password")
        assert user.updated_at == clock.now()
        with pytest.raises(InvalidCredentialsError):
            await credentials.verify_credentials("alice", "old-password")

    async def test_update_password_wrong_current(self, credentials):
        await credentials.create("alice", "old-password")

        result = await credentials.update_password("alice", "wrong", "new-password")

        assert not result.success
        assert result.error_code == "invalid_credentials"
        assert result.message == "Current password is incorrect"

    async def test_set_active_unknown_id(self, credentials):
        result = await credentials.set_active("missing", False)

        assert not result.success
        assert result.error_code == "not_found"

    async def test_toggle_status(self, credentials):
        user = (await credentials.create("frank", "pw")).value

        first = await credentials.toggle_status(user.id)
        second = await credentials.toggle_status(user.id)

        assert first.value is False
        assert "deactivated" in first.message
        assert second.value is True

    async def test_update_role(self, credentials):
        user = (await credentials.create("gina", "pw")).value

        result = await credentials.update_role(user.id, "admin")

        assert result.success
        assert result.value.role is Role.ADMIN
        assert result.value.updated_at is not None

    async def test_record_login(self, credentials, clock):
        user = (await credentials.create("hank", "pw")).value
        await clock.advance(5)

        await credentials.record_login(user.id)

        found = await credentials.find_by_username("hank")
        assert found.last_login == clock.now()


class TestListAndFallback:
    """Tests for the directory listing and its local fallback."""

    async def test_list_excludes_password(self, credentials):
        await credentials.create("alice", "pw")
        await credentials.create("bob", "pw")

        result = await credentials.list()

        assert sorted(u.username for u in result.value) == ["alice", "bob"]
        for entry in result.to_dict()["result"]:
            assert "password" not in entry

    async def test_malformed_record_is_skipped(self, credentials, store):
        await credentials.create("alice", "pw")
        await store.hset(USERS_KEY, "broken", "{not json")
        await store.hset(USERS_KEY, "partial", json.dumps({"id": "partial"}))

        result = await credentials.list()

        assert [u.username for u in result.value] == ["alice"]

    async def test_null_created_at_is_skipped(self, credentials, store):
        await credentials.create("alice", "pw")
        bad = {"id": "bad", "username": "x", "password": "h", "created_at": None}
        await store.hset(USERS_KEY, "bad", json.dumps(bad))

        result = await credentials.list()

        assert result.success
        assert [u.username for u in result.value] == ["alice"]

    async def test_numeric_created_at_does_not_block_login(self, credentials, store):
        await credentials.create("alice", "correct-horse")
        bad = {"id": "bad", "username": "x", "password": "h", "created_at": 1700000000000}
        await store.hset(USERS_KEY, "bad", json.dumps(bad))

        user = await credentials.verify_credentials("alice", "correct-horse")

        assert user.username == "alice"
        assert [u.username for u in (await credentials.list()).value] == ["alice"]

    async def test_list_uses_fallback_during_outage(self, credentials, flaky, local):
        await credentials.create("alice", "pw")
        await credentials.list()
        assert local.get_item(USERS_FALLBACK_KEY) is not None
        flaky.down = True

        result = await credentials.list()

        assert result.success
        assert [u.username for u in result.value] == ["alice"]

    async def test_list_without_fallback_reports_outage(self, clock):
        flaky = FlakyStore(LocalKeyValueStore(LocalStorage()))
        creds = CredentialStore(
            KeyValueUserRepository(flaky, USERS_KEY), clock, hasher=fast_hasher()
        )
        flaky.down = True

        result = await creds.list()

        assert not result.success
        assert result.error_code == "store_unavailable"
