import asyncio
import inspect
import os
import sys
from pathlib import Path

# Keep tests off any real store and out of a developer's .env values
os.environ.setdefault("KV_BACKEND", "memory")
os.environ.setdefault("LOG_JSON", "true")

import pytest  # noqa: E402
from argon2 import PasswordHasher, Type  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from travelbook_auth.config import Settings  # noqa: E402
from travelbook_auth.service.clock import VirtualClock  # noqa: E402
from travelbook_auth.service.notifications import NotificationLevel  # noqa: E402
from travelbook_auth.service.runtime import Runtime  # noqa: E402
from travelbook_auth.storage.errors import StoreUnavailable  # noqa: E402
from travelbook_auth.storage.local import LocalKeyValueStore, LocalStorage  # noqa: E402


class RecordingNotifier:
    def __init__(self):
        self.messages = []

    def notify(self, message, level=NotificationLevel.INFO):
        self.messages.append((NotificationLevel(level), message))

    def texts(self):
        return [message for _, message in self.messages]


class FlakyStore:
    """Wraps a store; every command raises StoreUnavailable while ``down`` is set."""

    def __init__(self, inner):
        self.inner = inner
        self.down = False

    def __getattr__(self, name):
        target = getattr(self.inner, name)

        async def call(*args, **kwargs):
            if self.down and name != "close":
                raise StoreUnavailable(f"{name} failed", {"error": "simulated outage"})
            return await target(*args, **kwargs)

        return call


def fast_hasher() -> PasswordHasher:
    # Minimum argon2id cost so tests hashing many passwords stay quick
    return PasswordHasher(time_cost=1, memory_cost=8, parallelism=1, type=Type.ID)


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def clock():
    return VirtualClock()


@pytest.fixture
def local():
    return LocalStorage()


@pytest.fixture
def store(local):
    return LocalKeyValueStore(local)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_runtime(settings, clock, store, local, notifier):
    """Build a Runtime sharing the store; pass ``local=`` for a second device."""

    def _make(runtime_settings=None, **overrides):
        kwargs = {
            "clock": clock,
            "store": store,
            "local": local,
            "notifier": notifier,
            "hasher": fast_hasher(),
        }
        kwargs.update(overrides)
        return Runtime(runtime_settings or settings, **kwargs)

    return _make


@pytest.fixture
def runtime(make_runtime):
    return make_runtime()


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
