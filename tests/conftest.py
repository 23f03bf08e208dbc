import asyncio
import inspect
import os
import sys
from pathlib import Path

# Configure the runtime before any accesstoken import reads the environment
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from accesstoken.service.runtime import reset_runtime_for_tests  # noqa: E402
from accesstoken.service.tokens import TokenManager  # noqa: E402
from accesstoken.storage.memory import MemoryCache  # noqa: E402


class FakeClock:
    """Controllable millisecond clock shared by the store and the token manager."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class CountingStore(MemoryCache):
    """MemoryCache that records every command and can be told to fail."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.calls = []
        self.fail_on = set()

    async def _record(self, name, *args):
        self.calls.append((name,) + args)
        if name in self.fail_on:
            from accesstoken.storage.errors import StoreError

            raise StoreError(f"redis {name} failed", {"operation": name})

    def count(self, name):
        return sum(1 for call in self.calls if call[0] == name)

    async def get(self, key):
        await self._record("get", key)
        return await super().get(key)

    async def set(self, key, value, *, px):
        await self._record("set", key, px)
        await super().set(key, value, px=px)

    async def delete(self, key):
        await self._record("delete", key)
        return await super().delete(key)

    async def pexpire(self, key, ttl_ms):
        await self._record("pexpire", key, ttl_ms)
        return await super().pexpire(key, ttl_ms)

    async def keys(self, pattern):
        await self._record("keys", pattern)
        return await super().keys(pattern)


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return CountingStore(clock=clock)


@pytest.fixture
def make_store(clock):
    def factory(**kwargs):
        return CountingStore(clock=clock, **kwargs)

    return factory


@pytest.fixture
def tokens(store, clock):
    return TokenManager(store, clock=clock)


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
