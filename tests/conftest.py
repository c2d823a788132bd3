"""Shared test fixtures."""

import pytest

from loginwatch.engine.audit_sink import AuditSink
from loginwatch.engine.counter_store import CounterStore, MemoryCounterStore
from loginwatch.engine.errors import AuditWriteError, StoreUnavailableError
from loginwatch.engine.rate_limiter import RateLimiter, RateLimitPolicy


class FakeClock:
    """Manually advanced clock, callable like ``time.time``."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSink(AuditSink):
    """Keeps appended records in memory; can be told to fail."""

    def __init__(self, fail: bool = False):
        self.records = []
        self.fail = fail

    async def append(self, record) -> None:
        if self.fail:
            raise AuditWriteError("sink is down")
        self.records.append(record)


class BrokenStore(CounterStore):
    """A store whose every operation raises StoreUnavailableError."""

    backend = "broken"

    async def increment(self, key, ttl):
        raise StoreUnavailableError("down")

    async def get(self, key):
        raise StoreUnavailableError("down")

    async def clear(self, key):
        raise StoreUnavailableError("down")

    async def set_flag(self, key, expire_at):
        raise StoreUnavailableError("down")

    async def add_flag(self, key, expire_at):
        raise StoreUnavailableError("down")

    async def get_flag(self, key):
        raise StoreUnavailableError("down")

    async def clear_flag(self, key):
        raise StoreUnavailableError("down")

    async def ping(self):
        return False


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_store(clock):
    return MemoryCounterStore(clock=clock)


@pytest.fixture
def policy():
    return RateLimitPolicy(max_attempts=3, window_seconds=30, lockout_seconds=60)


@pytest.fixture
def limiter(memory_store, policy, clock):
    return RateLimiter(memory_store, policy, clock=clock)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def failing_sink():
    return RecordingSink(fail=True)


@pytest.fixture
def broken_store():
    return BrokenStore()
