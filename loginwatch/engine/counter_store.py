"""Keyed counter store with TTL-backed counters and expiring flags.

Counters hold an attempt count that expires a fixed time after creation.
Flags hold an absolute expiry timestamp and back the lockout state.
Two backends: an in-process store guarded by a lock, and Redis.
"""

import heapq
import math
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable

from redis.asyncio import Redis
from redis.exceptions import RedisError

from ..config import LoginWatchConfig
from ..utils.logging import get_logger
from .errors import StoreUnavailableError

logger = get_logger("engine.counter_store")

Clock = Callable[[], float]


class CounterStore(ABC):
    """Async contract shared by all counter store backends."""

    backend: str = "abstract"

    @abstractmethod
    async def increment(self, key: str, ttl: float) -> int:
        """Atomically increment ``key`` and return the new count.

        A missing or expired counter restarts at 1 and expires ``ttl`` seconds later.
        """

    @abstractmethod
    async def get(self, key: str) -> int:
        """Return the current count, 0 when absent or expired."""

    @abstractmethod
    async def clear(self, key: str) -> None:
        """Remove a counter."""

    @abstractmethod
    async def set_flag(self, key: str, expire_at: float) -> None:
        """Create or overwrite a flag expiring at ``expire_at`` (epoch seconds)."""

    @abstractmethod
    async def add_flag(self, key: str, expire_at: float) -> bool:
        """Create a flag only if no live one exists. Returns True if created."""

    @abstractmethod
    async def get_flag(self, key: str) -> float | None:
        """Return the flag's expiry timestamp, or None if absent or expired."""

    @abstractmethod
    async def clear_flag(self, key: str) -> None:
        """Remove a flag."""

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class MemoryCounterStore(CounterStore):
    """Thread-safe in-process store with lazy expiry and bounded size."""

    backend = "memory"

    def __init__(self, clock: Clock = time.time, max_entries: int = 100_000):
        self._clock = clock
        self._max_entries = max_entries
        self._lock = threading.Lock()
        self._counters: dict[str, tuple[int, float]] = {}  # key -> (count, expires_at)
        self._flags: dict[str, float] = {}  # key -> expires_at

    async def increment(self, key: str, ttl: float) -> int:
        with self._lock:
            now = self._clock()
            entry = self._counters.get(key)
            if entry is None or now >= entry[1]:
                if entry is None:
                    self._evict_if_full(now)
                count, expires_at = 1, now + ttl
            else:
                count, expires_at = entry[0] + 1, entry[1]
            self._counters[key] = (count, expires_at)
            return count

    async def get(self, key: str) -> int:
        with self._lock:
            entry = self._counters.get(key)
            if entry is None:
                return 0
            if self._clock() >= entry[1]:
                del self._counters[key]
                return 0
            return entry[0]

    async def clear(self, key: str) -> None:
        with self._lock:
            self._counters.pop(key, None)

    async def set_flag(self, key: str, expire_at: float) -> None:
        with self._lock:
            if key not in self._flags:
                self._evict_if_full(self._clock())
            self._flags[key] = expire_at

    async def add_flag(self, key: str, expire_at: float) -> bool:
        with self._lock:
            now = self._clock()
            current = self._flags.get(key)
            if current is not None and now < current:
                return False
            if current is None:
                self._evict_if_full(now)
            self._flags[key] = expire_at
            return True

    async def get_flag(self, key: str) -> float | None:
        with self._lock:
            expire_at = self._flags.get(key)
            if expire_at is None:
                return None
            if self._clock() >= expire_at:
                del self._flags[key]
                return None
            return expire_at

    async def clear_flag(self, key: str) -> None:
        with self._lock:
            self._flags.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._counters) + len(self._flags)

    def _evict_if_full(self, now: float) -> None:
        """Free a batch of slots once the store is full. Caller holds the lock.

        Expired entries go first, then those closest to expiry, until a tenth
        of the capacity is free again. Inserts between batches skip the scan.
        """
        if len(self._counters) + len(self._flags) < self._max_entries:
            return

        for k in [k for k, (_, exp) in self._counters.items() if now >= exp]:
            del self._counters[k]
        for k in [k for k, exp in self._flags.items() if now >= exp]:
            del self._flags[k]

        target = self._max_entries - max(1, self._max_entries // 10)
        excess = len(self._counters) + len(self._flags) - target
        if excess <= 0:
            return

        # Counters go before locks so active lockouts survive memory pressure
        victims = heapq.nsmallest(excess, self._counters, key=lambda k: self._counters[k][1])
        for k in victims:
            del self._counters[k]
        excess -= len(victims)
        if excess > 0:
            for k in heapq.nsmallest(excess, self._flags, key=self._flags.__getitem__):
                del self._flags[k]
        logger.warning(
            "counter_store_evicted",
            max_entries=self._max_entries,
            evicted=len(victims) + max(excess, 0),
        )


# INCR and the first EXPIRE run as one server-side step, so a counter can
# never be left without a TTL.
_INCREMENT_SCRIPT = """
local count = redis.call('INCR', KEYS[1])
if count == 1 then
    redis.call('EXPIRE', KEYS[1], ARGV[1])
end
return count
"""


class RedisCounterStore(CounterStore):
    """Redis-backed store. Counter TTLs are enforced by Redis itself."""

    backend = "redis"

    def __init__(self, client: Redis, clock: Clock = time.time):
        self._redis = client
        self._clock = clock
        self._increment = client.register_script(_INCREMENT_SCRIPT)

    @classmethod
    def from_url(cls, url: str, socket_timeout: float = 2.0) -> "RedisCounterStore":
        client = Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(client)

    async def increment(self, key: str, ttl: float) -> int:
        try:
            count = await self._increment(keys=[key], args=[max(1, math.ceil(ttl))])
        except (RedisError, OSError) as e:
            raise StoreUnavailableError(f"increment failed: {e}") from e
        return int(count)

    async def get(self, key: str) -> int:
        try:
            raw = await self._redis.get(key)
        except (RedisError, OSError) as e:
            raise StoreUnavailableError(f"get failed: {e}") from e
        return int(raw) if raw is not None else 0

    async def clear(self, key: str) -> None:
        try:
            await self._redis.delete(key)
        except (RedisError, OSError) as e:
            raise StoreUnavailableError(f"clear failed: {e}") from e

    async def set_flag(self, key: str, expire_at: float) -> None:
        ttl = self._ttl_until(expire_at)
        try:
            if ttl <= 0:
                await self._redis.delete(key)
                return
            await self._redis.set(key, repr(expire_at), ex=ttl)
        except (RedisError, OSError) as e:
            raise StoreUnavailableError(f"set_flag failed: {e}") from e

    async def add_flag(self, key: str, expire_at: float) -> bool:
        ttl = self._ttl_until(expire_at)
        if ttl <= 0:
            return False
        try:
            created = await self._redis.set(key, repr(expire_at), ex=ttl, nx=True)
        except (RedisError, OSError) as e:
            raise StoreUnavailableError(f"add_flag failed: {e}") from e
        return bool(created)

    async def get_flag(self, key: str) -> float | None:
        try:
            raw = await self._redis.get(key)
        except (RedisError, OSError) as e:
            raise StoreUnavailableError(f"get_flag failed: {e}") from e
        if raw is None:
            return None
        expire_at = float(raw)
        # Redis rounds TTLs up to whole seconds; never report a flag past its stored expiry
        if self._clock() >= expire_at:
            return None
        return expire_at

    async def clear_flag(self, key: str) -> None:
        await self.clear(key)

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except (RedisError, OSError) as e:
            logger.warning("counter_store_ping_failed", backend=self.backend, error=str(e))
            return False

    async def close(self) -> None:
        await self._redis.aclose()

    def _ttl_until(self, expire_at: float) -> int:
        return math.ceil(expire_at - self._clock())


def create_counter_store(config: LoginWatchConfig) -> CounterStore:
    """Build the counter store selected by ``counter_store_backend``."""
    if config.counter_store_backend == "redis":
        logger.info("counter_store_selected", backend="redis")
        return RedisCounterStore.from_url(config.redis_url, socket_timeout=config.redis_socket_timeout)
    logger.info("counter_store_selected", backend="memory")
    return MemoryCounterStore(max_entries=config.counter_store_max_entries)
