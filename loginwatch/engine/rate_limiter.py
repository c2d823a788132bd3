"""Login rate limiter with attempt counting and lockout per scope and identity.

Each (scope, identity) pair moves through three states:

    Clean -> Counting(n) -> Locked(until) -> Clean

A counter expires ``window_seconds`` after its first failure. Reaching
``max_attempts`` promotes to Locked for ``lockout_seconds``; exactly one
caller wins the promotion and clears the counter. Failures that arrive while
a lock is live are ignored, so a lock is never extended. A success clears both
the counter and the lock.

Store outages fail open: reads report "not blocked" and writes are skipped,
with a warning logged for every failed operation.
"""

import time
from dataclasses import dataclass

from ..utils.logging import get_logger
from .counter_store import Clock, CounterStore
from .errors import StoreUnavailableError
from .identity import KeyPair, Scope, derive_keys, identity_digest

logger = get_logger("engine.rate_limiter")


@dataclass(frozen=True)
class RateLimitPolicy:
    """Lockout policy configuration."""

    max_attempts: int = 10
    window_seconds: int = 30
    lockout_seconds: int = 300
    key_prefix: str = "lw"

    def __post_init__(self) -> None:
        for name in ("max_attempts", "window_seconds", "lockout_seconds"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be a positive integer")
        if not self.key_prefix:
            raise ValueError("key_prefix must not be empty")


class RateLimiter:
    """Tracks failed attempts and lockouts on top of a CounterStore."""

    def __init__(
        self,
        store: CounterStore,
        policy: RateLimitPolicy | None = None,
        clock: Clock = time.time,
    ):
        self._store = store
        self._policy = policy or RateLimitPolicy()
        self._clock = clock

    @property
    def policy(self) -> RateLimitPolicy:
        return self._policy

    @property
    def store(self) -> CounterStore:
        return self._store

    def keys_for(self, scope: Scope, identity: str) -> KeyPair:
        return derive_keys(self._policy.key_prefix, scope, identity)

    async def is_blocked(self, scope: Scope, identity: str) -> tuple[bool, float | None]:
        """Return ``(blocked, unlock_at)`` for an identity."""
        keys = self.keys_for(scope, identity)
        try:
            unlock_at = await self._store.get_flag(keys.lock)
        except StoreUnavailableError as e:
            self._store_unavailable("is_blocked", scope, e)
            return False, None

        if unlock_at is None or unlock_at <= self._clock():
            return False, None
        return True, unlock_at

    async def record_failure(self, scope: Scope, identity: str) -> bool:
        """Count a failed attempt. Returns True if this call engaged the lock."""
        policy = self._policy
        keys = self.keys_for(scope, identity)
        try:
            if await self._store.get_flag(keys.lock) is not None:
                return False

            count = await self._store.increment(keys.attempts, policy.window_seconds)
            if count < policy.max_attempts:
                # Another worker may have promoted between the lock check and the increment
                if await self._store.get_flag(keys.lock) is not None:
                    await self._store.clear(keys.attempts)
                return False

            unlock_at = self._clock() + policy.lockout_seconds
            if not await self._store.add_flag(keys.lock, unlock_at):
                await self._store.clear(keys.attempts)
                return False
            await self._store.clear(keys.attempts)
        except StoreUnavailableError as e:
            self._store_unavailable("record_failure", scope, e)
            return False

        logger.warning(
            "lockout_engaged",
            scope=scope.value,
            identity=identity_digest(identity)[:16],
            attempts=count,
            unlock_at=unlock_at,
        )
        return True

    async def record_success(self, scope: Scope, identity: str) -> None:
        """Reset all rate-limit state for an identity."""
        keys = self.keys_for(scope, identity)
        try:
            await self._store.clear(keys.attempts)
            await self._store.clear_flag(keys.lock)
        except StoreUnavailableError as e:
            self._store_unavailable("record_success", scope, e)

    async def attempts(self, scope: Scope, identity: str) -> int:
        """Current failed-attempt count for an identity."""
        try:
            return await self._store.get(self.keys_for(scope, identity).attempts)
        except StoreUnavailableError as e:
            self._store_unavailable("attempts", scope, e)
            return 0

    def _store_unavailable(self, operation: str, scope: Scope, error: Exception) -> None:
        logger.warning(
            "counter_store_unavailable",
            operation=operation,
            scope=scope.value,
            backend=self._store.backend,
            error=str(error),
        )
