"""Tests for the RateLimiter: counting, lockout promotion and fail-open."""

import asyncio

import pytest

from loginwatch.engine.counter_store import MemoryCounterStore
from loginwatch.engine.identity import Scope
from loginwatch.engine.rate_limiter import RateLimiter, RateLimitPolicy


class TestRateLimitPolicy:
    def test_defaults(self):
        policy = RateLimitPolicy()
        assert policy.max_attempts == 10
        assert policy.window_seconds == 30
        assert policy.lockout_seconds == 300
        assert policy.key_prefix == "lw"

    @pytest.mark.parametrize("field", ["max_attempts", "window_seconds", "lockout_seconds"])
    def test_rejects_non_positive(self, field):
        with pytest.raises(ValueError):
            RateLimitPolicy(**{field: 0})

    def test_rejects_empty_prefix(self):
        with pytest.raises(ValueError):
            RateLimitPolicy(key_prefix="")


class TestRecordFailure:
    @pytest.mark.asyncio
    async def test_counts_below_threshold(self, limiter):
        assert await limiter.record_failure(Scope.USER, "alice") is False
        assert await limiter.record_failure(Scope.USER, "alice") is False
        assert await limiter.attempts(Scope.USER, "alice") == 2
        blocked, _ = await limiter.is_blocked(Scope.USER, "alice")
        assert blocked is False

    @pytest.mark.asyncio
    async def test_threshold_engages_lock(self, limiter, clock):
        for _ in range(2):
            await limiter.record_failure(Scope.USER, "alice")
        assert await limiter.record_failure(Scope.USER, "alice") is True

        blocked, unlock_at = await limiter.is_blocked(Scope.USER, "alice")
        assert blocked is True
        assert unlock_at == clock() + 60
        # Counter is cleared by the promotion
        assert await limiter.attempts(Scope.USER, "alice") == 0

    @pytest.mark.asyncio
    async def test_failures_while_locked_do_not_extend(self, limiter, clock):
        for _ in range(3):
            await limiter.record_failure(Scope.USER, "alice")
        _, unlock_at = await limiter.is_blocked(Scope.USER, "alice")

        clock.advance(30)
        assert await limiter.record_failure(Scope.USER, "alice") is False
        _, still = await limiter.is_blocked(Scope.USER, "alice")
        assert still == unlock_at
        assert await limiter.attempts(Scope.USER, "alice") == 0

    @pytest.mark.asyncio
    async def test_lock_expires(self, limiter, clock):
        for _ in range(3):
            await limiter.record_failure(Scope.IP, "203.0.113.7")
        clock.advance(60)
        blocked, unlock_at = await limiter.is_blocked(Scope.IP, "203.0.113.7")
        assert blocked is False
        assert unlock_at is None

    @pytest.mark.asyncio
    async def test_window_expiry_resets_count(self, limiter, clock):
        await limiter.record_failure(Scope.USER, "alice")
        clock.advance(1)
        await limiter.record_failure(Scope.USER, "alice")
        clock.advance(29)
        assert await limiter.attempts(Scope.USER, "alice") == 0
        assert await limiter.record_failure(Scope.USER, "alice") is False
        assert await limiter.attempts(Scope.USER, "alice") == 1

    @pytest.mark.asyncio
    async def test_scopes_are_independent(self, limiter):
        for _ in range(3):
            await limiter.record_failure(Scope.USER, "alice")
        blocked, _ = await limiter.is_blocked(Scope.IP, "alice")
        assert blocked is False

    @pytest.mark.asyncio
    async def test_exactly_one_promotion_under_concurrency(self, memory_store, clock):
        limiter = RateLimiter(
            memory_store,
            RateLimitPolicy(max_attempts=5, window_seconds=30, lockout_seconds=60),
            clock=clock,
        )
        results = await asyncio.gather(
            *[limiter.record_failure(Scope.IP, "198.51.100.9") for _ in range(20)]
        )
        assert results.count(True) == 1
        blocked, _ = await limiter.is_blocked(Scope.IP, "198.51.100.9")
        assert blocked is True


class _RacingStore(MemoryCounterStore):
    """Lets another worker promote the lock just before the next increment lands."""

    def __init__(self, clock, winner_clears=True):
        super().__init__(clock=clock)
        self.lock_key = None
        self.winner_clears = winner_clears

    async def increment(self, key, ttl):
        if self.lock_key is not None:
            await self.add_flag(self.lock_key, self._clock() + 60)
            if self.winner_clears:
                await self.clear(key)
            self.lock_key = None
        return await super().increment(key, ttl)


class TestPromotionRace:
    @pytest.mark.asyncio
    async def test_counter_cleared_when_lock_appears_mid_failure(self, policy, clock):
        store = _RacingStore(clock)
        limiter = RateLimiter(store, policy, clock=clock)
        store.lock_key = limiter.keys_for(Scope.USER, "alice").lock

        assert await limiter.record_failure(Scope.USER, "alice") is False
        assert await limiter.attempts(Scope.USER, "alice") == 0
        assert (await limiter.is_blocked(Scope.USER, "alice"))[0] is True

    @pytest.mark.asyncio
    async def test_losing_promotion_clears_counter(self, policy, clock):
        # The winner's own clear has not landed yet, so this increment reaches the threshold
        store = _RacingStore(clock, winner_clears=False)
        limiter = RateLimiter(store, policy, clock=clock)
        await limiter.record_failure(Scope.USER, "alice")
        await limiter.record_failure(Scope.USER, "alice")
        store.lock_key = limiter.keys_for(Scope.USER, "alice").lock

        assert await limiter.record_failure(Scope.USER, "alice") is False
        assert await limiter.attempts(Scope.USER, "alice") == 0
        assert (await limiter.is_blocked(Scope.USER, "alice"))[0] is True


class TestRecordSuccess:
    @pytest.mark.asyncio
    async def test_clears_counter(self, limiter):
        await limiter.record_failure(Scope.USER, "alice")
        await limiter.record_success(Scope.USER, "alice")
        assert await limiter.attempts(Scope.USER, "alice") == 0

    @pytest.mark.asyncio
    async def test_clears_lock(self, limiter):
        for _ in range(3):
            await limiter.record_failure(Scope.USER, "alice")
        await limiter.record_success(Scope.USER, "alice")
        blocked, _ = await limiter.is_blocked(Scope.USER, "alice")
        assert blocked is False


class TestFailOpen:
    @pytest.mark.asyncio
    async def test_unavailable_store_never_blocks(self, broken_store, policy, clock):
        limiter = RateLimiter(broken_store, policy, clock=clock)
        assert await limiter.is_blocked(Scope.IP, "203.0.113.7") == (False, None)
        assert await limiter.record_failure(Scope.IP, "203.0.113.7") is False
        await limiter.record_success(Scope.IP, "203.0.113.7")
        assert await limiter.attempts(Scope.IP, "203.0.113.7") == 0


class TestKeys:
    def test_prefix_from_policy(self, memory_store):
        limiter = RateLimiter(memory_store, RateLimitPolicy(key_prefix="site2"))
        keys = limiter.keys_for(Scope.USER, "alice")
        assert keys.attempts.startswith("site2_atm_u_")
        assert keys.lock.startswith("site2_lck_u_")
