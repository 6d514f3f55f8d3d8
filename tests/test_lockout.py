"""
Unit Tests for Lockout Tracking
===============================
Thresholds, windows, lock expiry and persistence.
"""

import asyncio
import json

import pytest

from tests.fakes import FakeClock, FakeRedis


def _tracker(clock, store=None, **config):
    from duo_enforcer.lockout import LockoutConfig, LockoutTracker

    settings = dict(threshold=3, window_seconds=60, lockout_seconds=300)
    settings.update(config)
    return LockoutTracker(store=store, config=LockoutConfig(**settings), clock=clock)


class TestLockoutTracker:
    """Tests for failure counting and lockout."""

    @pytest.mark.asyncio
    async def test_locks_at_threshold(self):
        """N failures inside W lock the principal for L."""
        clock = FakeClock()
        tracker = _tracker(clock)

        assert await tracker.record_failure("bob") is False
        assert await tracker.record_failure("bob") is False
        assert await tracker.record_failure("bob") is True

        assert await tracker.is_locked("bob")
        assert await tracker.retry_after("bob") == 300

    @pytest.mark.asyncio
    async def test_unlocks_after_duration(self):
        """After L the principal is unlocked and the record cleared."""
        clock = FakeClock()
        tracker = _tracker(clock)
        for _ in range(3):
            await tracker.record_failure("bob")

        clock.advance(299)
        assert await tracker.is_locked("bob")

        clock.advance(2)
        assert not await tracker.is_locked("bob")
        assert await tracker.failure_count("bob") == 0

    @pytest.mark.asyncio
    async def test_failures_outside_window_do_not_accumulate(self):
        """The count restarts once the window has passed."""
        clock = FakeClock()
        tracker = _tracker(clock)

        await tracker.record_failure("bob")
        await tracker.record_failure("bob")
        clock.advance(61)
        assert await tracker.record_failure("bob") is False
        assert await tracker.failure_count("bob") == 1

    @pytest.mark.asyncio
    async def test_success_resets_count(self):
        clock = FakeClock()
        tracker = _tracker(clock)

        await tracker.record_failure("bob")
        await tracker.record_failure("bob")
        await tracker.record_success("bob")

        assert await tracker.failure_count("bob") == 0
        assert await tracker.record_failure("bob") is False

    @pytest.mark.asyncio
    async def test_on_lock_called_once(self):
        """The lock hook fires when the lock starts, not on later failures."""
        clock = FakeClock()
        tracker = _tracker(clock)
        locked = []
        tracker.on_lock = locked.append

        for _ in range(5):
            await tracker.record_failure("bob")

        assert locked == ["bob"]

    @pytest.mark.asyncio
    async def test_backoff_extends_repeat_lockouts(self):
        """Failures beyond the threshold lengthen the lock, up to the cap."""
        from duo_enforcer.lockout import LockoutConfig

        config = LockoutConfig(threshold=3, lockout_seconds=100, backoff_multiplier=2.0, max_lockout_seconds=350)

        assert config.lock_duration(3) == 100
        assert config.lock_duration(4) == 200
        assert config.lock_duration(6) == 350

    @pytest.mark.asyncio
    async def test_concurrent_failures_not_lost(self):
        """Concurrent updates for one principal are serialized."""
        clock = FakeClock()
        tracker = _tracker(clock, threshold=10)

        await asyncio.gather(*(tracker.record_failure("bob") for _ in range(6)))

        assert await tracker.failure_count("bob") == 6

    @pytest.mark.asyncio
    async def test_principals_are_independent(self):
        clock = FakeClock()
        tracker = _tracker(clock)
        for _ in range(3):
            await tracker.record_failure("bob")

        assert not await tracker.is_locked("alice")


class TestRedisLockoutStore:
    """Tests for the Redis-backed store."""

    @pytest.mark.asyncio
    async def test_lock_survives_restart(self):
        """A new tracker over the same store still sees the lock."""
        from duo_enforcer.lockout import RedisLockoutStore

        redis = FakeRedis()
        clock = FakeClock()

        first = _tracker(clock, store=RedisLockoutStore(redis))
        for _ in range(3):
            await first.record_failure("bob")

        second = _tracker(clock, store=RedisLockoutStore(redis))
        assert await second.is_locked("bob")

    @pytest.mark.asyncio
    async def test_record_written_with_expiry(self):
        from duo_enforcer.lockout import RedisLockoutStore

        redis = FakeRedis()
        tracker = _tracker(FakeClock(), store=RedisLockoutStore(redis, ttl_seconds=900))

        await tracker.record_failure("bob")

        key = "duo_enforcer:lockout:bob"
        assert json.loads(redis.data[key])["failure_count"] == 1
        assert redis.expiry[key] == 900

    @pytest.mark.asyncio
    async def test_success_deletes_key(self):
        from duo_enforcer.lockout import RedisLockoutStore

        redis = FakeRedis()
        tracker = _tracker(FakeClock(), store=RedisLockoutStore(redis))

        await tracker.record_failure("bob")
        await tracker.record_success("bob")

        assert redis.data == {}

    @pytest.mark.asyncio
    async def test_corrupt_record_raises(self):
        """An unreadable record surfaces instead of unlocking."""
        from duo_enforcer.lockout import RedisLockoutStore

        redis = FakeRedis()
        redis.data["duo_enforcer:lockout:bob"] = "{not json"
        store = RedisLockoutStore(redis)

        with pytest.raises(ValueError):
            await store.load("bob")
