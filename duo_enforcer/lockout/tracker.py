"""
Lockout Tracker
===============
Per-principal failure counting with lockout windows and backoff.
"""

import asyncio
import time
import weakref
from typing import Callable, Optional
import structlog

from ..metrics import LOCKOUTS_TOTAL
from .models import LockoutConfig, LockoutRecord
from .store import InMemoryLockoutStore, LockoutStore

logger = structlog.get_logger(__name__)


class LockoutTracker:
    """
    Track definitive failures and lock principals out.

    Updates for one principal are serialized by a per-principal lock so
    concurrent failures are never lost between load and store.
    """

    def __init__(
        self,
        store: Optional[LockoutStore] = None,
        config: Optional[LockoutConfig] = None,
        clock: Callable[[], float] = time.time,
        on_lock: Optional[Callable[[str], None]] = None,
    ):
        self.store = store or InMemoryLockoutStore()
        self.config = config or LockoutConfig()
        self.clock = clock
        self.on_lock = on_lock
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, principal: str) -> asyncio.Lock:
        lock = self._locks.get(principal)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[principal] = lock
        return lock

    async def record_failure(self, principal: str) -> bool:
        """
        Record a definitive failure.

        Args:
            principal: Principal identifier

        Returns:
            True if the principal is locked after this failure
        """
        cfg = self.config
        newly_locked = False

        async with self._lock_for(principal):
            now = self.clock()
            record = await self.store.load(principal)

            if record is not None and record.is_locked(now):
                return True

            if record is None or now - record.window_start > cfg.window_seconds:
                record = LockoutRecord(failure_count=0, window_start=now)

            record.failure_count += 1
            if record.failure_count >= cfg.threshold:
                duration = cfg.lock_duration(record.failure_count)
                record.locked_until = now + duration
                newly_locked = True

            await self.store.store(principal, record)

        if newly_locked:
            LOCKOUTS_TOTAL.inc()
            logger.warning(
                "Principal locked out",
                principal=principal,
                failures=record.failure_count,
                locked_for=round(record.locked_until - now, 1),
            )
            if self.on_lock is not None:
                self.on_lock(principal)
        else:
            logger.info(
                "Authentication failure recorded",
                principal=principal,
                failures=record.failure_count,
                threshold=cfg.threshold,
            )
        return newly_locked

    async def record_success(self, principal: str) -> None:
        """Reset the failure count and clear any lockout."""
        async with self._lock_for(principal):
            await self.store.delete(principal)

    async def retry_after(self, principal: str) -> float:
        """Seconds until the principal is unlocked (0 if not locked)."""
        now = self.clock()
        record = await self.store.load(principal)
        if record is None:
            return 0.0
        if record.is_locked(now):
            return record.locked_until - now

        if record.is_stale(now, self.config):
            async with self._lock_for(principal):
                current = await self.store.load(principal)
                if current is not None and current.is_stale(self.clock(), self.config):
                    await self.store.delete(principal)
        return 0.0

    async def is_locked(self, principal: str) -> bool:
        return await self.retry_after(principal) > 0

    async def failure_count(self, principal: str) -> int:
        record = await self.store.load(principal)
        return record.failure_count if record is not None else 0
