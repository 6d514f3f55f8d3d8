"""
Verdict Cache
=============
TTL cache of verdicts per (principal, resource) with single-flight
coordination of the upstream computation.
"""

import asyncio
import time
from typing import Awaitable, Callable, Dict, Optional
import structlog

from ..metrics import CACHE_LOOKUPS_TOTAL, PENDING_CHALLENGES
from ..models import ReasonCode, Verdict, VerdictStatus
from .models import CacheConfig, CacheEntry, CacheKey

logger = structlog.get_logger(__name__)


def _cancelled_verdict() -> Verdict:
    return Verdict(
        status=VerdictStatus.DENY,
        reason=ReasonCode.CANCELLED,
        message="Pending challenge was cancelled",
    )


class VerdictCache:
    """
    Memoizes verdicts and deduplicates concurrent computations.

    At most one compute runs per key. Callers arriving while it runs await
    the same task and observe the same verdict. All bookkeeping happens
    between await points, so the event loop serializes it.
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or CacheConfig()
        self.clock = clock
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._inflight: Dict[CacheKey, asyncio.Task] = {}
        self._pending: Dict[CacheKey, Verdict] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: CacheKey) -> Optional[Verdict]:
        """Return a live cached verdict, dropping it if expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self.clock()):
            del self._entries[key]
            return None
        return entry.verdict

    def ttl_for(self, verdict: Verdict, allow_ttl: Optional[float] = None) -> float:
        """TTL a verdict would be stored with; 0 means not stored."""
        if not verdict.cacheable:
            return 0.0
        if verdict.status == VerdictStatus.ALLOW:
            return self.config.allow_ttl if allow_ttl is None else allow_ttl
        return self.config.deny_ttl

    def put(self, key: CacheKey, verdict: Verdict, allow_ttl: Optional[float] = None) -> bool:
        """
        Store a terminal verdict.

        Args:
            key: (principal id, resource)
            verdict: The verdict to memoize
            allow_ttl: Per-resource override for ALLOW verdicts

        Returns:
            True if the verdict was stored
        """
        ttl = self.ttl_for(verdict, allow_ttl)
        if ttl <= 0:
            return False

        now = self.clock()
        self._entries[key] = CacheEntry(verdict=verdict, stored_at=now, expires_at=now + ttl)
        self._evict_if_full()
        return True

    def invalidate(self, key: CacheKey) -> None:
        self._entries.pop(key, None)

    def invalidate_principal(self, principal_id: str) -> int:
        """Drop every cached verdict for a principal (e.g., on lockout)."""
        keys = [k for k in self._entries if k[0] == principal_id]
        for key in keys:
            del self._entries[key]
        if keys:
            logger.debug("Cache invalidated for principal", principal=principal_id, entries=len(keys))
        return len(keys)

    def sweep(self) -> int:
        """Remove expired entries."""
        now = self.clock()
        expired = [k for k, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def _evict_if_full(self) -> None:
        if len(self._entries) <= self.config.max_entries:
            return
        self.sweep()
        excess = len(self._entries) - self.config.max_entries
        if excess <= 0:
            return
        oldest = sorted(self._entries.items(), key=lambda item: item[1].expires_at)[:excess]
        for key, _ in oldest:
            del self._entries[key]
        logger.info("Verdict cache evicted entries", evicted=excess)

    def mark_pending(self, key: CacheKey, verdict: Verdict) -> None:
        """Publish the CHALLENGE_PENDING verdict of an in-flight compute."""
        if key in self._inflight:
            self._pending[key] = verdict

    def pending(self, key: CacheKey) -> Optional[Verdict]:
        """The pending verdict for a key, if a challenge is in flight."""
        return self._pending.get(key)

    def in_flight(self, key: CacheKey) -> bool:
        return key in self._inflight

    async def get_or_compute(
        self,
        key: CacheKey,
        compute_fn: Callable[[], Awaitable[Verdict]],
        allow_ttl: Optional[float] = None,
    ) -> Verdict:
        """
        Return the cached verdict or run (or join) the single computation.

        Args:
            key: (principal id, resource)
            compute_fn: Coroutine factory producing a terminal verdict
            allow_ttl: Per-resource override for ALLOW verdicts

        Returns:
            The cached or freshly computed verdict
        """
        cached = self.get(key)
        if cached is not None:
            CACHE_LOOKUPS_TOTAL.labels(result="hit").inc()
            return cached

        task = self._inflight.get(key)
        if task is None:
            CACHE_LOOKUPS_TOTAL.labels(result="miss").inc()
            task = asyncio.ensure_future(self._run(key, compute_fn, allow_ttl))
            self._inflight[key] = task
            PENDING_CHALLENGES.inc()
            task.add_done_callback(lambda t, k=key: self._flight_done(k, t))
        else:
            CACHE_LOOKUPS_TOTAL.labels(result="joined").inc()
            logger.debug("Joined in-flight verdict computation", principal=key[0], resource=key[1])

        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            # Cancelled before its first step; otherwise _run turns it into a verdict
            if task.cancelled():
                return _cancelled_verdict()
            raise

    async def _run(
        self,
        key: CacheKey,
        compute_fn: Callable[[], Awaitable[Verdict]],
        allow_ttl: Optional[float],
    ) -> Verdict:
        try:
            verdict = await compute_fn()
        except asyncio.CancelledError:
            logger.info("Pending challenge cancelled", principal=key[0], resource=key[1])
            verdict = _cancelled_verdict()

        self.put(key, verdict, allow_ttl)
        return verdict

    def _flight_done(self, key: CacheKey, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        self._pending.pop(key, None)
        PENDING_CHALLENGES.dec()

    def cancel(self, key: CacheKey) -> bool:
        """Cancel the in-flight computation for a key, releasing its waiters."""
        task = self._inflight.get(key)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    def cancel_principal(self, principal_id: str, except_key: Optional[CacheKey] = None) -> int:
        """Cancel every in-flight computation for a principal."""
        cancelled = 0
        for key in list(self._inflight):
            if key[0] == principal_id and key != except_key and self.cancel(key):
                cancelled += 1
        return cancelled
