"""
Lockout Stores
==============
Persistence for lockout records so a restart cannot clear a lockout.
"""

import json
from typing import Dict, Optional, Protocol
import structlog

from .models import LockoutRecord

logger = structlog.get_logger(__name__)


class LockoutStore(Protocol):
    """Key-value persistence collaborator for lockout records."""

    async def load(self, principal: str) -> Optional[LockoutRecord]:
        ...

    async def store(self, principal: str, record: LockoutRecord) -> None:
        ...

    async def delete(self, principal: str) -> None:
        ...


class InMemoryLockoutStore:
    """
    Process-local lockout store.

    For development and testing only.
    Use RedisLockoutStore in production.
    """

    def __init__(self):
        self._records: Dict[str, Dict] = {}

    async def load(self, principal: str) -> Optional[LockoutRecord]:
        data = self._records.get(principal)
        return LockoutRecord.from_dict(data) if data is not None else None

    async def store(self, principal: str, record: LockoutRecord) -> None:
        self._records[principal] = record.to_dict()

    async def delete(self, principal: str) -> None:
        self._records.pop(principal, None)


class RedisLockoutStore:
    """
    Redis-backed lockout store.

    Records are JSON values that expire on their own once neither the lock
    nor the counting window can still matter.
    """

    def __init__(self, redis_client, ttl_seconds: int = 7200, prefix: str = "duo_enforcer:lockout"):
        """
        Args:
            redis_client: Async Redis client (redis.asyncio)
            ttl_seconds: Key expiry; must cover window + max lockout
            prefix: Key namespace
        """
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix

    def get_key(self, principal: str) -> str:
        return f"{self.prefix}:{principal}"

    async def load(self, principal: str) -> Optional[LockoutRecord]:
        raw = await self.redis.get(self.get_key(principal))
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            return LockoutRecord.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            # An unreadable record must not unlock anyone; surface it
            logger.error("Corrupt lockout record", principal=principal, error=str(e))
            raise

    async def store(self, principal: str, record: LockoutRecord) -> None:
        await self.redis.set(
            self.get_key(principal),
            json.dumps(record.to_dict()),
            ex=self.ttl_seconds,
        )

    async def delete(self, principal: str) -> None:
        await self.redis.delete(self.get_key(principal))
